"""Exception taxonomy for pipewright.

Graph-level errors abort a run before anything executes. Per-target errors
are contained to the failing target and its dependents, and are reported in
the run report rather than raised.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipewright errors."""


class InvalidTargetError(PipelineError, ValueError):
    """A target declaration is malformed (e.g. its name is not an identifier)."""


class GraphError(PipelineError):
    """The declared targets do not form a valid dependency graph."""


class DuplicateNameError(GraphError):
    """Two or more targets share a name."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(f"Duplicate target names: {', '.join(names)}")


class CycleError(GraphError):
    """The dependency relation contains a cycle.

    Attributes:
        cycle: Names along the cycle, with the first name repeated at the end.

    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class UnknownTargetError(GraphError, KeyError):
    """A dependency or requested name does not refer to a declared target."""

    def __init__(self, name: str, referrer: str | None = None) -> None:
        self.name = name
        self.referrer = referrer
        if referrer is None:
            msg = f"Unknown target '{name}'"
        else:
            msg = f"Target '{referrer}' depends on unknown target '{name}'"
        super().__init__(msg)

    def __str__(self) -> str:
        return str(self.args[0])


class EvaluatorError(PipelineError):
    """User logic failed while a target was being evaluated."""

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        self.message = message
        super().__init__(f"Target '{name}' failed: {message}")


class FileTrackingError(EvaluatorError):
    """A file-tracked target did not produce an existing path."""


class TargetTimeoutError(EvaluatorError):
    """A target's evaluation exceeded its configured timeout."""


class StorageIOError(PipelineError):
    """Reading or writing a persisted record failed for one target."""

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(f"Storage error for '{name}': {message}")


class NotFoundError(PipelineError, KeyError):
    """No stored result exists for the requested target."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No stored result for target '{name}'")

    def __str__(self) -> str:
        return str(self.args[0])


class ConfigError(PipelineError):
    """Error in pipewright configuration."""
