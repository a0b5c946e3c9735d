"""Target declarations."""

from __future__ import annotations

import keyword
from dataclasses import dataclass
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Any

from ._errors import InvalidTargetError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


class StorageFormat(StrEnum):
    """How a target's result is persisted."""

    MEMORY = auto()  # Pickled value kept in the object store
    FILE = auto()  # Path to an external file whose contents are tracked


class ErrorPolicy(StrEnum):
    """What happens when a target's command fails."""

    FAIL_PIPELINE = "fail-pipeline"
    SUBSTITUTE_DEFAULT = "substitute-default"


class CueMode(StrEnum):
    """When a target is considered for rebuilding."""

    THOROUGH = auto()  # Full fingerprint comparison
    ALWAYS = auto()  # Rebuild on every run
    NEVER = auto()  # Never rebuild once a record exists


def validate_target_name(name: str) -> str:
    """Check that a target name can be referenced from commands and used as a storage key.

    Raises:
        InvalidTargetError: If the name is not a plain Python identifier.

    """
    if not isinstance(name, str) or not name.isidentifier() or keyword.iskeyword(name):
        msg = f"Target name must be a valid Python identifier, got: {name!r}"
        raise InvalidTargetError(msg)
    return name


@dataclass(frozen=True, slots=True)
class Target:
    """A named unit of declared computation.

    Dependencies are not listed here directly: they are inferred from the
    names the command references, plus any explicit ``deps``.

    Attributes:
        name: Unique name within the pipeline.
        command: A Python expression string, a callable, or a render command.
        format: Storage format. None means the configured default.
        error: Error policy. None means the configured default.
        seed: Execution seed. None means a seed derived from the name.
        deps: Explicit extra dependency names.
        cue: Rebuild cue.
        timeout: Evaluation timeout in seconds. None means the configured default.
        description: Free text shown in the manifest.

    """

    name: str
    command: Any
    format: StorageFormat | None = None
    error: ErrorPolicy | None = None
    seed: int | None = None
    deps: tuple[str, ...] = ()
    cue: CueMode = CueMode.THOROUGH
    timeout: float | None = None
    description: str = ""

    def __post_init__(self) -> None:
        validate_target_name(self.name)
        if not isinstance(self.command, str) and not callable(self.command):
            msg = f"Command of target '{self.name}' must be an expression string or a callable"
            raise InvalidTargetError(msg)
        # Use object.__setattr__ since the dataclass is frozen
        if self.format is not None:
            object.__setattr__(self, "format", StorageFormat(self.format))
        if self.error is not None:
            object.__setattr__(self, "error", ErrorPolicy(self.error))
        object.__setattr__(self, "cue", CueMode(self.cue))
        object.__setattr__(self, "deps", tuple(validate_target_name(d) for d in self.deps))
        if self.timeout is not None and self.timeout <= 0:
            msg = f"Timeout of target '{self.name}' must be positive, got: {self.timeout}"
            raise InvalidTargetError(msg)


def target(  # noqa: PLR0913
    name: str,
    command: str | Callable[..., Any],
    *,
    format: StorageFormat | str | None = None,  # noqa: A002
    error: ErrorPolicy | str | None = None,
    seed: int | None = None,
    deps: Iterable[str] = (),
    cue: CueMode | str = CueMode.THOROUGH,
    timeout: float | None = None,
    description: str = "",
) -> Target:
    """Declare a target.

    Example:
        >>> target("data", "load_table('a.csv')")
        >>> target("model", lambda data: fit(data))

    """
    return Target(
        name=name,
        command=command,
        format=format,  # ty: ignore[invalid-argument-type]
        error=error,  # ty: ignore[invalid-argument-type]
        seed=seed,
        deps=tuple(deps),
        cue=cue,  # ty: ignore[invalid-argument-type]
        timeout=timeout,
        description=description,
    )
