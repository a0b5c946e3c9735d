"""Pipeline: declarations plus the run/read/clear surface."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from ._analysis import CommandSpec
from ._context import current_store_root
from ._evaluator import PythonEvaluator
from ._graph import build_graph
from ._invalidation import classify
from ._render import RenderCommand
from ._scheduler import Scheduler
from ._settings import Settings
from ._store import DEFAULT_STORE_DIR, PipelineStore, open_store
from ._target import CueMode, ErrorPolicy, StorageFormat, Target

if TYPE_CHECKING:
    import os
    from collections.abc import Callable, Iterable, Mapping

    from ._evaluator import Evaluator
    from ._graph import PipelineGraph
    from ._invalidation import Classification, TargetState
    from ._report import RunReport

F = TypeVar("F", bound="Callable[..., Any]")

logger = logging.getLogger(__name__)


def describe_command(command: Any) -> str:
    """Short human-readable description of a command."""
    if isinstance(command, str):
        return command
    if isinstance(command, RenderCommand):
        return f"render {command.document}"
    if isinstance(command, CommandSpec):
        return type(command).__name__
    qualname = getattr(command, "__qualname__", None) or type(command).__qualname__
    module = getattr(command, "__module__", None)
    return f"{module}.{qualname}" if module else qualname


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """One row of the pipeline manifest."""

    name: str
    command: str
    dependencies: tuple[str, ...]
    format: StorageFormat
    error: ErrorPolicy
    cue: CueMode
    state: TargetState
    reason: str | None = None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a TOML/JSON friendly dict."""
        data: dict[str, Any] = {
            "command": self.command,
            "dependencies": list(self.dependencies),
            "format": str(self.format),
            "error": str(self.error),
            "cue": str(self.cue),
            "state": str(self.state),
        }
        if self.reason is not None:
            data["reason"] = self.reason
        if self.description:
            data["description"] = self.description
        return data


class Pipeline:
    """A named set of target declarations bound to a store.

    Example:
        >>> pipeline = Pipeline("analysis")
        >>> pipeline.add(target("raw", "read_csv('data.csv')", format="file"))
        >>> @pipeline.target()
        ... def clean(raw):
        ...     return drop_missing(raw)
        >>> report = pipeline.run()

    """

    def __init__(  # noqa: PLR0913
        self,
        name: str,
        targets: Iterable[Target] = (),
        settings: Settings | None = None,
        store: str | os.PathLike[str] | None = None,
        namespace: Mapping[str, Any] | None = None,
        evaluator: Evaluator | None = None,
    ) -> None:
        self.name = name
        self.settings = settings or Settings()
        self._explicit_settings = settings is not None
        self._store_root = Path(store) if store is not None else None
        self.namespace: dict[str, Any] = dict(namespace or {})
        self._evaluator = evaluator
        self._targets: list[Target] = list(targets)

    def apply_config(self, settings: Settings) -> None:
        """Use settings loaded from configuration, unless the pipeline was given its own."""
        if not self._explicit_settings:
            self.settings = settings

    @property
    def store_root(self) -> Path:
        """Directory of this pipeline's store."""
        return self._store_root if self._store_root is not None else self.settings.store

    @property
    def targets(self) -> list[Target]:
        """Declared targets, in declaration order."""
        return list(self._targets)

    def add(self, *targets: Target) -> None:
        """Register target declarations."""
        self._targets.extend(targets)

    def target(  # noqa: PLR0913
        self,
        name: str | None = None,
        *,
        format: StorageFormat | str | None = None,  # noqa: A002
        error: ErrorPolicy | str | None = None,
        seed: int | None = None,
        deps: Iterable[str] = (),
        cue: CueMode | str = CueMode.THOROUGH,
        timeout: float | None = None,
        description: str | None = None,
    ) -> Callable[[F], F]:
        """Decorator to register a function as a target.

        The target name defaults to the function name. Parameters named after
        other targets receive their values.
        """

        def decorator(func: F) -> F:
            if name is None:
                if not hasattr(func, "__name__") or not isinstance(func.__name__, str):
                    msg = "Function must have a valid name."
                    raise TypeError(msg)
                target_name = func.__name__
            else:
                target_name = name
            doc = (func.__doc__ or "").strip().splitlines()
            self._targets.append(
                Target(
                    name=target_name,
                    command=func,
                    format=format,  # ty: ignore[invalid-argument-type]
                    error=error,  # ty: ignore[invalid-argument-type]
                    seed=seed,
                    deps=tuple(deps),
                    cue=cue,  # ty: ignore[invalid-argument-type]
                    timeout=timeout,
                    description=description if description is not None else (doc[0] if doc else ""),
                ),
            )
            return func

        return decorator

    def source(self, path: str | os.PathLike[str]) -> None:
        """Execute a Python file into the namespace of expression commands.

        Raises:
            FileNotFoundError: If the file does not exist.

        """
        path = Path(path)
        code = compile(path.read_text(encoding="utf-8"), str(path), "exec")
        exec(code, self.namespace)  # noqa: S102 - user-provided helper code
        logger.debug("Sourced %s into pipeline %s", path, self.name)

    def graph(self) -> PipelineGraph:
        """Build the dependency graph of the declared targets."""
        return build_graph(self._targets)

    def _evaluator_or_default(self) -> Evaluator:
        if self._evaluator is not None:
            return self._evaluator
        return PythonEvaluator(self.namespace)

    def run(self, names: Iterable[str] | None = None, cancel_event: threading.Event | None = None) -> RunReport:
        """Bring the pipeline up to date.

        Args:
            names: Restrict the run to these targets and their dependencies.
            cancel_event: Set it to stop scheduling new targets.

        Returns:
            The run report.

        Raises:
            GraphError: If the declarations do not form a valid graph.

        """
        graph = self.graph()
        if names is not None:
            graph = graph.restrict(names)
        with open_store(self.store_root) as store:
            classification = classify(graph, store, self.settings)
            scheduler = Scheduler(
                store,
                self.settings,
                self._evaluator_or_default(),
                cancel_event=cancel_event or threading.Event(),
            )
            return scheduler.run(graph, classification)

    def classify(self) -> Classification:
        """Classify every target without running anything."""
        return classify(self.graph(), PipelineStore(self.store_root), self.settings)

    def outdated(self) -> list[str]:
        """Names of targets the next run would execute, in topological order."""
        return self.classify().pending

    def manifest(self) -> list[ManifestEntry]:
        """Describe every target with its dependencies and current state."""
        graph = self.graph()
        classification = classify(graph, PipelineStore(self.store_root), self.settings)
        return [
            ManifestEntry(
                name=name,
                command=describe_command(graph.targets[name].command),
                dependencies=graph.dependencies[name],
                format=self.settings.format_for(graph.targets[name]),
                error=self.settings.error_policy_for(graph.targets[name]),
                cue=graph.targets[name].cue,
                state=classification[name],
                reason=classification.reasons.get(name),
                description=graph.targets[name].description,
            )
            for name in graph.order
        ]

    def read(self, name: str) -> Any:
        """Read a target's stored result.

        Raises:
            NotFoundError: If the target has never been built.

        """
        return PipelineStore(self.store_root).objects.read(name)

    def clear(self, names: Iterable[str] | None = None) -> list[str]:
        """Remove fingerprint records and stored results (all of them when names is None)."""
        with open_store(self.store_root) as store:
            return store.clear(names)

    def invalidate(self, names: Iterable[str]) -> list[str]:
        """Remove fingerprint records only, so the targets rebuild on the next run."""
        with open_store(self.store_root) as store:
            return store.invalidate(names)

    def destroy(self) -> None:
        """Delete the store directory."""
        PipelineStore(self.store_root).destroy()


def read_target(name: str, store: str | os.PathLike[str] | PipelineStore | None = None) -> Any:
    """Read a target's stored result from a store.

    Meant for documents and notebooks rendered by render targets. Without a
    store argument, the store of the running pipeline is used, or the default
    store directory outside a run.

    Raises:
        NotFoundError: If the target has never been built.

    """
    if isinstance(store, PipelineStore):
        return store.objects.read(name)
    root = Path(store) if store is not None else current_store_root() or Path(DEFAULT_STORE_DIR)
    return PipelineStore(root).objects.read(name)


load_target = read_target
