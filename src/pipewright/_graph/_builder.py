"""Build a pipeline graph from target declarations."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pipewright._analysis import analyze_command
from pipewright._errors import CycleError, DuplicateNameError, InvalidTargetError, UnknownTargetError

from ._dependency_graph import DependencyGraph

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from pipewright._target import Target

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PipelineGraph:
    """The declared targets plus their inferred depends-on relation.

    Immutable once built, so it can be shared between worker threads.

    Attributes:
        targets: Targets by name, in declaration order.
        dependencies: Direct dependency names per target, in declaration order.
        command_hashes: Digest of each target's command.
        graph: The underlying dependency graph over target names.
        order: Topological order; ties follow declaration order.

    """

    targets: dict[str, Target] = field(default_factory=dict)
    dependencies: dict[str, tuple[str, ...]] = field(default_factory=dict)
    command_hashes: dict[str, str] = field(default_factory=dict)
    graph: DependencyGraph[str] = field(default_factory=DependencyGraph)
    order: tuple[str, ...] = ()

    def get(self, name: str) -> Target:
        """Get a target by name.

        Raises:
            UnknownTargetError: If no target has this name.

        """
        try:
            return self.targets[name]
        except KeyError:
            raise UnknownTargetError(name) from None

    def dependents(self, name: str) -> tuple[str, ...]:
        """Direct dependents of a target, in topological order."""
        successors = self.graph.successors(name)
        return tuple(n for n in self.order if n in successors)

    def downstream(self, name: str) -> tuple[str, ...]:
        """All transitive dependents of a target, in topological order."""
        descendants = self.graph.descendants(name)
        return tuple(n for n in self.order if n in descendants)

    def upstream(self, name: str) -> tuple[str, ...]:
        """All transitive dependencies of a target, in topological order."""
        ancestors = self.graph.ancestors(name)
        return tuple(n for n in self.order if n in ancestors)

    def restrict(self, names: Iterable[str]) -> PipelineGraph:
        """Keep only the named targets and everything they depend on.

        Raises:
            UnknownTargetError: If a name is not a declared target.

        """
        keep: set[str] = set()
        for name in names:
            self.get(name)
            keep.add(name)
            keep |= self.graph.ancestors(name)
        return PipelineGraph(
            targets={n: t for n, t in self.targets.items() if n in keep},
            dependencies={n: d for n, d in self.dependencies.items() if n in keep},
            command_hashes={n: h for n, h in self.command_hashes.items() if n in keep},
            graph=self.graph.subgraph(frozenset(keep)),
            order=tuple(n for n in self.order if n in keep),
        )

    def __len__(self) -> int:
        """Return the number of targets."""
        return len(self.targets)

    def __contains__(self, name: object) -> bool:
        """Check if a target name is declared."""
        return name in self.targets

    def __iter__(self) -> Iterator[str]:
        """Iterate over target names in topological order."""
        return iter(self.order)


def build_graph(targets: Iterable[Target]) -> PipelineGraph:
    """Build a PipelineGraph from target declarations.

    Dependencies are inferred by static analysis of each command: every
    referenced identifier that names a declared target becomes an edge.
    Explicit ``deps`` are added on top. No user code is executed.

    Args:
        targets: Target declarations, in declaration order.

    Returns:
        The validated, topologically ordered graph.

    Raises:
        DuplicateNameError: If two targets share a name.
        UnknownTargetError: If an explicit dependency names no declared target.
        InvalidTargetError: If a command expression cannot be parsed.
        CycleError: If the dependency relation is cyclic.

    """
    targets = list(targets)
    counts = Counter(t.name for t in targets)
    duplicates = [name for name, count in counts.items() if count > 1]
    if duplicates:
        raise DuplicateNameError(duplicates)

    by_name = {t.name: t for t in targets}
    position = {name: i for i, name in enumerate(by_name)}

    dependencies: dict[str, tuple[str, ...]] = {}
    command_hashes: dict[str, str] = {}
    edges: list[tuple[str, str]] = []

    for tgt in targets:
        try:
            info = analyze_command(tgt.command)
        except SyntaxError as e:
            msg = f"Command of target '{tgt.name}' is not a valid expression: {e.msg}"
            raise InvalidTargetError(msg) from e

        for dep in tgt.deps:
            if dep not in by_name:
                raise UnknownTargetError(dep, referrer=tgt.name)

        deps = (info.references & by_name.keys()) | set(tgt.deps)
        ordered = tuple(sorted(deps, key=position.__getitem__))
        logger.debug("Target %s depends on %s", tgt.name, ordered)

        dependencies[tgt.name] = ordered
        command_hashes[tgt.name] = info.digest
        edges.extend((dep, tgt.name) for dep in ordered)

    graph = DependencyGraph.from_edges(edges, nodes=by_name)

    cycle = graph.find_cycle()
    if cycle is not None:
        raise CycleError(cycle)

    order = graph.topological_order(key=position.__getitem__)

    return PipelineGraph(
        targets=by_name,
        dependencies=dependencies,
        command_hashes=command_hashes,
        graph=graph,
        order=tuple(order),
    )
