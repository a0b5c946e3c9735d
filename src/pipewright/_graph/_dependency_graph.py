"""Generic dependency graph abstraction."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ._algorithms import find_cycle, topological_sort

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class DependencyGraph(Generic[T]):
    """A directed graph representing dependencies between nodes.

    This is a pure, immutable data structure with query methods.
    It is generic over the node type T.

    The graph represents "depends on" relationships:
    - predecessors[b] = {a} means "b depends on a"
    - successors[a] = {b} means "a is depended on by b"

    Attributes:
        _predecessors: Mapping from node to its direct dependencies.
        _successors: Mapping from node to nodes that depend on it.

    """

    _predecessors: dict[T, frozenset[T]] = field(default_factory=dict)
    _successors: dict[T, frozenset[T]] = field(default_factory=dict)

    @classmethod
    def from_edges(
        cls,
        edges: Iterable[tuple[T, T]],
        nodes: Iterable[T] = (),
    ) -> DependencyGraph[T]:
        """Build a graph from (source, target) edges and optional isolated nodes.

        An edge (a, b) means "b depends on a" (a -> b in the DAG).
        Nodes without any edge are only present if listed in ``nodes``.

        Example:
            >>> # b depends on a, c depends on b, d stands alone
            >>> graph = DependencyGraph.from_edges([("a", "b"), ("b", "c")], nodes=["d"])
            >>> graph.predecessors("b")
            frozenset({'a'})

        """
        predecessors: defaultdict[T, set[T]] = defaultdict(set)
        successors: defaultdict[T, set[T]] = defaultdict(set)

        for node in nodes:
            predecessors.setdefault(node, set())
            successors.setdefault(node, set())

        for src, dst in edges:
            predecessors[dst].add(src)
            successors[src].add(dst)
            # Ensure both nodes exist in both mappings
            predecessors.setdefault(src, set())
            successors.setdefault(dst, set())

        return cls(
            _predecessors={k: frozenset(v) for k, v in predecessors.items()},
            _successors={k: frozenset(v) for k, v in successors.items()},
        )

    @property
    def nodes(self) -> frozenset[T]:
        """All nodes in the graph."""
        return frozenset(self._predecessors.keys()) | frozenset(self._successors.keys())

    def predecessors(self, node: T) -> frozenset[T]:
        """Get direct dependencies of a node (nodes it depends on)."""
        return self._predecessors.get(node, frozenset())

    def successors(self, node: T) -> frozenset[T]:
        """Get direct dependents of a node (nodes that depend on it)."""
        return self._successors.get(node, frozenset())

    def ancestors(self, node: T) -> frozenset[T]:
        """Get all transitive dependencies of a node."""
        return self._walk(node, self.predecessors)

    def descendants(self, node: T) -> frozenset[T]:
        """Get all transitive dependents of a node."""
        return self._walk(node, self.successors)

    @staticmethod
    def _walk(node: T, step: Callable[[T], frozenset[T]]) -> frozenset[T]:
        visited: set[T] = set()
        stack = list(step(node))
        while stack:
            current = stack.pop()
            if current not in visited:
                visited.add(current)
                stack.extend(step(current))
        return frozenset(visited)

    def topological_order(self, key: Callable[[T], Any] | None = None) -> list[T]:
        """Return nodes in topological order (dependencies before dependents).

        Args:
            key: Tie-break key among nodes that become ready together.

        Raises:
            ValueError: If the graph contains a cycle.

        """
        return topological_sort(self._successors, key=key)

    def find_cycle(self) -> list[T] | None:
        """Return one cycle (first node repeated at the end), or None if acyclic."""
        return find_cycle(self._successors)

    def subgraph(self, nodes: frozenset[T]) -> DependencyGraph[T]:
        """Create a subgraph containing only the specified nodes.

        Edges are kept only if both endpoints are in the node set.
        """
        return DependencyGraph(
            _predecessors={n: self._predecessors.get(n, frozenset()) & nodes for n in nodes},
            _successors={n: self._successors.get(n, frozenset()) & nodes for n in nodes},
        )

    def __len__(self) -> int:
        """Return the number of nodes in the graph."""
        return len(self.nodes)

    def __contains__(self, node: T) -> bool:
        """Check if a node is in the graph."""
        return node in self._predecessors or node in self._successors
