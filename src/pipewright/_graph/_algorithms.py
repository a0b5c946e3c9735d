"""Graph algorithms for dependency graph operations."""

import heapq
from collections.abc import Callable, Collection, Hashable, Mapping
from typing import Any, TypeVar

T = TypeVar("T", bound=Hashable)


def topological_sort(
    successors: Mapping[T, Collection[T]],
    key: Callable[[T], Any] | None = None,
) -> list[T]:
    """Sort a graph topologically (dependencies before dependents).

    Given a graph represented as a mapping from nodes to their successors
    (nodes that depend on them), return nodes in an order where each node
    appears before all nodes that depend on it.

    Among nodes that are ready at the same time, the one with the smallest
    ``key`` comes first, so the order is deterministic.

    Args:
        successors: Mapping from node to collection of nodes that depend on it.
            An edge (a -> b) means "b depends on a".
        key: Tie-break key for ready nodes. Defaults to first-seen order.

    Returns:
        List of nodes in topological order.

    Raises:
        ValueError: If the graph contains a cycle.

    Example:
        >>> # a -> b -> c means c depends on b, b depends on a
        >>> topological_sort({"a": ["b"], "b": ["c"], "c": []})
        ['a', 'b', 'c']

    """
    indegree: dict[T, int] = {}
    for node, deps in successors.items():
        indegree.setdefault(node, 0)
        for dep in deps:
            indegree[dep] = indegree.get(dep, 0) + 1

    if key is None:
        first_seen = {node: i for i, node in enumerate(indegree)}
        key = first_seen.__getitem__

    # Heap entries carry a counter so nodes themselves are never compared
    heap = [(key(node), i, node) for i, node in enumerate(indegree) if indegree[node] == 0]
    heapq.heapify(heap)
    counter = len(indegree)
    order: list[T] = []

    while heap:
        _, _, node = heapq.heappop(heap)
        order.append(node)
        for successor in successors.get(node, []):
            indegree[successor] -= 1
            if indegree[successor] == 0:
                heapq.heappush(heap, (key(successor), counter, successor))
                counter += 1

    if len(order) != len(indegree):
        msg = "Cycle detected in graph"
        raise ValueError(msg)

    return order


def find_cycle(successors: Mapping[T, Collection[T]]) -> list[T] | None:
    """Find one cycle in a graph.

    Args:
        successors: Mapping from node to collection of nodes that depend on it.

    Returns:
        The nodes along a cycle with the first node repeated at the end
        (e.g. ``['a', 'b', 'a']``), or None if the graph is acyclic.

    Example:
        >>> find_cycle({"a": ["b"], "b": ["a"]})
        ['a', 'b', 'a']

    """
    white, grey, black = 0, 1, 2
    color: dict[T, int] = dict.fromkeys(successors, white)

    for start in successors:
        if color[start] != white:
            continue
        # Iterative DFS keeping the current path on an explicit stack
        path: list[T] = [start]
        iterators = [iter(successors.get(start, ()))]
        color[start] = grey
        while iterators:
            try:
                nxt = next(iterators[-1])
            except StopIteration:
                color[path.pop()] = black
                iterators.pop()
                continue
            state = color.get(nxt, white)
            if state == grey:
                return [*path[path.index(nxt) :], nxt]
            if state == white:
                color[nxt] = grey
                path.append(nxt)
                iterators.append(iter(successors.get(nxt, ())))

    return None
