"""Graph module providing dependency graph abstractions.

This module contains:
- DependencyGraph[T]: A generic, immutable directed graph
- topological_sort / find_cycle: Algorithms over successor mappings
- PipelineGraph / build_graph: The target-level graph built from declarations
"""

from ._algorithms import find_cycle, topological_sort
from ._builder import PipelineGraph, build_graph
from ._dependency_graph import DependencyGraph

__all__ = ["DependencyGraph", "PipelineGraph", "build_graph", "find_cycle", "topological_sort"]
