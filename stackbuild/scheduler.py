from __future__ import annotations

import heapq
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from .errors import ConfigurationError, CycleError
from .graph import DependencyGraph
from .models import DependencyEdge


def _in_set_edges(names: Set[str], edges: Iterable[DependencyEdge]) -> List[DependencyEdge]:
    return [edge for edge in edges if edge.dependent in names and edge.dependency in names]


def topological_order(names: Iterable[str], edges: Iterable[DependencyEdge]) -> List[str]:
    """Order packages so every dependency precedes its dependents.

    Kahn's algorithm with the ready candidates kept in a heap, so ties are
    always broken by the lexicographically smallest name.
    """

    remaining = set(names)
    in_degree: Dict[str, int] = {name: 0 for name in remaining}
    dependents: Dict[str, List[str]] = defaultdict(list)
    for edge in _in_set_edges(remaining, edges):
        in_degree[edge.dependent] += 1
        dependents[edge.dependency].append(edge.dependent)

    ready = [name for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        current = heapq.heappop(ready)
        order.append(current)
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(remaining):
        raise CycleError(sorted(remaining - set(order)))
    return order


def ready_sets(names: Iterable[str], edges: Iterable[DependencyEdge]) -> List[List[str]]:
    """Partition packages into levels buildable concurrently, in build order."""

    remaining = set(names)
    dependencies: Dict[str, Set[str]] = {name: set() for name in remaining}
    for edge in _in_set_edges(remaining, edges):
        dependencies[edge.dependent].add(edge.dependency)

    levels: List[List[str]] = []
    done: Set[str] = set()
    while remaining:
        level = sorted(name for name in remaining if dependencies[name] <= done)
        if not level:
            raise CycleError(sorted(remaining))
        levels.append(level)
        done.update(level)
        remaining.difference_update(level)
    return levels


def scheduling_edges(graph: DependencyGraph, selected: Iterable[str]) -> Set[DependencyEdge]:
    """Edges between selected packages, including paths through unselected ones."""

    chosen = set(selected)
    edges: Set[DependencyEdge] = set()
    for name in chosen:
        for dependency in graph.transitive_dependencies(name) & chosen:
            edges.add(DependencyEdge(dependent=name, dependency=dependency))
    return edges


def select(
    graph: DependencyGraph,
    requested: Optional[Iterable[str]] = None,
    include_dependencies: bool = False,
) -> List[str]:
    """Resolve the package names scheduled for this run, in build order."""

    if requested is None:
        selected = set(graph.names)
    else:
        selected = set(requested)
        unknown = sorted(name for name in selected if name not in graph)
        if unknown:
            raise ConfigurationError(f"Unknown packages requested: {', '.join(unknown)}")
        if include_dependencies:
            for name in list(selected):
                selected.update(graph.transitive_dependencies(name))
    return topological_order(selected, scheduling_edges(graph, selected))
