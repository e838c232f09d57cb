from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .errors import CycleError
from .models import DependencyEdge

logger = logging.getLogger(__name__)


def build_edges(names: Iterable[str], raw_dependencies: Mapping[str, Iterable[str]]) -> Set[DependencyEdge]:
    """Keep only dependencies that name another package of the same set."""

    known = set(names)
    edges: Set[DependencyEdge] = set()
    for package in sorted(known):
        for dependency in sorted(set(raw_dependencies.get(package, ()))):
            if dependency == package:
                logger.debug("Ignoring self-dependency of %s", package)
                continue
            if dependency not in known:
                logger.debug("%s: %s is external, no edge", package, dependency)
                continue
            edges.add(DependencyEdge(dependent=package, dependency=dependency))
    return edges


class DependencyGraph:
    """Directed graph of in-set dependencies between packages."""

    def __init__(self, names: Iterable[str], raw_dependencies: Mapping[str, Iterable[str]]) -> None:
        self.names: List[str] = sorted(set(names))
        self.raw_dependencies: Dict[str, Set[str]] = {
            name: set(raw_dependencies.get(name, ())) for name in self.names
        }
        self.edges = build_edges(self.names, self.raw_dependencies)
        self._dependencies: Dict[str, Set[str]] = defaultdict(set)
        self._dependents: Dict[str, Set[str]] = defaultdict(set)
        for edge in self.edges:
            self._dependencies[edge.dependent].add(edge.dependency)
            self._dependents[edge.dependency].add(edge.dependent)

    def __contains__(self, name: str) -> bool:
        return name in self.raw_dependencies

    def __len__(self) -> int:
        return len(self.names)

    def dependencies_of(self, name: str) -> List[str]:
        return sorted(self._dependencies.get(name, ()))

    def dependents_of(self, name: str) -> List[str]:
        return sorted(self._dependents.get(name, ()))

    def external_dependencies_of(self, name: str) -> List[str]:
        return sorted(self.raw_dependencies.get(name, set()) - set(self.names) - {name})

    def transitive_dependencies(self, name: str) -> Set[str]:
        seen: Set[str] = set()
        stack = list(self._dependencies.get(name, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependencies.get(current, ()))
        return seen

    def transitive_dependents(self, name: str) -> Set[str]:
        seen: Set[str] = set()
        stack = list(self._dependents.get(name, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents.get(current, ()))
        return seen

    def find_cycle(self) -> Optional[List[str]]:
        """Return the members of one dependency cycle, or None if acyclic."""

        white, grey, black = 0, 1, 2
        color = {name: white for name in self.names}
        path: List[str] = []

        def visit(node: str) -> Optional[List[str]]:
            color[node] = grey
            path.append(node)
            for dependency in self.dependencies_of(node):
                if color[dependency] == grey:
                    return path[path.index(dependency):]
                if color[dependency] == white:
                    found = visit(dependency)
                    if found:
                        return found
            path.pop()
            color[node] = black
            return None

        for name in self.names:
            if color[name] == white:
                cycle = visit(name)
                if cycle:
                    return cycle
        return None

    def validate(self) -> None:
        cycle = self.find_cycle()
        if cycle:
            raise CycleError(cycle)

    def to_dict(self) -> Dict[str, object]:
        return {
            "packages": self.names,
            "edges": sorted([edge.dependent, edge.dependency] for edge in self.edges),
            "external": {name: self.external_dependencies_of(name) for name in self.names},
        }
