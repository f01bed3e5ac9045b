"""
Dependency graph builder - turns declarations into an immutable DAG.

This is the build-time half of orchestration:
1. Derive edges from wait_for, references, value refs and parent links
2. Validate every edge endpoint and parameter reference is declared
3. Validate the graph is a DAG (no cycles)
4. Topologically sort, ties broken by declaration order
5. Freeze the registry and return a DependencyGraph

Design Principles:
- Pure functions where possible (testable, deterministic)
- No execution (that's for the Orchestrator)
- Clear error messages for all failure modes
"""

from __future__ import annotations

import heapq
from collections import defaultdict
from collections.abc import Iterable

from apphost.core.logging import get_logger
from apphost.orchestration.exceptions import (
    CyclicDependencyError,
    UnknownParameterError,
    UnknownResourceError,
)
from apphost.orchestration.models import DependencyEdge, EdgeStrength, Resource
from apphost.orchestration.registry import ResourceRegistry

logger = get_logger(__name__)


class DependencyGraph:
    """
    Immutable DAG over resource names.

    Edges point from dependent to dependency. ``order`` is one topological
    order (dependencies first); the scheduler does not need to follow it
    exactly but it is consistent with every edge and is used for serial
    fallbacks and reverse-order teardown.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        edges: Iterable[DependencyEdge],
        order: Iterable[str],
    ) -> None:
        self._registry = registry
        self._edges: tuple[DependencyEdge, ...] = tuple(edges)
        self._order: tuple[str, ...] = tuple(order)

        deps: dict[str, list[DependencyEdge]] = defaultdict(list)
        rdeps: dict[str, list[str]] = defaultdict(list)
        for edge in self._edges:
            deps[edge.dependent].append(edge)
            rdeps[edge.dependency].append(edge.dependent)
        self._deps = {k: tuple(v) for k, v in deps.items()}
        self._rdeps = {k: tuple(v) for k, v in rdeps.items()}

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    @property
    def edges(self) -> tuple[DependencyEdge, ...]:
        return self._edges

    @property
    def order(self) -> tuple[str, ...]:
        """Topological order, dependencies first."""
        return self._order

    def resource(self, name: str) -> Resource:
        return self._registry.get(name)

    def resources(self) -> list[Resource]:
        """Resources in topological order."""
        return [self._registry.get(n) for n in self._order]

    def dependencies(self, name: str, strength: EdgeStrength | None = None) -> list[str]:
        """Direct dependencies of *name*, optionally filtered by strength."""
        return [
            e.dependency
            for e in self._deps.get(name, ())
            if strength is None or e.strength is strength
        ]

    def wait_dependencies(self, name: str) -> list[str]:
        """Dependencies that must be READY before *name* may start."""
        return self.dependencies(name, EdgeStrength.WAIT_FOR)

    def edge(self, dependent: str, dependency: str) -> DependencyEdge | None:
        for e in self._deps.get(dependent, ()):
            if e.dependency == dependency:
                return e
        return None

    def dependents(self, name: str) -> list[str]:
        """Direct dependents of *name* (any strength)."""
        return list(self._rdeps.get(name, ()))

    def transitive_dependents(self, name: str) -> list[str]:
        """Every resource that depends on *name*, directly or not, in topological order."""
        seen: set[str] = set()
        stack = list(self._rdeps.get(name, ()))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self._rdeps.get(node, ()))
        return [n for n in self._order if n in seen]

    def roots(self) -> list[str]:
        """Resources with no WaitFor dependencies (may start immediately)."""
        return [n for n in self._order if not self.wait_dependencies(n)]

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, name: object) -> bool:
        return name in self._order


class DependencyGraphBuilder:
    """
    Builds a DependencyGraph from a registry.

    Thread-safe: no mutable state, each build() call is independent.

    Example:
        graph = DependencyGraphBuilder().build(registry)
        graph.order            # ("postgres", "myappdb", "qdrant", "myapp")
        graph.wait_dependencies("myapp")
    """

    def build(self, registry: ResourceRegistry) -> DependencyGraph:
        """
        Validate declarations and build the graph.

        Raises:
            UnknownResourceError: An edge points at an undeclared resource
            UnknownParameterError: A ParameterRef names an undeclared parameter
            CyclicDependencyError: The edges contain a cycle
        """
        resources = registry.resources()

        logger.debug("graph.build_start", resource_count=len(resources))

        edges = self._derive_edges(resources)
        self._validate_references(registry, resources, edges)
        self._validate_no_cycles(resources, edges)
        order = self._topological_sort(resources, edges)

        registry.freeze()
        graph = DependencyGraph(registry, edges, order)

        logger.info(
            "graph.built",
            resource_count=len(order),
            edge_count=len(edges),
            wait_for_edges=sum(1 for e in edges if e.strength is EdgeStrength.WAIT_FOR),
        )
        return graph

    def _derive_edges(self, resources: list[Resource]) -> list[DependencyEdge]:
        """
        Collect edges per dependent, keeping the strongest strength.

        - wait_for        -> WAIT_FOR
        - parent          -> WAIT_FOR
        - references      -> REFERENCE_ONLY
        - ResourceValueRef-> REFERENCE_ONLY
        An explicit wait upgrades a reference to WAIT_FOR.
        """
        edges: list[DependencyEdge] = []
        for resource in resources:
            strengths: dict[str, EdgeStrength] = {}

            def add(dependency: str, strength: EdgeStrength) -> None:
                current = strengths.get(dependency)
                if current is None or strength.rank > current.rank:
                    strengths[dependency] = strength

            for name in resource.references:
                add(name, EdgeStrength.REFERENCE_ONLY)
            for ref in resource.value_refs():
                add(ref.resource, EdgeStrength.REFERENCE_ONLY)
            if resource.parent:
                add(resource.parent, EdgeStrength.WAIT_FOR)
            for name in resource.wait_for:
                add(name, EdgeStrength.WAIT_FOR)

            edges.extend(
                DependencyEdge(resource.name, dependency, strength)
                for dependency, strength in strengths.items()
            )
        return edges

    def _validate_references(
        self,
        registry: ResourceRegistry,
        resources: list[Resource],
        edges: list[DependencyEdge],
    ) -> None:
        """Every edge endpoint must be a resource; every ParameterRef a parameter."""
        for edge in edges:
            if edge.dependency not in registry:
                raise UnknownResourceError(edge.dependency, referenced_by=edge.dependent)
        declared = {p.name for p in registry.parameters()}
        for resource in resources:
            for ref in resource.parameter_refs():
                if ref.name not in declared:
                    raise UnknownParameterError(ref.name, referenced_by=resource.name)

    def _validate_no_cycles(
        self,
        resources: list[Resource],
        edges: list[DependencyEdge],
    ) -> None:
        """
        Validate the dependency graph is a DAG (no cycles).

        Uses depth-first search with three-color marking:
        - WHITE (0): Unvisited
        - GRAY (1): Currently visiting (on current path)
        - BLACK (2): Finished visiting

        If we encounter a GRAY node, we've found a cycle. Iterative to stay
        clear of the recursion limit on long chains.
        """
        WHITE, GRAY, BLACK = 0, 1, 2

        graph: dict[str, list[str]] = {r.name: [] for r in resources}
        for edge in edges:
            graph[edge.dependent].append(edge.dependency)
        color = {name: WHITE for name in graph}

        for start in graph:
            if color[start] != WHITE:
                continue
            path: list[str] = [start]
            stack: list[tuple[str, int]] = [(start, 0)]
            color[start] = GRAY
            while stack:
                node, index = stack[-1]
                neighbors = graph[node]
                if index < len(neighbors):
                    stack[-1] = (node, index + 1)
                    neighbor = neighbors[index]
                    if color[neighbor] == GRAY:
                        cycle_start = path.index(neighbor)
                        raise CyclicDependencyError(path[cycle_start:] + [neighbor])
                    if color[neighbor] == WHITE:
                        color[neighbor] = GRAY
                        path.append(neighbor)
                        stack.append((neighbor, 0))
                else:
                    color[node] = BLACK
                    path.pop()
                    stack.pop()

    def _topological_sort(
        self,
        resources: list[Resource],
        edges: list[DependencyEdge],
    ) -> list[str]:
        """
        Kahn's algorithm with a min-heap on declaration index.

        Among resources whose dependencies are all placed, the one declared
        first goes next, so the order is fully deterministic.
        """
        position = {r.name: i for i, r in enumerate(resources)}
        dependents: dict[str, list[str]] = defaultdict(list)
        in_degree = {r.name: 0 for r in resources}
        for edge in edges:
            dependents[edge.dependency].append(edge.dependent)
            in_degree[edge.dependent] += 1

        heap = [(position[n], n) for n, d in in_degree.items() if d == 0]
        heapq.heapify(heap)
        result: list[str] = []

        while heap:
            _, node = heapq.heappop(heap)
            result.append(node)
            for dependent in dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, (position[dependent], dependent))

        if len(result) != len(resources):
            remaining = [r.name for r in resources if r.name not in set(result)]
            raise CyclicDependencyError(remaining + remaining[:1])

        return result


def build_graph(registry: ResourceRegistry) -> DependencyGraph:
    """Convenience wrapper around ``DependencyGraphBuilder().build``."""
    return DependencyGraphBuilder().build(registry)


__all__ = ["DependencyGraph", "DependencyGraphBuilder", "build_graph"]
