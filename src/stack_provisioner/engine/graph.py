"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import (
    DependencyCycleError,
    DuplicateNameError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from stack_provisioner.engine.registry import ResourceTypeRegistry
    from stack_provisioner.resources.base import ResourceNode


class DependencyGraph:
    """A directed graph where nodes depend on other nodes."""

    def __init__(self, nodes: Iterable[str], dependencies: Mapping[str, Iterable[str]]) -> None:
        self._nodes = set(nodes)
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}

    @classmethod
    def from_nodes(
        cls,
        nodes: Iterable[ResourceNode],
        registry: ResourceTypeRegistry | None = None,
    ) -> DependencyGraph:
        """Build the graph of declared nodes from their references.

        Every reference must target a declared node and, when *registry* is
        given, an attribute the target's kind produces. All problems are
        reported together.
        """
        by_name: dict[str, ResourceNode] = {}
        for n in nodes:
            if n.name in by_name:
                raise DuplicateNameError(n.name)
            by_name[n.name] = n
        problems: list[str] = []
        targets: list[str] = []
        dependencies: dict[str, list[str]] = {}

        for name in sorted(by_name):
            node = by_name[name]
            for dep in node.depends_on:
                if dep not in by_name:
                    problems.append(f"'{name}' depends on unknown resource '{dep}'")
                    targets.append(dep)
            for ref in node.references():
                target = by_name.get(ref.target)
                if target is None:
                    problems.append(f"'{name}' references {ref}: no resource named '{ref.target}'")
                    targets.append(ref.target)
                    continue
                if registry is None:
                    continue
                try:
                    produced = registry.get(target.kind).model.attributes
                except UnknownResourceTypeError:
                    continue
                if ref.attribute not in produced:
                    problems.append(
                        f"'{name}' references {ref}: kind '{target.kind}' "
                        f"does not produce attribute '{ref.attribute}'"
                    )
                    targets.append(ref.target)
            dependencies[name] = node.dependency_names()

        if problems:
            raise UnresolvedReferenceError(problems, targets=list(dict.fromkeys(targets)))
        return cls(by_name, dependencies)

    @classmethod
    def build(
        cls,
        nodes: Iterable[ResourceNode],
        registry: ResourceTypeRegistry | None = None,
    ) -> list[ResourceNode]:
        """Return *nodes* in deterministic dependency order."""
        nodes = list(nodes)
        by_name = {n.name: n for n in nodes}
        order = cls.from_nodes(nodes, registry).topological_order()
        return [by_name[name] for name in order]

    def dependencies(self, node: str) -> set[str]:
        return set(self._deps[node])

    def _dependents(self) -> tuple[dict[str, int], dict[str, set[str]]]:
        indegree: dict[str, int] = dict.fromkeys(self._nodes, 0)
        dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            indegree[node] = len(deps)
            for dep in deps:
                dependents[dep].add(node)
        return indegree, dependents

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (lexicographic tie-break)."""
        indegree, dependents = self._dependents()

        ready = [n for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, child)

        if len(order) != len(self._nodes):
            raise DependencyCycleError(self._find_cycle(self._nodes - set(order)))

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def waves(self) -> list[list[str]]:
        """Group nodes into waves: each wave depends only on earlier waves."""
        indegree, dependents = self._dependents()

        current = sorted(n for n, deg in indegree.items() if deg == 0)
        waves: list[list[str]] = []
        seen = 0
        while current:
            waves.append(current)
            seen += len(current)
            nxt: list[str] = []
            for node in current:
                for child in dependents[node]:
                    indegree[child] -= 1
                    if indegree[child] == 0:
                        nxt.append(child)
            current = sorted(nxt)

        if seen != len(self._nodes):
            done = {n for wave in waves for n in wave}
            raise DependencyCycleError(self._find_cycle(self._nodes - done))
        return waves

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        """Walk dependencies inside *remaining* until a name repeats.

        Every node left over by Kahn's algorithm has an unprocessed dependency,
        so the walk always closes a cycle.
        """
        node = min(remaining)
        path: list[str] = []
        index: dict[str, int] = {}
        while node not in index:
            index[node] = len(path)
            path.append(node)
            node = min(d for d in self._deps[node] if d in remaining)
        return [*path[index[node] :], node]
