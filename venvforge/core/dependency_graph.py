"""Dependency DAG for one install plan.

The graph enforces:
- Every package appears once; duplicate declarations must agree on hash.
- Every ``depends_on`` name resolves to a declared package.
- No cycles. A cycle is reported with its members in order.
- Install order is topological, ties broken by declaration order.
"""

from __future__ import annotations

import heapq

from venvforge.core.errors import CycleError, MissingDependencyError
from venvforge.models.packages import Package


class DependencyGraph:
    """Directed acyclic graph of package dependencies.

    Built from a list of packages whose ``depends_on`` tuples name other
    packages in the same list.
    """

    def __init__(self, packages: list[Package]) -> None:
        self._packages: dict[str, Package] = {p.name: p for p in packages}
        # Forward edges: package -> packages it depends on
        self._dependencies: dict[str, list[str]] = {
            p.name: list(dict.fromkeys(p.depends_on)) for p in packages
        }
        # Reverse edges: package -> packages that depend on it
        self._dependents: dict[str, list[str]] = {p.name: [] for p in packages}
        for package in packages:
            for dep in self._dependencies[package.name]:
                if dep not in self._packages:
                    raise MissingDependencyError(
                        f"{package} depends on {dep!r}, which the manifest does not declare",
                        package=package.name,
                        stage="resolve",
                        details={"missing": dep},
                    )
                self._dependents[dep].append(package.name)

        self._order = self._topological_order()

    def _index(self, name: str) -> int:
        return self._packages[name].declaration_index

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm; ready packages are taken in declaration order."""
        in_degree = {name: len(deps) for name, deps in self._dependencies.items()}
        ready = [(self._index(n), n) for n, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        order: list[str] = []

        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for dependent in self._dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (self._index(dependent), dependent))

        if len(order) != len(self._packages):
            remaining = {n for n, deg in in_degree.items() if deg > 0}
            raise CycleError(self._find_cycle(remaining), stage="resolve")
        return order

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        """Return one cycle among the nodes Kahn's algorithm could not order.

        Every remaining node has an unresolved dependency that is itself
        remaining, so walking dependencies must revisit a node.
        """
        start = min(remaining, key=self._index)
        path: list[str] = []
        seen: dict[str, int] = {}
        node = start
        while node not in seen:
            seen[node] = len(path)
            path.append(node)
            node = next(
                dep for dep in self._dependencies[node] if dep in remaining
            )
        return path[seen[node]:] + [node]

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    @property
    def order(self) -> list[str]:
        """Return all package names in install order."""
        return list(self._order)

    def get_package(self, name: str) -> Package:
        return self._packages[name]

    @property
    def edges(self) -> list[tuple[str, str]]:
        """(dependent, dependency) pairs in install order of the dependent."""
        return [
            (name, dep)
            for name in self._order
            for dep in self._dependencies[name]
        ]

