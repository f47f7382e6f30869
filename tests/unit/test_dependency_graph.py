"""Tests for the DependencyGraph — topological order, ties, cycles."""

from __future__ import annotations

import pytest

from venvforge.core.dependency_graph import DependencyGraph
from venvforge.core.errors import CycleError, MissingDependencyError


def _assert_topological(graph: DependencyGraph) -> None:
    position = {name: i for i, name in enumerate(graph.order)}
    for dependent, dependency in graph.edges:
        assert position[dependency] < position[dependent], f"{dependency} after {dependent}"


class TestDependencyGraph:
    def test_dependencies_come_first(self, make_package):
        graph = DependencyGraph([
            make_package("app", ("web", "db"), index=0),
            make_package("web", ("core",), index=1),
            make_package("db", ("core",), index=2),
            make_package("core", (), index=3),
        ])
        assert graph.order[0] == "core"
        assert graph.order[-1] == "app"
        _assert_topological(graph)

    def test_ties_broken_by_declaration_order(self, make_package):
        graph = DependencyGraph([
            make_package("app", ("z", "a", "m"), index=0),
            make_package("z", (), index=1),
            make_package("a", (), index=2),
            make_package("m", (), index=3),
        ])
        assert graph.order == ["z", "a", "m", "app"]

    def test_order_is_deterministic(self, make_package):
        packages = [
            make_package("app", ("b", "c"), index=0),
            make_package("b", ("c",), index=1),
            make_package("c", (), index=2),
        ]
        assert DependencyGraph(packages).order == DependencyGraph(list(reversed(packages))).order

    def test_two_node_cycle(self, make_package):
        with pytest.raises(CycleError) as excinfo:
            DependencyGraph([
                make_package("app", ("a", "b"), index=0),
                make_package("a", ("b",), index=1),
                make_package("b", ("a",), index=2),
            ])
        assert excinfo.value.cycle == ["a", "b", "a"]
        assert "a -> b -> a" in str(excinfo.value)
        assert excinfo.value.exit_code == 14

    def test_self_cycle(self, make_package):
        with pytest.raises(CycleError) as excinfo:
            DependencyGraph([make_package("a", ("a",), index=0)])
        assert excinfo.value.cycle == ["a", "a"]

    def test_missing_dependency(self, make_package):
        with pytest.raises(MissingDependencyError) as excinfo:
            DependencyGraph([make_package("app", ("ghost",))])
        assert excinfo.value.details["missing"] == "ghost"

    def test_edges_follow_install_order(self, make_package):
        graph = DependencyGraph([
            make_package("app", ("web",), index=0),
            make_package("web", ("core",), index=1),
            make_package("core", (), index=2),
        ])
        assert graph.order == ["core", "web", "app"]
        assert graph.edges == [("web", "core"), ("app", "web")]
