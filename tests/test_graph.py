"""Tests for mono_release.graph."""

from __future__ import annotations

import copy

import pytest

from mono_release.errors import CyclicDependency
from mono_release.graph import dependents_closure, find_cycle, reverse_deps, topo_sort


class TestTopoSort:
    def test_no_deps(self) -> None:
        result = topo_sort({"c": [], "a": [], "b": []})
        assert result == ["a", "b", "c"]  # alphabetical when no deps

    def test_linear_deps(self) -> None:
        result = topo_sort({"a": ["b"], "b": ["c"], "c": []})
        assert result == ["c", "b", "a"]

    def test_diamond_deps(self) -> None:
        graph = {
            "top": ["left", "right"],
            "left": ["bottom"],
            "right": ["bottom"],
            "bottom": [],
        }
        assert topo_sort(graph) == ["bottom", "left", "right", "top"]

    def test_ignores_deps_outside_graph(self) -> None:
        assert topo_sort({"a": ["requests"], "b": ["a"]}) == ["a", "b"]

    def test_duplicate_edges(self) -> None:
        assert topo_sort({"a": ["b", "b"], "b": []}) == ["b", "a"]

    def test_empty(self) -> None:
        assert topo_sort({}) == []

    def test_cycle_raises(self) -> None:
        with pytest.raises(CyclicDependency, match="cycle") as exc_info:
            topo_sort({"a": ["b"], "b": ["a"]})
        assert exc_info.value.cycle == ["a", "b", "a"]

    def test_three_way_cycle_raises(self) -> None:
        graph = {"a": ["b"], "b": ["c"], "c": ["a"], "d": []}
        with pytest.raises(CyclicDependency) as exc_info:
            topo_sort(graph)
        assert set(exc_info.value.cycle) == {"a", "b", "c"}

    def test_cycle_leaves_input_untouched(self) -> None:
        """A failed sort never mutates the graph it was given."""
        graph = {"a": ["b"], "b": ["a"], "c": ["a"]}
        before = copy.deepcopy(graph)
        with pytest.raises(CyclicDependency):
            topo_sort(graph)
        assert graph == before


class TestFindCycle:
    def test_acyclic(self) -> None:
        assert find_cycle({"a": ["b"], "b": []}) is None

    def test_self_loop(self) -> None:
        assert find_cycle({"a": ["a"]}) == ["a", "a"]


class TestDependents:
    def test_reverse_deps(self) -> None:
        assert reverse_deps({"a": ["b"], "b": [], "c": ["b"]}) == {
            "a": [],
            "b": ["a", "c"],
            "c": [],
        }

    def test_closure_is_transitive(self) -> None:
        graph = {"a": ["b"], "b": ["c"], "c": [], "d": []}
        assert dependents_closure(graph, ["c"]) == {"a", "b", "c"}

    def test_closure_of_leaf(self) -> None:
        graph = {"a": ["b"], "b": []}
        assert dependents_closure(graph, ["a"]) == {"a"}
