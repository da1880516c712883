"""
Tests for the in-memory active-edge graph used by cycle detection.
"""

import pytest

from swap_engine.services.targeting_graph import ActiveGraph


def test_cycle_if_added_reports_path_from_target_to_source():
    """A -> B -> C exists; adding C -> A closes [A, B, C]."""
    graph = ActiveGraph([(1, 2), (2, 3)])
    assert graph.cycle_if_added(3, 1) == [1, 2, 3]


def test_two_cycle():
    graph = ActiveGraph([(1, 2)])
    assert graph.cycle_if_added(2, 1) == [1, 2]


def test_no_cycle_for_unrelated_edge():
    graph = ActiveGraph([(1, 2), (2, 3)])
    assert graph.cycle_if_added(1, 3) is None
    assert graph.cycle_if_added(4, 1) is None


def test_self_edge_is_a_cycle_of_one():
    assert ActiveGraph().cycle_if_added(7, 7) == [7]


def test_find_path_through_branches():
    graph = ActiveGraph([(1, 2), (1, 3), (3, 4), (4, 5), (2, 6)])
    assert graph.find_path(1, 5) == [1, 3, 4, 5]
    assert graph.find_path(5, 1) is None


def test_diamond_expands_each_listing_once():
    # 1 -> {2, 3} -> 4 -> 5; 4 is reachable twice but visited once
    graph = ActiveGraph([(1, 2), (1, 3), (2, 4), (3, 4), (4, 5)])
    assert graph.find_path(1, 5) == [1, 2, 4, 5]
    assert graph.node_count == 5


def test_long_chain_does_not_recurse():
    n = 5000
    graph = ActiveGraph((i, i + 1) for i in range(1, n))
    cycle = graph.cycle_if_added(n, 1)
    assert cycle[0] == 1
    assert cycle[-1] == n
    assert len(cycle) == n


def test_traversal_bound_is_enforced():
    graph = ActiveGraph((i, i + 1) for i in range(1, 20))
    with pytest.raises(RuntimeError):
        graph.find_path(1, 20, limit=5)


def test_successors():
    graph = ActiveGraph([(1, 2), (1, 3)])
    assert sorted(graph.successors(1)) == [2, 3]
    assert graph.successors(99) == []


def test_find_cycle_on_existing_graph():
    assert ActiveGraph([(1, 2), (2, 3)]).find_cycle() is None
    assert sorted(ActiveGraph([(1, 2), (2, 3), (3, 1)]).find_cycle()) == [1, 2, 3]
