import sys

import numpy as np
import pytest

from pmarch_classes import FeasibleGraph, IsoMethod, OracleUnavailable
from pmarch_core import generate_feasible_graphs
from pmarch_iso import (
    IGraphOracle, NetworkXOracle, degree_signature, group_colored_isomorphs,
    remove_colored_isomorphs, resolve_oracle
)

def graph(labels, edges, index=0):
    n = len(labels)
    Am = np.zeros((n, n), dtype=np.int64)
    for i, j in edges:
        Am[i, j] += 1
        if i != j:
            Am[j, i] += 1
    return FeasibleGraph(adjacency=Am, labels=tuple(labels),
                         names=tuple(f"{l}{k}" for k, l in enumerate(labels)), index=index)

def test_oracle_respects_colors():
    oracle = NetworkXOracle()
    b_center = graph("ABA", [(0, 1), (1, 2)])
    a_center = graph("AAB", [(0, 1), (1, 2)])
    relabeled = graph("BAA", [(0, 1), (0, 2)])
    assert not oracle(b_center, a_center)
    assert oracle(b_center, relabeled)

def test_oracle_respects_multiplicity_and_loops():
    oracle = NetworkXOracle()
    assert not oracle(graph("AB", [(0, 1), (0, 1)]), graph("AB", [(0, 1)]))
    assert not oracle(graph("AA", [(0, 0), (1, 1)]), graph("AA", [(0, 1)]))
    assert oracle(graph("AAB", [(0, 0), (0, 2), (1, 2)]), graph("ABA", [(2, 2), (1, 2), (0, 1)]))

def test_degree_signature_is_invariant_under_relabeling():
    assert degree_signature(graph("ABA", [(0, 1), (1, 2)])) == degree_signature(graph("BAA", [(0, 1), (0, 2)]))

def test_two_pairs_dedup_to_one(two_pairs, silent):
    graphs = generate_feasible_graphs(two_pairs, silent).graphs
    assert len(graphs) == 2
    unique = remove_colored_isomorphs(graphs, IsoMethod.NETWORKX, verbosity=silent.verbosity)
    assert [g.index for g in unique] == [graphs[0].index]

def test_dedup_is_a_partition(hydraulic, silent):
    graphs = generate_feasible_graphs(hydraulic, silent).graphs
    oracle = NetworkXOracle()
    unique = remove_colored_isomorphs(graphs, oracle=oracle, verbosity=silent.verbosity)
    assert 0 < len(unique) <= len(graphs)
    for a in range(len(unique)):
        for b in range(a + 1, len(unique)):
            assert not oracle(unique[a], unique[b])
    for g in graphs:
        assert sum(oracle(g, u) for u in unique) == 1

def test_classes_are_ordered_by_first_seen():
    graphs = [graph("AB", [(0, 1)], 0), graph("AA", [(0, 1)], 1), graph("BA", [(0, 1)], 2)]
    assert group_colored_isomorphs(graphs, NetworkXOracle()) == [[0, 2], [1]]

def test_parallel_grouping_matches_serial(hydraulic, silent):
    graphs = generate_feasible_graphs(hydraulic, silent).graphs
    oracle = NetworkXOracle()
    assert group_colored_isomorphs(graphs, oracle, parallelism=2) == group_colored_isomorphs(graphs, oracle)

def test_no_dedup_mode_warns():
    graphs = [graph("AB", [(0, 1)], 0), graph("BA", [(0, 1)], 1)]
    with pytest.warns(RuntimeWarning):
        kept = remove_colored_isomorphs(graphs, IsoMethod.NONE)
    assert [g.index for g in kept] == [0, 1]
    assert resolve_oracle("none") is None

def test_empty_input():
    assert remove_colored_isomorphs([], IsoMethod.NETWORKX) == []

def test_no_dedup_mode_warns_even_without_graphs():
    with pytest.warns(RuntimeWarning):
        assert remove_colored_isomorphs([], IsoMethod.NONE) == []

def test_missing_backend_is_a_configuration_failure(monkeypatch):
    monkeypatch.setitem(sys.modules, "igraph", None)
    with pytest.raises(OracleUnavailable):
        resolve_oracle(IsoMethod.IGRAPH)
    with pytest.raises(OracleUnavailable):
        resolve_oracle("oracle_b")

def test_igraph_oracle_agrees_with_networkx(hydraulic, silent):
    pytest.importorskip("igraph")
    graphs = generate_feasible_graphs(hydraulic, silent).graphs
    nx_oracle, ig_oracle = NetworkXOracle(), IGraphOracle()
    for a in graphs:
        for b in graphs:
            assert nx_oracle(a, b) == ig_oracle(a, b)
    assert ig_oracle(graph("AAB", [(0, 0), (0, 2), (1, 2)]), graph("ABA", [(2, 2), (1, 2), (0, 1)]))
    assert not ig_oracle(graph("AA", [(0, 0), (1, 1)]), graph("AA", [(0, 1)]))
