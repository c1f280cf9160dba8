import random

import numpy as np
import pytest

from pmarch_classes import ComponentType, LINE_FORBID, LINE_REQUIRE, LineConstraint, Problem, RunOptions, Verbosity
from pmarch_core import build_port_model, generate_feasible_graphs
from pmarch_feasibility import (
    build_component_adjacency, check_candidate, check_line_constraints, evaluate_candidates, remove_stranded
)
from pmarch_preprocess import rank_matchings
from pmarch_solver import get_enumerator

def no_self_loops(pp, Am, infeasible):
    pp.metadata["loops"] = int(np.trace(Am))
    return pp, Am, bool(np.trace(Am) > 0)

def test_adjacency_halves_self_loops():
    phi = np.array([0, 0, 1, 1])
    assert build_component_adjacency([0, 1, 2, 3], phi, 2).tolist() == [[1, 0], [0, 1]]
    assert build_component_adjacency([0, 2, 1, 3], phi, 2).tolist() == [[0, 2], [2, 0]]

def test_required_degree_two_realized_as_one_is_infeasible(silent):
    problem = Problem(
        components=[ComponentType("X", 2, 1, unique=True), ComponentType("Y", 2, 1)],
        compatibility=[("X", "Y")],
    )
    result = generate_feasible_graphs(problem, silent)
    assert result.graphs == []
    assert result.stats.infeasible == {"connections": 1}

def test_required_degree_two_realized_as_two_is_feasible(silent):
    problem = Problem(
        components=[ComponentType("X", 2, 1, unique=True), ComponentType("Y", 1, 2)],
        compatibility=[("X", "Y")],
    )
    result = generate_feasible_graphs(problem, silent)
    assert len(result.graphs) == 1
    assert result.graphs[0].simple_adjacency.sum(axis=0).tolist() == [2, 1, 1]

def test_mandatory_components_in_different_bins_are_infeasible(silent):
    problem = Problem(
        components=[ComponentType("M", 1, 2, mandatory=True), ComponentType("S", 1, 2)],
        compatibility=[("M", "S")],
    )
    result = generate_feasible_graphs(problem, silent)
    assert result.graphs == []
    assert result.stats.infeasible == {"stranded": result.stats.after_filter}

def test_components_outside_the_mandatory_bin_are_stranded(silent):
    problem = Problem(
        components=[ComponentType("G", 1, 1, mandatory=True), ComponentType("L", 1, 1), ComponentType("V", 2, 2)],
        compatibility=[("G", "L"), ("V", "V")],
    )
    result = generate_feasible_graphs(problem, silent)
    assert len(result.graphs) == 1
    graph = result.graphs[0]
    assert graph.labels == ("G", "L")
    assert graph.names == ("G1", "L1")
    assert graph.removed == (2, 3)
    assert graph.adjacency.tolist() == [[0, 1], [1, 0]]

def test_remove_stranded_keeps_shared_model_untouched(hydraulic):
    pm = build_port_model(hydraulic)
    Am = np.zeros((pm.num_components, pm.num_components), dtype=np.int64)
    Am[0, 1] = Am[1, 0] = 1
    reduced, pp, infeasible = remove_stranded(pm, Am)
    assert not infeasible
    assert reduced.shape == (2, 2)
    assert pp.removed == (2, 3, 4, 5)
    assert pm.removed == () and len(pm.labels) == 6

def test_line_constraints_follow_pass_through_components():
    Am = np.array([[0, 1, 0], [1, 0, 1], [0, 1, 0]])
    forbid = np.zeros((3, 3), dtype=np.int8)
    forbid[0, 2] = forbid[2, 0] = LINE_FORBID
    require = np.zeros((3, 3), dtype=np.int8)
    require[0, 2] = require[2, 0] = LINE_REQUIRE
    # 가운데가 2-포트면 같은 line
    assert not check_line_constraints(Am, forbid, np.array([1, 2, 1]))
    assert check_line_constraints(Am, require, np.array([1, 2, 1]))
    # 가운데가 허브면 line이 끊김
    assert check_line_constraints(Am, forbid, np.array([1, 3, 1]))
    assert not check_line_constraints(Am, require, np.array([1, 3, 1]))

def test_forbidden_line_removes_every_candidate(silent):
    problem = Problem(
        components=[ComponentType("S", 1, 1), ComponentType("L", 1, 1), ComponentType("V", 2, 1)],
        compatibility=[("S", "V"), ("V", "L")],
        line_constraints=[LineConstraint("S", "L", "forbid")],
    )
    result = generate_feasible_graphs(problem, silent)
    assert result.graphs == []
    assert result.stats.infeasible == {"lines": 1}

def test_custom_check_rejects_and_annotates(silent):
    problem = Problem(components=[ComponentType("A", 2, 2)], compatibility=[("A", "A")], self_loops=True)
    plain = generate_feasible_graphs(problem, silent)
    custom = generate_feasible_graphs(problem, silent, custom_check=no_self_loops)
    assert len(plain.graphs) == 2
    assert len(custom.graphs) == 1
    assert custom.stats.infeasible == {"custom": 1}
    assert custom.graphs[0].metadata == {"loops": 0}

def test_custom_check_never_runs_on_infeasible_candidates(silent):
    calls = []

    def accept_all(pp, Am, infeasible):
        calls.append(infeasible)
        return pp, Am, False

    problem = Problem(
        components=[ComponentType("X", 2, 1, unique=True), ComponentType("Y", 2, 1)],
        compatibility=[("X", "Y")],
    )
    result = generate_feasible_graphs(problem, silent, custom_check=accept_all)
    assert result.graphs == []
    assert calls == []

def test_check_candidate_keeps_matching_index(hydraulic):
    pm = build_port_model(hydraulic)
    M = get_enumerator("tree").enumerate(pm, cap=10_000).M
    I = rank_matchings(M)
    for row, index in zip(M, I):
        graph, failed = check_candidate(row, index, pm)
        if graph is not None:
            assert failed is None
            assert graph.index == index
            assert graph.matching == tuple(row.tolist())
            return
    pytest.fail("no feasible candidate")

def test_shuffling_candidates_keeps_the_feasible_subset(hydraulic):
    pm = build_port_model(hydraulic)
    M = get_enumerator("tree").enumerate(pm, cap=10_000).M
    I = rank_matchings(M)
    graphs, failures = evaluate_candidates(M, I, pm)
    order = list(range(len(M)))
    random.Random(7).shuffle(order)
    shuffled, shuffled_failures = evaluate_candidates(M[order], [I[k] for k in order], pm)
    assert {g.index for g in graphs} == {g.index for g in shuffled}
    assert failures == shuffled_failures
    assert len(graphs) + sum(failures.values()) == len(M)

def test_parallel_evaluation_matches_serial(hydraulic):
    pm = build_port_model(hydraulic)
    M = get_enumerator("tree").enumerate(pm, cap=10_000).M
    I = rank_matchings(M)
    serial, serial_failures = evaluate_candidates(M, I, pm, parallelism=0)
    parallel, parallel_failures = evaluate_candidates(M, I, pm, parallelism=2)
    assert [g.index for g in serial] == [g.index for g in parallel]
    assert serial_failures == parallel_failures

def test_connection_check_can_be_disabled(silent):
    problem = Problem(
        components=[ComponentType("X", 2, 1, unique=True), ComponentType("Y", 2, 1)],
        compatibility=[("X", "Y")],
        connection_check=False,
    )
    result = generate_feasible_graphs(problem, silent)
    assert len(result.graphs) == 1

def test_mandatory_bin_decides_what_is_stranded():
    problem = Problem(
        components=[ComponentType("M", 1, 2, mandatory=True), ComponentType("S", 1, 2)],
        compatibility=[("M", "M"), ("M", "S"), ("S", "S")],
    )
    pm = build_port_model(problem)
    # M1-M2, S1-S2: mandatory끼리 한 bin, S는 stranded
    Am = build_component_adjacency([0, 1, 2, 3], pm.phi, pm.num_components)
    reduced, pp, infeasible = remove_stranded(pm, Am)
    assert not infeasible
    assert pp.names == ("M1", "M2")
    assert pp.removed == (2, 3)
    assert reduced.tolist() == [[0, 1], [1, 0]]
    # M1-S1, M2-S2: mandatory가 서로 다른 bin
    Am = build_component_adjacency([0, 2, 1, 3], pm.phi, pm.num_components)
    assert remove_stranded(pm, Am)[2]
