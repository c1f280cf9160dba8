# pmarch_feasibility.py
from collections import Counter
from concurrent.futures import ProcessPoolExecutor
from dataclasses import replace
from functools import partial
from typing import Dict, List, Optional, Sequence, Set, Tuple

import networkx as nx
import numpy as np

from pmarch_classes import CustomCheck, FeasibleGraph, LINE_FORBID, LINE_REQUIRE, PortModel

def build_component_adjacency(row: Sequence[int], phi: np.ndarray, num_components: int) -> np.ndarray:
    """포트 쌍을 phi로 컴포넌트 쌍에 매핑한 대칭 multigraph 인접 행렬 (대각은 self-loop 수)"""
    row = np.asarray(row, dtype=np.int64)
    Icc = phi[row[0::2]]; Jcc = phi[row[1::2]]
    Am = np.zeros((num_components, num_components), dtype=np.int64)
    np.add.at(Am, (Icc, Jcc), 1)
    np.add.at(Am, (Jcc, Icc), 1)
    diag = np.arange(num_components)
    Am[diag, diag] //= 2  # self-loop은 양방향으로 두 번 더해짐
    return Am

def remove_stranded(port_model: PortModel, Am: np.ndarray) -> Tuple[np.ndarray, PortModel, bool]:
    """
    연결이 하나도 없는 컴포넌트(stranded)를 제거.
    mandatory 컴포넌트가 있으면 모두 같은 연결 요소에 있어야 하고 (아니면 infeasible),
    그 요소 밖의 컴포넌트는 전부 stranded로 제거.
    반환: (축소된 Am, 후보별 port model, infeasible 여부)
    """
    off = Am.copy()
    np.fill_diagonal(off, 0)
    keep = (off.sum(axis=1) + np.diag(Am)) > 0

    mandatory = np.asarray(port_model.mandatory, dtype=bool)
    if mandatory.any():
        G = nx.from_numpy_array(off)
        members = np.flatnonzero(mandatory).tolist()
        bin_nodes = nx.node_connected_component(G, members[0])
        if any(m not in bin_nodes for m in members):
            return Am, port_model, True
        keep = np.isin(np.arange(off.shape[0]), list(bin_nodes))

    if not keep.any():
        return Am, port_model, True
    if keep.all():
        return Am, port_model, False

    idx = np.flatnonzero(keep)
    removed = tuple(int(k) for k in np.flatnonzero(~keep))
    pp = replace(
        port_model,
        labels=tuple(port_model.labels[k] for k in idx),
        names=tuple(port_model.names[k] for k in idx),
        port_counts=port_model.port_counts[idx],
        mandatory=port_model.mandatory[idx],
        unique=port_model.unique[idx],
        B=None if port_model.B is None else port_model.B[np.ix_(idx, idx)],
        removed=removed,
        metadata=dict(port_model.metadata),
    )
    return Am[np.ix_(idx, idx)], pp, False

def check_connection_counts(Am: np.ndarray, port_model: PortModel) -> bool:
    """unique 컴포넌트의 simple graph degree가 포트 수와 같은지"""
    A = (Am + Am.T) > 0
    np.fill_diagonal(A, False)
    degree = A.sum(axis=0)
    unique = np.asarray(port_model.unique, dtype=bool)
    return bool(np.all(degree[unique] == np.asarray(port_model.port_counts)[unique]))

def _line_members(off: np.ndarray, port_counts: np.ndarray, start: int) -> Set[int]:
    """start와 같은 line 위의 컴포넌트: 내부 정점이 모두 2-포트(pass-through)인 경로로 닿는 정점"""
    members, seen, stack = set(), {start}, [start]
    while stack:
        u = stack.pop()
        for v in np.flatnonzero(off[u]).tolist():
            if v in seen:
                continue
            seen.add(v); members.add(v)
            if port_counts[v] == 2:
                stack.append(v)
    return members

def check_line_constraints(Am: np.ndarray, B: np.ndarray, port_counts: np.ndarray) -> bool:
    """
    B[u, v] == LINE_FORBID: u, v가 같은 line 위에 있으면 안 됨
    B[u, v] == LINE_REQUIRE: u의 line 위에 required 상대가 하나 이상 있어야 함
    """
    off = Am.copy()
    np.fill_diagonal(off, 0)
    port_counts = np.asarray(port_counts)
    for u in np.flatnonzero(B.any(axis=1)).tolist():
        line = _line_members(off, port_counts, u)
        forbid = np.flatnonzero(B[u] == LINE_FORBID).tolist()
        if any(v in line for v in forbid):
            return False
        require = np.flatnonzero(B[u] == LINE_REQUIRE).tolist()
        if require and not any(v in line for v in require):
            return False
    return True

def check_candidate(row: Sequence[int], index: int, port_model: PortModel,
                    custom_check: Optional[CustomCheck] = None) -> Tuple[Optional[FeasibleGraph], Optional[str]]:
    """
    후보 하나의 실현 가능성 검사. 앞 단계가 infeasible이면 뒤 단계는 실행하지 않음.
    반환: (FeasibleGraph 또는 None, 실패한 검사 이름 또는 None)
    """
    pp = port_model
    Am = build_component_adjacency(row, pp.phi, pp.num_components)

    # 1. stranded 컴포넌트 제거
    Am, pp, infeasible = remove_stranded(pp, Am)
    if infeasible:
        return None, "stranded"

    # 2. 연결 수 검사 (unique 연결 요구)
    if pp.connection_check and not check_connection_counts(Am, pp):
        return None, "connections"

    # 3. line-connectivity 검사
    if pp.line_check and not check_line_constraints(Am, pp.B, pp.port_counts):
        return None, "lines"

    # 4. 사용자 정의 검사: infeasible -> feasible로 되돌릴 수 없음
    if custom_check is not None:
        if pp is port_model:
            pp = replace(pp, metadata=dict(pp.metadata))
        pp, Am, flag = custom_check(pp, Am, infeasible)
        infeasible = infeasible or bool(flag)
        if infeasible:
            return None, "custom"

    graph = FeasibleGraph(
        adjacency=np.asarray(Am),
        labels=tuple(pp.labels),
        names=tuple(pp.names),
        index=int(index),
        matching=tuple(int(p) for p in row),
        removed=tuple(pp.removed),
        metadata=dict(pp.metadata),
    )
    return graph, None

def evaluate_candidates(M: np.ndarray, I: Sequence[int], port_model: PortModel,
                        custom_check: Optional[CustomCheck] = None,
                        parallelism: int = 0) -> Tuple[List[FeasibleGraph], Dict[str, int]]:
    """
    모든 후보에 check_candidate 적용. parallelism > 0이면 프로세스 풀 사용
    (custom_check는 pickle 가능한 모듈 수준 함수여야 함).
    반환: (feasible 그래프 목록(입력 순서), 검사별 infeasible 수)
    """
    work = partial(check_candidate, port_model=port_model, custom_check=custom_check)
    if parallelism > 0 and len(M) > 1:
        chunksize = max(1, len(M) // (parallelism * 4))
        with ProcessPoolExecutor(max_workers=parallelism) as executor:
            results = list(executor.map(work, M, I, chunksize=chunksize))
    else:
        results = [work(row, index) for row, index in zip(M, I)]

    graphs, failures = [], Counter()
    for graph, failed in results:
        if graph is None:
            failures[failed] += 1
        else:
            graphs.append(graph)
    return graphs, dict(failures)
