# ================================================================
# PMARCH: 포트 호환 그래프 위의 완전 매칭(perfect matching) 열거
# 트리 탐색 3종 + OR-Tools CP-SAT 열거, 모두 같은 매칭 집합을 반환
# ================================================================
from typing import Callable, Dict, List, Optional, Tuple

import networkx as nx
import numpy as np
from ortools.sat.python import cp_model

from pmarch_classes import (
    ConfigurationError, EnumerationCapReached, MatchingSet, PortModel, RunOptions, Verbosity
)
from pmarch_preprocess import count_perfect_matchings, rank_matchings, sort_as_perfect_matching

ProgressCallback = Callable[[int], None]

class SearchTrace:
    """탐색 트리 기록용 (옵션). parents[k] = k번 노드의 부모 노드, 0번은 루트"""
    def __init__(self):
        self.parents: List[int] = [-1]
        self.complete: List[int] = []

    def add(self, parent: int) -> int:
        self.parents.append(parent)
        return len(self.parents) - 1

    @property
    def num_nodes(self) -> int:
        return len(self.parents)

    def depth(self, node: int) -> int:
        d = 0
        while self.parents[node] >= 0:
            node = self.parents[node]; d += 1
        return d

def _new_buffer(num_ports: int, cap: int) -> Tuple[np.ndarray, int]:
    """min(완전 매칭 수, cap) 행으로 결과 버퍼를 미리 할당"""
    n_perfect = count_perfect_matchings(num_ports)
    n_rows = min(n_perfect, cap)
    return np.zeros((n_rows, num_ports), dtype=np.min_scalar_type(max(num_ports - 1, 0))), n_perfect

# ================================================================
# 전략 인터페이스
# ================================================================
class Enumerator:
    """모든 전략의 공통 계약. 실행마다 새 인스턴스를 사용 (탐색 상태를 인스턴스에 보관)"""
    name = "base"

    def enumerate(self, port_model: PortModel, cap: int,
                  progress: Optional[ProgressCallback] = None,
                  trace: Optional[SearchTrace] = None) -> MatchingSet:
        raise NotImplementedError

class TreeEnumerator(Enumerator):
    """가장 작은 미연결 포트를 고르고, 호환되는 미연결 포트마다 분기하는 DFS"""
    name = "tree"
    PROGRESS_DEPTH = 2

    def enumerate(self, port_model, cap, progress=None, trace=None):
        Np = port_model.num_ports
        self._M, n_perfect = _new_buffer(Np, cap)
        self._id = 0
        self._half = Np // 2
        self._neighbors = [np.flatnonzero(port_model.A[i]).tolist() for i in range(Np)]
        self._free = [True] * Np
        self._path: List[int] = []
        self._progress = progress
        self._done, self._last_pct = 0.0, -1
        self._trace = trace
        self._setup(port_model)

        cap_reached = False
        try:
            self._search(0, 1.0, 0)
        except EnumerationCapReached:
            cap_reached = True
        if progress is not None and not cap_reached and self._last_pct < 100:
            progress(100)
        return MatchingSet(M=self._M[:self._id].copy(), cap_reached=cap_reached, n_perfect=n_perfect)

    # --- 가지치기 훅: 하위 전략이 재정의 ---
    def _setup(self, port_model: PortModel):
        pass

    def _take(self, i: int, j: int) -> bool:
        return True

    def _release(self, i: int, j: int):
        pass

    def _record(self, node: int):
        if self._id >= self._M.shape[0]:
            raise EnumerationCapReached(f"more than {self._M.shape[0]} perfect matchings")
        self._M[self._id] = self._path
        self._id += 1
        if self._trace is not None:
            self._trace.complete.append(node)

    def _advance(self, share: float):
        if self._progress is None:
            return
        self._done += share
        pct = min(int(self._done * 100 + 1e-9), 100)
        if pct != self._last_pct:
            self._last_pct = pct
            self._progress(pct)

    def _search(self, depth: int, share: float, node: int):
        if depth == self._half:
            self._record(node)
            if depth <= self.PROGRESS_DEPTH:
                self._advance(share)
            return
        i = self._free.index(True)
        self._free[i] = False
        candidates = [j for j in self._neighbors[i] if self._free[j]]
        child_share = share / len(candidates) if candidates else 0.0
        for j in candidates:
            self._free[j] = False
            self._path += [i, j]
            if self._take(i, j):
                child = self._trace.add(node) if self._trace is not None else 0
                self._search(depth + 1, child_share, child)
            elif depth < self.PROGRESS_DEPTH:
                self._advance(child_share)
            self._release(i, j)
            del self._path[-2:]
            self._free[j] = True
        self._free[i] = True
        if depth == self.PROGRESS_DEPTH or (depth < self.PROGRESS_DEPTH and not candidates):
            self._advance(share)

class PropagatingTreeEnumerator(TreeEnumerator):
    """미연결 포트마다 남은 호환 상대 수를 유지하고, 0이 되는 순간 가지치기"""
    name = "tree_propagate"

    def _setup(self, port_model):
        self._avail = [len(nb) for nb in self._neighbors]

    def _take(self, i, j):
        ok = True
        for p in (i, j):
            for k in self._neighbors[p]:
                self._avail[k] -= 1
                if self._free[k] and self._avail[k] == 0:
                    ok = False
        return ok

    def _release(self, i, j):
        for p in (i, j):
            for k in self._neighbors[p]:
                self._avail[k] += 1

class MultiplicityTreeEnumerator(TreeEnumerator):
    """
    타입별 미연결 포트 수(multiplicity)로 가지치기:
      - 자기 타입과 연결 불가한 타입 t: free(t) <= sum(free(호환 타입))
      - 타입 호환 그래프의 연결 그룹마다 free 포트 수는 짝수
    """
    name = "tree_multiplicity"

    def _setup(self, port_model):
        T = np.asarray(port_model.type_adj, dtype=bool)
        Nt = T.shape[0]
        self._ptype = port_model.port_type.tolist()
        self._free_by_type = np.bincount(port_model.port_type, minlength=Nt).tolist()
        self._self_compat = [bool(T[t, t]) for t in range(Nt)]
        self._type_neighbors = [[s for s in np.flatnonzero(T[t]).tolist() if s != t] for t in range(Nt)]
        # 타입 호환 그래프의 연결 요소
        self._groups = [sorted(group) for group in nx.connected_components(nx.from_numpy_array(T.astype(np.int8)))]

    def _take(self, i, j):
        self._free_by_type[self._ptype[i]] -= 1
        self._free_by_type[self._ptype[j]] -= 1
        return self._counts_feasible()

    def _release(self, i, j):
        self._free_by_type[self._ptype[i]] += 1
        self._free_by_type[self._ptype[j]] += 1

    def _counts_feasible(self) -> bool:
        f = self._free_by_type
        for group in self._groups:
            if sum(f[t] for t in group) % 2:
                return False
        for t, n in enumerate(f):
            if n and not self._self_compat[t] and n > sum(f[s] for s in self._type_neighbors[t]):
                return False
        return True

# ================================================================
# CP-SAT 기반 열거
# ================================================================
class MatchingCollector(cp_model.CpSolverSolutionCallback):
    """해를 찾을 때마다 버퍼에 기록하고, 버퍼가 차면 탐색을 중단"""
    def __init__(self, pair_vars, buffer):
        super().__init__()
        self.__solution_count = 0
        self.__pair_vars = pair_vars
        self.__buffer = buffer
        self.cap_reached = False

    def on_solution_callback(self):
        if self.__solution_count >= self.__buffer.shape[0]:
            self.cap_reached = True
            self.StopSearch()
            return
        row = []
        for (i, j), var in self.__pair_vars.items():
            if self.Value(var): row += [i, j]
        self.__buffer[self.__solution_count] = row
        self.__solution_count += 1

    def solution_count(self): return self.__solution_count

class CpSatEnumerator(Enumerator):
    """포트 쌍마다 BoolVar, 포트마다 ExactlyOne. enumerate_all_solutions로 전체 열거"""
    name = "cpsat"

    def enumerate(self, port_model, cap, progress=None, trace=None):
        A = port_model.A
        Np = port_model.num_ports
        buffer, n_perfect = _new_buffer(Np, cap)
        if Np == 0 or not A.any(axis=1).all():
            # 상대가 없는 포트가 있으면 완전 매칭 없음
            if progress is not None: progress(100)
            return MatchingSet(M=buffer[:0].copy(), n_perfect=n_perfect)

        model = cp_model.CpModel()
        pair_vars: Dict[Tuple[int, int], cp_model.IntVar] = {}
        for i in range(Np):
            for j in range(i + 1, Np):
                if A[i, j]:
                    pair_vars[(i, j)] = model.NewBoolVar(f'pair_{i}_{j}')
        for p in range(Np):
            model.AddExactlyOne([var for (i, j), var in pair_vars.items() if p in (i, j)])

        solver = cp_model.CpSolver()
        solver.parameters.enumerate_all_solutions = True
        solver.parameters.num_workers = 1
        collector = MatchingCollector(pair_vars, buffer)
        solver.Solve(model, collector)
        if progress is not None and not collector.cap_reached:
            progress(100)
        return MatchingSet(M=buffer[:collector.solution_count()].copy(),
                           cap_reached=collector.cap_reached, n_perfect=n_perfect)

ENUMERATORS = {cls.name: cls for cls in (
    TreeEnumerator, PropagatingTreeEnumerator, MultiplicityTreeEnumerator, CpSatEnumerator)}

def get_enumerator(name: str) -> Enumerator:
    try:
        return ENUMERATORS[name]()
    except KeyError:
        raise ConfigurationError(
            f"unknown enumeration algorithm '{name}', expected one of {sorted(ENUMERATORS)}") from None

def _print_progress(pct: int):
    print(f"\r   - 탐색 진행률: {pct:3d}%", end="" if pct < 100 else "\n", flush=True)

def enumerate_matchings(port_model: PortModel, options: RunOptions,
                        progress: Optional[ProgressCallback] = None) -> MatchingSet:
    """설정된 전략으로 열거한 뒤 표준형 정렬 + perfect matching number 부여"""
    enumerator = get_enumerator(options.algorithm)
    trace = SearchTrace() if options.trace else None
    if progress is None and options.verbosity >= Verbosity.VERBOSE:
        progress = _print_progress

    if options.verbosity >= Verbosity.VERBOSE:
        print(f"\n🌳 완전 매칭 열거 시작 ({enumerator.name}, 포트 {port_model.num_ports}개)...")
    matchings = enumerator.enumerate(port_model, options.max_candidates, progress=progress, trace=trace)
    M = sort_as_perfect_matching(matchings.M)
    I = rank_matchings(M)
    # 번호 순으로 정렬해 탐색 순서와 무관한 결과 순서
    order = sorted(range(len(I)), key=I.__getitem__)
    matchings.M, matchings.I = M[order], [I[k] for k in order]
    matchings.trace = trace

    if matchings.cap_reached and options.verbosity >= Verbosity.MINIMAL:
        print(f"⚠️  완전 매칭 수가 max_candidates={options.max_candidates}를 넘어 "
              f"{len(matchings)}개에서 탐색을 중단했습니다.")
    if options.verbosity >= Verbosity.VERBOSE:
        print(f"   - 열거된 완전 매칭: {len(matchings)}개 (완전 그래프 기준 {matchings.n_perfect}개)")
    return matchings
