# pmarch_iso.py
"""
Colored graph isomorphism 중복 제거.

전략:
- 값싼 필요조건 (label, degree, self-loop 수)의 정렬된 multiset으로 bucket 분류
- bucket 안에서만 외부 oracle (networkx / igraph VF2)로 정확한 동형 판정
- bucket별 대표(처음 본 그래프)를 한 곳에서 병합해 입력 순서 유지
"""
import importlib
import warnings
from collections import defaultdict
from concurrent.futures import ProcessPoolExecutor
from functools import partial
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from pmarch_classes import ConfigurationError, FeasibleGraph, IsoMethod, OracleUnavailable, Verbosity

Oracle = Callable[[FeasibleGraph, FeasibleGraph], bool]

def _require(module_name: str, method: IsoMethod):
    try:
        return importlib.import_module(module_name)
    except ImportError as err:
        raise OracleUnavailable(
            f"iso_method='{method.value}' needs the '{module_name}' package, which could not be imported") from err

class NetworkXOracle:
    """networkx VF2: node label과 edge multiplicity(weight)를 모두 일치시키는 동형"""
    method = IsoMethod.NETWORKX

    def __init__(self):
        _require("networkx", self.method)

    @staticmethod
    def to_networkx(graph: FeasibleGraph):
        import networkx as nx
        G = nx.Graph()
        Am = graph.adjacency
        for k, label in enumerate(graph.labels):
            G.add_node(k, label=label)
        for i, j in zip(*np.nonzero(np.triu(Am))):
            G.add_edge(int(i), int(j), weight=int(Am[i, j]))
        return G

    def __call__(self, a: FeasibleGraph, b: FeasibleGraph) -> bool:
        import networkx as nx
        from networkx.algorithms.isomorphism import categorical_edge_match, categorical_node_match
        return nx.is_isomorphic(
            self.to_networkx(a), self.to_networkx(b),
            node_match=categorical_node_match("label", None),
            edge_match=categorical_edge_match("weight", 0),
        )

class IGraphOracle:
    """python-igraph VF2: self-loop 수는 vertex color에, multiplicity는 edge color에 인코딩"""
    method = IsoMethod.IGRAPH

    def __init__(self):
        _require("igraph", self.method)

    def __call__(self, a: FeasibleGraph, b: FeasibleGraph) -> bool:
        import igraph as ig
        colors = {}

        def build(graph: FeasibleGraph):
            Am = graph.adjacency
            n = Am.shape[0]
            vertex_colors = [colors.setdefault((graph.labels[k], int(Am[k, k])), len(colors)) for k in range(n)]
            edges, edge_colors = [], []
            for i, j in zip(*np.nonzero(np.triu(Am, k=1))):
                edges.append((int(i), int(j))); edge_colors.append(int(Am[i, j]))
            return ig.Graph(n=n, edges=edges), vertex_colors, edge_colors

        g1, c1, e1 = build(a)
        g2, c2, e2 = build(b)
        if g1.vcount() != g2.vcount() or g1.ecount() != g2.ecount():
            return False
        return g1.isomorphic_vf2(g2, color1=c1, color2=c2, edge_color1=e1, edge_color2=e2)

ORACLES = {IsoMethod.NETWORKX: NetworkXOracle, IsoMethod.IGRAPH: IGraphOracle}
ALIASES = {"oracle_a": IsoMethod.NETWORKX, "oracle_b": IsoMethod.IGRAPH, "python": IsoMethod.IGRAPH}

def parse_iso_method(method: Union[IsoMethod, str]) -> IsoMethod:
    if isinstance(method, str) and method.lower() in ALIASES:
        return ALIASES[method.lower()]
    try:
        return IsoMethod(method.lower() if isinstance(method, str) else method)
    except ValueError:
        raise ConfigurationError(
            f"unknown iso_method '{method}', expected one of {[m.value for m in IsoMethod]}") from None

def resolve_oracle(method: Union[IsoMethod, str]) -> Optional[Oracle]:
    """탐색 시작 전에 호출: backend가 없으면 OracleUnavailable. NONE이면 None"""
    method = parse_iso_method(method)
    if method is IsoMethod.NONE:
        return None
    return ORACLES[method]()

def degree_signature(graph: FeasibleGraph) -> Tuple[Tuple[str, int, int], ...]:
    """동형이기 위한 필요조건: (타입, degree, self-loop 수)의 multiset"""
    Am = graph.adjacency
    loops = np.diag(Am)
    degree = Am.sum(axis=1) + loops
    return tuple(sorted(zip(graph.labels, degree.tolist(), loops.tolist())))

def _group_bucket(graphs: List[FeasibleGraph], oracle: Oracle) -> List[List[int]]:
    classes: List[List[int]] = []
    for k, graph in enumerate(graphs):
        for members in classes:
            if oracle(graphs[members[0]], graph):
                members.append(k)
                break
        else:
            classes.append([k])
    return classes

def group_colored_isomorphs(graphs: List[FeasibleGraph], oracle: Oracle, parallelism: int = 0) -> List[List[int]]:
    """동치류 목록 (입력 인덱스). 각 동치류의 첫 원소가 대표이고, 대표 순으로 정렬"""
    buckets = defaultdict(list)
    for k, graph in enumerate(graphs):
        buckets[degree_signature(graph)].append(k)
    bucket_indices = list(buckets.values())
    bucket_graphs = [[graphs[k] for k in idxs] for idxs in bucket_indices]

    if parallelism > 0 and len(bucket_graphs) > 1:
        with ProcessPoolExecutor(max_workers=parallelism) as executor:
            local = list(executor.map(partial(_group_bucket, oracle=oracle), bucket_graphs))
    else:
        local = [_group_bucket(bg, oracle) for bg in bucket_graphs]

    # 병합은 한 곳에서만
    classes = [[idxs[k] for k in members] for idxs, bucket in zip(bucket_indices, local) for members in bucket]
    classes.sort(key=lambda members: members[0])
    return classes

def remove_colored_isomorphs(graphs: List[FeasibleGraph],
                             method: Union[IsoMethod, str] = IsoMethod.NETWORKX,
                             oracle: Optional[Oracle] = None,
                             parallelism: int = 0,
                             verbosity: Verbosity = Verbosity.MINIMAL) -> List[FeasibleGraph]:
    """서로 colored-isomorphic하지 않은 그래프만 남김 (동치류마다 처음 본 그래프)"""
    method = parse_iso_method(method)
    if method is IsoMethod.NONE:
        warnings.warn("colored isomorphisms may be present; pick an iso_method to remove them", RuntimeWarning)
        return list(graphs)
    if not graphs:
        return []

    if oracle is None:
        oracle = resolve_oracle(method)
    classes = group_colored_isomorphs(graphs, oracle, parallelism)
    if verbosity >= Verbosity.VERBOSE:
        print(f"   - 동형 제거: {len(graphs)}개 -> {len(classes)}개 (oracle: {method.value})")
    return [graphs[members[0]] for members in classes]
