# pmarch_classes.py
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

# ================================================================
# 예외 클래스
# ================================================================
class ConfigurationError(ValueError):
    """문제 정의가 잘못된 경우 (홀수 포트 수, 정의되지 않은 타입 참조 등). 탐색 전에 즉시 발생."""

class OracleUnavailable(ConfigurationError):
    """동형성 검사 백엔드를 불러올 수 없는 경우."""

class EnumerationCapReached(Exception):
    """완전 매칭 수가 max_candidates를 넘은 경우. 탐색 내부에서만 사용되고 MatchingSet.cap_reached로 보고됨."""

# ================================================================
# 옵션 열거형
# ================================================================
class IsoMethod(str, Enum):
    NETWORKX = "networkx"
    IGRAPH = "igraph"
    NONE = "none"

class Verbosity(IntEnum):
    SILENT = 0
    MINIMAL = 1
    VERBOSE = 2

LINE_FORBID = 1
LINE_REQUIRE = 2

# ================================================================
# 문제 정의
# ================================================================
@dataclass(frozen=True)
class ComponentType:
    name: str; ports: int; count: int
    # mandatory: stranded 제거 시 절대 지우지 않는 컴포넌트
    mandatory: bool = False
    # unique: 각 포트가 서로 다른 이웃과 연결되어야 함 (simple graph degree == ports)
    unique: bool = False

@dataclass(frozen=True)
class LineConstraint:
    first: str; second: str; kind: str = "forbid"

@dataclass
class Problem:
    components: List[ComponentType]
    compatibility: List[Tuple[str, str]]
    line_constraints: List[LineConstraint] = field(default_factory=list)
    self_loops: bool = False
    connection_check: Optional[bool] = None

    @property
    def type_names(self) -> List[str]:
        return [c.name for c in self.components]

    @property
    def num_ports(self) -> int:
        return sum(c.ports * c.count for c in self.components)

    @property
    def num_components(self) -> int:
        return sum(c.count for c in self.components)

@dataclass
class RunOptions:
    max_candidates: int = 1_000_000
    parallelism: int = 0
    filter_enabled: bool = True
    iso_method: IsoMethod = IsoMethod.NETWORKX
    verbosity: Verbosity = Verbosity.MINIMAL
    algorithm: str = "tree"
    trace: bool = False
    render: bool = False

# ================================================================
# 전개된 포트 모델 (모든 후보가 읽기 전용으로 공유)
# ================================================================
@dataclass(frozen=True)
class PortModel:
    A: np.ndarray               # (Np, Np) 포트 호환 행렬
    phi: np.ndarray             # 포트 -> 소속 컴포넌트
    port_type: np.ndarray       # 포트 -> 컴포넌트 타입 인덱스
    type_names: Tuple[str, ...]
    type_adj: np.ndarray        # (Nt, Nt) 축약 호환 행렬
    labels: Tuple[str, ...]     # 컴포넌트별 타입 (coloring)
    names: Tuple[str, ...]      # 컴포넌트 인스턴스 이름
    port_counts: np.ndarray
    mandatory: np.ndarray
    unique: np.ndarray
    B: Optional[np.ndarray] = None
    connection_check: bool = False
    removed: Tuple[int, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def num_ports(self) -> int:
        return int(self.A.shape[0])

    @property
    def num_components(self) -> int:
        return len(self.labels)

    @property
    def line_check(self) -> bool:
        return self.B is not None

# ================================================================
# 파이프라인 결과
# ================================================================
@dataclass
class MatchingSet:
    M: np.ndarray
    cap_reached: bool = False
    n_perfect: int = 0
    I: List[int] = field(default_factory=list)
    trace: Optional[Any] = None

    def __len__(self) -> int:
        return int(self.M.shape[0])

@dataclass
class FeasibleGraph:
    adjacency: np.ndarray
    labels: Tuple[str, ...]
    names: Tuple[str, ...]
    index: int
    matching: Tuple[int, ...] = ()
    removed: Tuple[int, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def simple_adjacency(self) -> np.ndarray:
        """self-loop, multi-edge를 제거한 0/1 인접 행렬"""
        A = (self.adjacency + self.adjacency.T) > 0
        np.fill_diagonal(A, False)
        return A.astype(np.int8)

    @property
    def num_edges(self) -> int:
        return int(np.triu(self.adjacency).sum())

@dataclass
class RunStats:
    n_perfect: int = 0
    enumerated: int = 0
    cap_reached: bool = False
    after_filter: int = 0
    feasible: int = 0
    infeasible: Dict[str, int] = field(default_factory=dict)
    final: int = 0
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def elapsed(self) -> float:
        return sum(self.timings.values())

@dataclass
class SynthesisResult:
    graphs: List[FeasibleGraph]
    stats: RunStats
    port_model: Optional[PortModel] = None

    def __len__(self) -> int:
        return len(self.graphs)

# (port_model, adjacency, infeasible) -> (port_model', adjacency', infeasible')
CustomCheck = Callable[[PortModel, np.ndarray, bool], Tuple[PortModel, np.ndarray, bool]]
