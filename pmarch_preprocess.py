# =========================
# Perfect matching 정규화 / 번호 부여 & port-type 대칭 필터 (전처리)
# =========================
from typing import Iterable, List, Sequence, Tuple

import numpy as np

def count_perfect_matchings(num_ports: int) -> int:
    """완전 그래프 위의 완전 매칭 수 (n-1)!! (홀수면 0)"""
    if num_ports % 2:
        return 0
    total = 1
    for k in range(num_ports - 1, 0, -2):
        total *= k
    return total

def _as_pairs(row: Sequence[int]) -> List[Tuple[int, int]]:
    """[a1, b1, a2, b2, ...] -> 정렬된 (min, max) 쌍 리스트"""
    row = [int(v) for v in row]
    if len(row) % 2:
        raise ValueError(f"matching must have an even number of entries, got {len(row)}")
    return sorted((min(a, b), max(a, b)) for a, b in zip(row[0::2], row[1::2]))

def sort_as_perfect_matching(M: np.ndarray) -> np.ndarray:
    """
    각 행을 표준형으로: 쌍 안은 오름차순, 쌍끼리는 첫 원소 오름차순.
    탐색 순서와 무관하게 같은 매칭은 같은 행이 됨.
    """
    M = np.asarray(M)
    if M.size == 0:
        return M.copy()
    n = M.shape[1] // 2
    pairs = M.reshape(M.shape[0], n, 2)
    pairs = np.sort(pairs, axis=2)
    order = np.argsort(pairs[:, :, 0], axis=1, kind="stable")
    pairs = np.take_along_axis(pairs, order[:, :, None], axis=1)
    return pairs.reshape(M.shape[0], 2 * n)

def perfect_matching_rank(row: Sequence[int]) -> int:
    """
    Mixed-radix 순위: 남은 포트 중 가장 작은 포트의 짝이 몇 번째 후보인지를
    자릿수로 사용 (radix = n-1, n-3, ..., 1).
    0 .. (n-1)!!-1 로의 전단사이고 쌍/포트 순서와 무관.
    """
    pairs = _as_pairs(row)
    remaining = sorted(p for pair in pairs for p in pair)
    if len(set(remaining)) != len(remaining):
        raise ValueError("a port appears more than once in the matching")
    partner = {}
    for a, b in pairs:
        partner[a] = b; partner[b] = a
    rank = 0
    while remaining:
        first = remaining.pop(0)
        digit = remaining.index(partner[first])
        rank = rank * (len(remaining)) + digit
        remaining.pop(digit)
    return rank

def perfect_matching_unrank(rank: int, ports: Iterable[int]) -> List[int]:
    """perfect_matching_rank의 역함수. 표준형 행을 반환"""
    remaining = sorted(int(p) for p in ports)
    npm = count_perfect_matchings(len(remaining))
    if not 0 <= rank < max(npm, 1):
        raise ValueError(f"rank {rank} out of range for {len(remaining)} ports")
    # 자릿수는 앞쪽(가장 큰 자리)부터 소비
    radices = list(range(len(remaining) - 1, 0, -2))
    digits = []
    for radix in reversed(radices):
        digits.append(rank % radix)
        rank //= radix
    digits.reverse()
    row = []
    for digit in digits:
        first = remaining.pop(0)
        row += [first, remaining.pop(digit)]
    return row

def rank_matchings(M: np.ndarray) -> List[int]:
    """모든 행의 perfect matching number (파이썬 int, 오버플로 없음)"""
    return [perfect_matching_rank(row) for row in np.asarray(M)]

def initial_port_iso_filter(M: np.ndarray, I: Sequence[int], phi: np.ndarray) -> Tuple[np.ndarray, List[int]]:
    """
    입력: 매칭 행렬 M, 각 행의 번호 I, 포트 -> 컴포넌트 매핑 phi
    출력: 컴포넌트 그래프가 완전히 같은 매칭 중 처음 발견된 것만 남긴 (M, I)
    같은 인스턴스의 포트끼리 자리를 바꾼 매칭만 제거하므로 이후 동형 판정에서
    살아남을 그래프를 잃지 않음.
    """
    M = np.asarray(M)
    if M.shape[0] == 0:
        return M, list(I)
    phi = np.asarray(phi, dtype=np.int64)
    Msum = phi[M.astype(np.int64)]
    n = int(phi.max()) + 1
    # 쌍마다 순서 없는 코드, 행 안에서 정렬
    lo = np.minimum(Msum[:, 0::2], Msum[:, 1::2])
    hi = np.maximum(Msum[:, 0::2], Msum[:, 1::2])
    P = np.sort(n * hi + lo, axis=1)
    _, IA = np.unique(P, axis=0, return_index=True)
    IA = np.sort(IA)  # 발견 순서 유지
    return M[IA], [I[k] for k in IA]
