# pmarch_core.py
import json
import time
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from pmarch_classes import (
    ComponentType, ConfigurationError, CustomCheck, IsoMethod, LINE_FORBID, LINE_REQUIRE,
    LineConstraint, PortModel, Problem, RunOptions, RunStats, SynthesisResult, Verbosity
)
from pmarch_feasibility import evaluate_candidates
from pmarch_iso import parse_iso_method, remove_colored_isomorphs, resolve_oracle
from pmarch_preprocess import initial_port_iso_filter
from pmarch_solver import enumerate_matchings, get_enumerator

LINE_KINDS = {"forbid": LINE_FORBID, "require": LINE_REQUIRE}

# ================================================================
# 설정 로드
# ================================================================
def _parse_verbosity(value: Any) -> Verbosity:
    try:
        if isinstance(value, str):
            return Verbosity[value.upper()]
        return Verbosity(int(value))
    except (KeyError, ValueError):
        raise ConfigurationError(f"unknown verbosity '{value}', expected silent, minimal or verbose") from None

def _int_option(opts: Dict[str, Any], key: str, default: int) -> int:
    value = opts.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}")
    return value

def _flag(section: Dict[str, Any], key: str, default: Optional[bool]) -> Optional[bool]:
    """JSON true/false만 허용 ('false' 같은 문자열은 오류)"""
    value = section.get(key, default)
    if value is not default and not isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be true or false, got {value!r}")
    return value

def load_configuration(config_string: str) -> Tuple[Problem, RunOptions]:
    try:
        config = json.loads(config_string)
    except json.JSONDecodeError as err:
        raise ConfigurationError(f"config is not valid JSON: {err}") from err
    try:
        components = [ComponentType(**c) for c in config['components']]
        compatibility = [tuple(pair) for pair in config.get('compatibility', [])]
        line_constraints = [LineConstraint(*lc['types'], kind=lc.get('kind', 'forbid'))
                            for lc in config.get('line_constraints', [])]
    except (KeyError, TypeError) as err:
        raise ConfigurationError(f"malformed problem definition: {err!r}") from err
    problem = Problem(
        components=components, compatibility=compatibility, line_constraints=line_constraints,
        self_loops=_flag(config, 'self_loops', False),
        connection_check=_flag(config, 'connection_check', None),
    )

    opts, defaults = config.get('options', {}), RunOptions()
    options = RunOptions(
        max_candidates=_int_option(opts, 'max_candidates', defaults.max_candidates),
        parallelism=_int_option(opts, 'parallelism', defaults.parallelism),
        filter_enabled=_flag(opts, 'filter', defaults.filter_enabled),
        iso_method=parse_iso_method(opts.get('iso_method', defaults.iso_method)),
        verbosity=_parse_verbosity(opts.get('verbosity', defaults.verbosity)),
        algorithm=str(opts.get('algorithm', defaults.algorithm)),
        trace=_flag(opts, 'trace', defaults.trace),
        render=_flag(opts, 'render', defaults.render),
    )
    validate_options(options)
    if options.verbosity >= Verbosity.MINIMAL:
        print("✅ 설정 파일 로딩 완료!")
    return problem, options

def validate_options(options: RunOptions):
    if not isinstance(options.max_candidates, int) or options.max_candidates < 0:
        raise ConfigurationError(f"max_candidates must be a non-negative integer, got {options.max_candidates!r}")
    if not isinstance(options.parallelism, int) or options.parallelism < 0:
        raise ConfigurationError(f"parallelism must be a non-negative integer, got {options.parallelism!r}")
    get_enumerator(options.algorithm)
    options.iso_method = parse_iso_method(options.iso_method)

# ================================================================
# 포트 모델 생성
# ================================================================
def _validate_problem(problem: Problem):
    names = problem.type_names
    if not names:
        raise ConfigurationError("no component types declared")
    if len(set(names)) != len(names):
        raise ConfigurationError(f"duplicate component type names: {names}")
    for c in problem.components:
        if not c.name:
            raise ConfigurationError("component type name must not be empty")
        if not isinstance(c.ports, int) or c.ports < 0:
            raise ConfigurationError(f"{c.name}: ports must be a non-negative integer, got {c.ports!r}")
        if not isinstance(c.count, int) or c.count < 0:
            raise ConfigurationError(f"{c.name}: count must be a non-negative integer, got {c.count!r}")
    Np = problem.num_ports
    if Np == 0:
        raise ConfigurationError("the problem has no ports")
    if Np % 2:
        raise ConfigurationError(f"total port count {Np} is odd, no perfect matching exists")

def _type_index(problem: Problem, name: str, what: str) -> int:
    try:
        return problem.type_names.index(name)
    except ValueError:
        raise ConfigurationError(f"{what} references undeclared component type '{name}'") from None

def reduced_adjacency(problem: Problem) -> np.ndarray:
    """타입 수준 호환 행렬 (대칭)"""
    Nt = len(problem.components)
    T = np.zeros((Nt, Nt), dtype=bool)
    for pair in problem.compatibility:
        if len(pair) != 2:
            raise ConfigurationError(f"compatibility entries must be pairs, got {pair!r}")
        a = _type_index(problem, pair[0], "compatibility rule")
        b = _type_index(problem, pair[1], "compatibility rule")
        T[a, b] = T[b, a] = True
    return T

def expand_possible_adj(T: np.ndarray, port_type: np.ndarray, phi: np.ndarray, self_loops: bool = False) -> np.ndarray:
    """
    타입 블록을 모든 인스턴스의 모든 포트로 복제해 (Np, Np) 포트 호환 행렬 생성.
    같은 인스턴스의 포트끼리는 self_loops일 때만 호환. 대각은 항상 0.
    """
    A = T[np.ix_(port_type, port_type)].copy()
    if not self_loops:
        A[phi[:, None] == phi[None, :]] = False
    np.fill_diagonal(A, False)
    return A

def create_line_matrix(problem: Problem, comp_type: np.ndarray) -> np.ndarray:
    """line 제약을 컴포넌트 수준 대칭 행렬로 전개 (0: 없음, LINE_FORBID, LINE_REQUIRE)"""
    Nt = len(problem.components)
    Tb = np.zeros((Nt, Nt), dtype=np.int8)
    for lc in problem.line_constraints:
        a = _type_index(problem, lc.first, "line constraint")
        b = _type_index(problem, lc.second, "line constraint")
        if lc.kind not in LINE_KINDS:
            raise ConfigurationError(f"line constraint kind must be one of {sorted(LINE_KINDS)}, got '{lc.kind}'")
        Tb[a, b] = Tb[b, a] = LINE_KINDS[lc.kind]
    B = Tb[np.ix_(comp_type, comp_type)].copy()
    np.fill_diagonal(B, 0)
    return B

def build_port_model(problem: Problem) -> PortModel:
    _validate_problem(problem)
    comps = problem.components
    T = reduced_adjacency(problem)

    comp_type = np.repeat(np.arange(len(comps)), [c.count for c in comps])
    port_counts = np.array([comps[t].ports for t in comp_type], dtype=np.int64)
    phi = np.repeat(np.arange(len(comp_type)), port_counts)
    port_type = comp_type[phi]
    A = expand_possible_adj(T, port_type, phi, problem.self_loops)

    B = create_line_matrix(problem, comp_type) if problem.line_constraints else None
    unique = np.array([comps[t].unique for t in comp_type], dtype=bool)
    connection_check = problem.connection_check if problem.connection_check is not None else bool(unique.any())

    for arr in (A, phi, port_type, T, port_counts, B):
        if arr is not None:
            arr.setflags(write=False)
    return PortModel(
        A=A, phi=phi, port_type=port_type,
        type_names=tuple(problem.type_names), type_adj=T,
        labels=tuple(comps[t].name for t in comp_type),
        names=tuple(f"{c.name}{k + 1}" for c in comps for k in range(c.count)),
        port_counts=port_counts,
        mandatory=np.array([comps[t].mandatory for t in comp_type], dtype=bool),
        unique=unique,
        B=B,
        connection_check=bool(connection_check),
    )

# ================================================================
# 파이프라인
# ================================================================
def generate_feasible_graphs(problem: Problem, options: Optional[RunOptions] = None,
                             custom_check: Optional[CustomCheck] = None) -> SynthesisResult:
    """포트 모델 -> 완전 매칭 열거 -> port-type 필터 -> 실현 가능성 검사"""
    options = options or RunOptions()
    validate_options(options)
    stats = RunStats()
    loud, verbose = options.verbosity >= Verbosity.MINIMAL, options.verbosity >= Verbosity.VERBOSE

    start = time.perf_counter()
    port_model = build_port_model(problem)
    stats.timings['setup'] = time.perf_counter() - start
    if verbose:
        print(f"\n⚙️  포트 모델 생성: 컴포넌트 {port_model.num_components}개, 포트 {port_model.num_ports}개")

    start = time.perf_counter()
    matchings = enumerate_matchings(port_model, options)
    stats.timings['enumeration'] = time.perf_counter() - start
    stats.n_perfect, stats.enumerated, stats.cap_reached = matchings.n_perfect, len(matchings), matchings.cap_reached
    if len(matchings) == 0:
        if loud and not matchings.cap_reached:
            print("❌ 완전 매칭이 없습니다.")
        return SynthesisResult(graphs=[], stats=stats, port_model=port_model)

    M, I = matchings.M, matchings.I
    if options.filter_enabled:
        start = time.perf_counter()
        M, I = initial_port_iso_filter(M, I, port_model.phi)
        stats.timings['filter'] = time.perf_counter() - start
        if verbose:
            print(f"   - port-type 동형 필터 후 {len(M)}개 남음 ({stats.timings['filter']:.3f} s)")
    stats.after_filter = len(M)

    start = time.perf_counter()
    graphs, failures = evaluate_candidates(M, I, port_model, custom_check, options.parallelism)
    stats.timings['feasibility'] = time.perf_counter() - start
    stats.feasible, stats.infeasible, stats.final = len(graphs), failures, len(graphs)
    if verbose and failures:
        print("   - infeasible: " + ", ".join(f"{k} {v}개" for k, v in sorted(failures.items())))
    if loud:
        print(f"✅ feasible 그래프 {len(graphs)}개 발견 ({stats.elapsed:.3f} s)")
    return SynthesisResult(graphs=graphs, stats=stats, port_model=port_model)

def unique_feasible_graphs(problem: Problem, options: Optional[RunOptions] = None,
                           custom_check: Optional[CustomCheck] = None) -> SynthesisResult:
    """generate_feasible_graphs + colored isomorphism 제거. oracle은 탐색 전에 확인"""
    options = options or RunOptions()
    validate_options(options)
    oracle = resolve_oracle(options.iso_method)

    result = generate_feasible_graphs(problem, options, custom_check)
    start = time.perf_counter()
    graphs = remove_colored_isomorphs(result.graphs, options.iso_method, oracle=oracle,
                                      parallelism=options.parallelism, verbosity=options.verbosity)
    result.stats.timings['isomorphism'] = time.perf_counter() - start
    result.stats.final = len(graphs)
    result.graphs = graphs
    if options.verbosity >= Verbosity.MINIMAL and options.iso_method is not IsoMethod.NONE:
        print(f"🎉 서로 다른 feasible 그래프 {len(graphs)}개 ({result.stats.elapsed:.3f} s)")
    return result
