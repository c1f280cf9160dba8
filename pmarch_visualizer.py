# pmarch_visualizer.py
import os
from typing import Dict, List, Optional, Sequence

from graphviz import Graph

from pmarch_classes import FeasibleGraph, RunStats

# 타입별 고정 색상 (타입 순서대로 순환)
TYPE_COLORS = [
    'lightblue', 'lightsalmon', 'palegreen', 'khaki', 'plum', 'lightgrey',
    'lightpink', 'aquamarine', 'wheat', 'lightsteelblue',
]

def type_colors(type_names: Sequence[str]) -> Dict[str, str]:
    return {name: TYPE_COLORS[k % len(TYPE_COLORS)] for k, name in enumerate(type_names)}

def print_graph_summary(graph: FeasibleGraph, graph_index: int = 0):
    """그래프 하나의 연결 구조를 텍스트로 출력"""
    Am = graph.adjacency
    print(f"\n--- [그래프 #{graph_index}] PM #{graph.index} ---")
    for i in range(Am.shape[0]):
        for j in range(i, Am.shape[0]):
            if Am[i, j]:
                multiplicity = f" (x{int(Am[i, j])})" if Am[i, j] > 1 else ""
                print(f"  {graph.names[i]} -- {graph.names[j]}{multiplicity}")
    if graph.removed:
        print(f"  (stranded 제거: {len(graph.removed)}개)")

def print_run_stats(stats: RunStats):
    print("\n📊 단계별 후보 수")
    print(f"   - 완전 매칭 (완전 그래프 기준): {stats.n_perfect}")
    print(f"   - 열거됨: {stats.enumerated}" + (" (max_candidates 도달)" if stats.cap_reached else ""))
    print(f"   - port-type 필터 후: {stats.after_filter}")
    print(f"   - feasible: {stats.feasible}")
    print(f"   - 최종: {stats.final}")
    for stage, seconds in stats.timings.items():
        print(f"   - {stage}: {seconds:.3f} s")

def visualize_graph(graph: FeasibleGraph, colors: Optional[Dict[str, str]] = None, title: Optional[str] = None) -> Graph:
    """feasible 그래프 하나를 graphviz Graph로 변환 (multi-edge는 edge를 여러 번 그림)"""
    colors = colors or type_colors(sorted(set(graph.labels)))
    dot = Graph(comment=title or f"PM #{graph.index}", format='png')
    dot.attr('node', shape='circle', style='filled', fontname='Arial')
    dot.attr(label=title or f"PM #{graph.index}", labelloc='t', fontname='Arial')
    for k, name in enumerate(graph.names):
        dot.node(str(k), name, fillcolor=colors.get(graph.labels[k], 'white'))
    Am = graph.adjacency
    for i in range(Am.shape[0]):
        for j in range(i, Am.shape[0]):
            for _ in range(int(Am[i, j])):
                dot.edge(str(i), str(j))
    return dot

def render_graphs(graphs: List[FeasibleGraph], type_names: Sequence[str],
                  directory: str = 'pmarch_output', fmt: str = 'png') -> List[str]:
    """모든 그래프를 파일로 저장 (graphviz 실행 파일 필요)"""
    colors = type_colors(type_names)
    os.makedirs(directory, exist_ok=True)
    paths = []
    for k, graph in enumerate(graphs):
        dot = visualize_graph(graph, colors, title=f"Graph {k + 1} (PM #{graph.index})")
        paths.append(dot.render(f'graph_{k + 1}_pm_{graph.index}', directory=directory, cleanup=True, format=fmt))
    print(f"✅ 다이어그램 {len(paths)}개를 '{directory}' 폴더에 저장했습니다.")
    return paths
