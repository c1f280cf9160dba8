# main.py
import sys

from pmarch_classes import ConfigurationError, Verbosity
from pmarch_core import load_configuration, unique_feasible_graphs
from pmarch_visualizer import print_graph_summary, print_run_stats, render_graphs

def main(config_path: str = 'config.json'):
    """메인 실행 함수"""
    # 1. 설정 로드
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            json_config_string = f.read()
    except FileNotFoundError:
        print(f"오류: 설정 파일 '{config_path}'을(를) 찾을 수 없습니다.")
        return 1

    try:
        problem, options = load_configuration(json_config_string)
        # 2. 열거 + 실현 가능성 검사 + 동형 제거
        result = unique_feasible_graphs(problem, options)
    except ConfigurationError as err:
        print(f"\n❌ 설정 오류: {err}")
        return 1

    # 3. 결과 출력
    if options.verbosity >= Verbosity.MINIMAL:
        print_run_stats(result.stats)
        for k, graph in enumerate(result.graphs):
            print_graph_summary(graph, k + 1)
    if options.render and result.graphs:
        render_graphs(result.graphs, result.port_model.type_names)
    return 0

if __name__ == "__main__":
    sys.exit(main(*sys.argv[1:2]))
