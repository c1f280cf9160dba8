import pytest

from pmarch_classes import ComponentType, LineConstraint, Problem, RunOptions, Verbosity

@pytest.fixture
def silent():
    return RunOptions(verbosity=Verbosity.SILENT)

@pytest.fixture
def two_pairs():
    """X 2개, Y 2개, 포트 1개씩, X-Y만 호환"""
    return Problem(
        components=[ComponentType("X", 1, 2), ComponentType("Y", 1, 2)],
        compatibility=[("X", "Y")],
    )

@pytest.fixture
def three_doubles():
    """포트 2개짜리 A 3개, A-A 호환 (self-loop 불가): 완전 매칭 8개"""
    return Problem(components=[ComponentType("A", 2, 3)], compatibility=[("A", "A")])

@pytest.fixture
def hydraulic():
    """config.json과 같은 예제"""
    return Problem(
        components=[
            ComponentType("G", 1, 1, mandatory=True),
            ComponentType("B", 3, 1, unique=True),
            ComponentType("V", 2, 2),
            ComponentType("L", 1, 2),
        ],
        compatibility=[("G", "B"), ("G", "V"), ("B", "V"), ("B", "L"), ("V", "V"), ("V", "L")],
        line_constraints=[LineConstraint("G", "L", "forbid")],
    )
