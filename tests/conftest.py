# tests/conftest.py

import pytest

from exam_core import (
    AdaptiveRule,
    ModuleGraph,
    Module,
    Option,
    Question,
    TestDefinition,
)


class FakeClock:
    """Đồng hồ điều khiển được: mỗi lần gọi trả về thời điểm hiện tại."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def mcq(qid: str, correct: str = "0", points: float = 25.0) -> Question:
    return Question(
        id=qid,
        kind="MCQ",
        prompt=f"Câu {qid}",
        correct_answer=correct,
        options=tuple(Option(id=str(i), text=f"Lựa chọn {i}") for i in range(4)),
        points=points,
    )


def numeric(qid: str, correct: str, points: float = 1.0) -> Question:
    return Question(id=qid, kind="Numeric", prompt=f"Câu {qid}", correct_answer=correct, points=points)


def make_test(threshold: float = 50, break_duration: int = 0, rules=None) -> TestDefinition:
    """
    Đề mẫu 3 module:
        M1 (4 câu MCQ x 25 điểm) --(> threshold)--> HARD, ngược lại -> EASY
        HARD, EASY: 2 câu, không có luật -> kết thúc
    Đáp án đúng của mọi câu MCQ là "0".
    """
    if rules is None:
        rules = (AdaptiveRule(
            id="r1",
            operator="greater_than",
            threshold=threshold,
            next_module_id="HARD",
            else_module_id="EASY",
        ),)
    m1 = Module(
        id="M1",
        name="Module 1",
        subject="Math",
        difficulty="Medium",
        questions=tuple(mcq(f"m1-q{i}") for i in range(1, 5)),
        order=1,
        duration=600,
        rules=tuple(rules),
    )
    hard = Module(
        id="HARD",
        name="Module 2 khó",
        subject="Math",
        difficulty="Hard",
        questions=(mcq("h-q1", points=50), numeric("h-q2", "7/2", points=50)),
        order=2,
        duration=300,
    )
    easy = Module(
        id="EASY",
        name="Module 2 dễ",
        subject="Math",
        difficulty="Easy",
        questions=(mcq("e-q1", points=50), mcq("e-q2", points=50)),
        order=2,
        duration=300,
    )
    return TestDefinition(id="T1", name="Đề thử", modules=(m1, hard, easy), break_duration=break_duration)


def make_graph(**kwargs) -> ModuleGraph:
    return ModuleGraph(make_test(**kwargs))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def graph():
    return make_graph()


@pytest.fixture
def graph_with_break():
    return make_graph(break_duration=120)
