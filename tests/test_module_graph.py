# tests/test_module_graph.py

from dataclasses import replace

import pytest

from conftest import make_test, mcq
from exam_core import AdaptiveRule, Module, ModuleGraph, TestDefinition, ValidationError


def test_graph_finds_entry_and_successors():
    graph = ModuleGraph(make_test())

    assert graph.entry_module_id == "M1"
    assert graph.successors("M1") == {"HARD", "EASY"}
    assert graph.successors("HARD") == set()
    assert [m.id for m in graph.ordered_modules()][0] == "M1"
    assert graph.module_of_question("h-q2") == "HARD"
    assert "EASY" in graph and len(graph) == 3


def test_graph_rejects_missing_target():
    rule = AdaptiveRule(id="r1", operator="greater_than", threshold=50, next_module_id="NOPE", else_module_id="EASY")

    with pytest.raises(ValidationError) as exc:
        ModuleGraph(make_test(rules=[rule]))

    assert any("NOPE" in p for p in exc.value.problems), "Phải báo module đích không tồn tại"


def test_graph_rejects_cycle_by_order():
    test = make_test()
    hard = replace(
        test.modules[1],
        rules=(AdaptiveRule(id="back", operator="less_than", threshold=10, next_module_id="M1"),),
    )
    test = replace(test, modules=(test.modules[0], hard, test.modules[2]))

    with pytest.raises(ValidationError) as exc:
        ModuleGraph(test)

    # M1 có cạnh vào -> không còn module gốc, và cạnh HARD -> M1 không tăng order
    problems = " ".join(exc.value.problems)
    assert "order" in problems
    assert "bắt đầu" in problems


def test_graph_rejects_two_roots():
    test = make_test()
    orphan = Module(
        id="ORPHAN", name="Lạc", subject="English", difficulty="Easy",
        questions=(mcq("o-q1"),), order=3, duration=60,
    )
    with pytest.raises(ValidationError):
        ModuleGraph(replace(test, modules=test.modules + (orphan,)))


def test_graph_collects_all_problems_at_once():
    test = make_test()
    bad = replace(test.modules[2], subject="History", duration=0)
    bad_q = replace(test.modules[1], questions=(mcq("h-q1", correct="9"), mcq("m1-q1")))
    test = replace(test, modules=(test.modules[0], bad_q, bad))

    with pytest.raises(ValidationError) as exc:
        ModuleGraph(test)

    problems = exc.value.problems
    assert len(problems) >= 4, f"Phải gom đủ lỗi, đang có {problems}"


def test_graph_rejects_unknown_operator_and_basis():
    rule = AdaptiveRule(
        id="r1", operator="equals", threshold=50,
        next_module_id="HARD", else_module_id="EASY", basis="z-score",
    )
    with pytest.raises(ValidationError) as exc:
        ModuleGraph(make_test(rules=[rule]))

    problems = " ".join(exc.value.problems)
    assert "equals" in problems and "z-score" in problems


def test_graph_declared_entry_must_match_root():
    test = replace(make_test(), entry_module_id="HARD")
    with pytest.raises(ValidationError):
        ModuleGraph(test)


def test_graph_empty_test_is_invalid():
    with pytest.raises(ValidationError):
        ModuleGraph(TestDefinition(id="T0", name="rỗng", modules=()))


def test_graph_negative_break_is_clamped():
    graph = ModuleGraph(replace(make_test(), break_duration=-5))
    assert graph.break_duration == 0
