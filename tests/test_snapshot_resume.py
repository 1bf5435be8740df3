# tests/test_snapshot_resume.py

import pytest

from exam_core import Answer, ExamSession, SessionSnapshot, SessionState, SnapshotError, ValidationError


def _session_in_hard(graph, clock):
    session = ExamSession(graph, "att-1", "u1", clock=clock).start()
    for i in range(3):
        session.record_answer(i, "0", time_spent=5)
    session.toggle_flag(3)
    clock.advance(40)
    session.tick(40)
    session.finalize_module("M1")
    session.record_answer(1, "3.5")
    session.set_current_question(1)
    session.tick(25)
    return session


def test_snapshot_json_round_trip(graph, clock):
    session = _session_in_hard(graph, clock)
    snap = session.to_snapshot()

    again = SessionSnapshot.from_json(snap.to_json())
    assert again == snap
    assert again.module_path == ["M1"]
    assert again.flags == {"M1": [3]}
    assert set(again.answers) == {"m1-q1", "m1-q2", "m1-q3", "h-q2"}


def test_resume_restores_exact_position(graph, clock):
    session = _session_in_hard(graph, clock)
    restored = ExamSession.resume(graph, SessionSnapshot.from_json(session.to_snapshot().to_json()), clock=clock)

    assert restored.state == SessionState.IN_MODULE
    assert restored.current_module_id == "HARD"
    assert restored.current_question == 1
    assert restored.time_remaining == 275
    assert restored.answers["h-q2"].value == "3.5"
    assert restored.module_path == ["M1"]
    assert restored.history[0].score.total_points == 75
    assert restored.history[0].flagged == [3]
    assert restored.history[0].time_spent == 40

    # làm tiếp đến hết giống hệt session gốc
    assert restored.submit().score == session.submit().score


def test_resume_rejects_tampered_module_path(graph, clock):
    session = ExamSession(graph, "att-2", clock=clock).start()
    session.record_answer(0, "0")          # 25 điểm -> EASY
    session.finalize_module()
    snap = session.to_snapshot()

    # Sửa snapshot để nhảy sang module khó
    snap.current_module_id = "HARD"
    snap.answers["h-q1"] = Answer(question_id="h-q1", question_index=0, value="0")
    restored = ExamSession.resume(graph, snap, clock=clock)

    assert restored.current_module_id == "EASY", "Định tuyến phải được tính lại, không tin snapshot"
    assert restored.current_question == 0
    assert restored.time_remaining == 300


def test_resume_path_not_starting_at_entry_falls_back(graph, clock):
    snap = SessionSnapshot(
        attempt_id="att-3", test_id="T1", state="in_module",
        current_module_id="HARD", module_path=["HARD"], time_remaining=10,
    )
    restored = ExamSession.resume(graph, snap, clock=clock)

    assert restored.state == SessionState.IN_MODULE
    assert restored.current_module_id == "M1"
    assert restored.module_path == []


def test_resume_clamps_corrupt_fields(graph, clock):
    session = ExamSession(graph, "att-4", clock=clock).start()
    session.record_answer(2, "0")
    data = session.to_snapshot().to_dict()
    data["time_remaining"] = 99999
    data["current_question"] = 42
    data["module_elapsed"] = "NaN"
    data["answers"]["bogus"] = {"value": "x"}

    restored = ExamSession.resume(graph, data, clock=clock)

    assert restored.time_remaining == 600
    assert restored.current_question == 3
    assert restored.module_elapsed == 0
    assert list(restored.answers) == ["m1-q3"]


def test_resume_with_no_time_left_finalizes(graph, clock):
    session = ExamSession(graph, "att-5", clock=clock).start()
    for i in range(4):
        session.record_answer(i, "0")
    snap = session.to_snapshot()
    snap.time_remaining = 0

    restored = ExamSession.resume(graph, snap, clock=clock)
    assert restored.module_path == ["M1"]
    assert restored.history[0].timed_out
    assert restored.current_module_id == "HARD"


def test_resume_in_break(graph_with_break, clock):
    session = ExamSession(graph_with_break, "att-6", clock=clock).start()
    session.finalize_module()
    session.tick(50)
    restored = ExamSession.resume(graph_with_break, session.to_snapshot(), clock=clock)

    assert restored.state == SessionState.IN_BREAK
    assert restored.current_module_id == "EASY"
    assert restored.break_remaining == 70


def test_resume_submitted_attempt(graph, clock):
    session = ExamSession(graph, "att-7", clock=clock).start()
    session.record_answer(0, "0")
    result = session.submit()

    restored = ExamSession.resume(graph, session.to_snapshot(), clock=clock)
    assert restored.state == SessionState.SUBMITTED
    assert restored.result.score == result.score
    assert restored.result.module_path == result.module_path


def test_resume_abandoned_attempt(graph, clock):
    session = ExamSession(graph, "att-8", clock=clock).start()
    session.abandon("đóng tab")
    restored = ExamSession.resume(graph, session.to_snapshot(), clock=clock)
    assert restored.state == SessionState.ABANDONED


def test_resume_rejects_other_test(graph, clock):
    snap = SessionSnapshot(attempt_id="x", test_id="OTHER")
    with pytest.raises(ValidationError):
        ExamSession.resume(graph, snap, clock=clock)


def test_snapshot_requires_identity():
    with pytest.raises(SnapshotError):
        SessionSnapshot.from_dict({"test_id": "T1"})
    with pytest.raises(SnapshotError):
        SessionSnapshot.from_json("{not json")
