# tests/test_sync_queue.py

import time
from unittest.mock import MagicMock

from conftest import FakeClock
from exam_core import RemoteRejectedError, RemoteUnavailableError, SessionSnapshot, SyncConflictError
from exam_sync import InMemoryRemoteStore, SyncQueue


def _snap(last_modified, attempt_id="a1", question=0):
    return SessionSnapshot(
        attempt_id=attempt_id, test_id="T1", last_modified=last_modified, current_question=question,
    )


def test_newer_snapshot_supersedes_pending():
    remote = InMemoryRemoteStore()
    queue = SyncQueue(remote, clock=FakeClock(0))

    assert queue.enqueue(_snap(1, question=1))
    assert queue.enqueue(_snap(2, question=2))
    assert len(queue) == 1
    assert queue.superseded == 1

    assert queue.process_due() == 1
    assert remote.fetch("a1")["current_question"] == 2
    assert len(queue) == 0


def test_older_snapshot_is_dropped():
    queue = SyncQueue(InMemoryRemoteStore(), clock=FakeClock(0))
    queue.enqueue(_snap(5))

    assert queue.enqueue(_snap(3)) is False
    assert queue.pending("a1").snapshot.last_modified == 5


def test_offline_retries_with_backoff():
    clock = FakeClock(0)
    remote = InMemoryRemoteStore()
    remote.online = False
    synced = []
    queue = SyncQueue(remote, max_wait=30, clock=clock, on_synced=synced.append)

    queue.enqueue(_snap(1))
    assert queue.process_due() == 0
    task = queue.pending("a1")
    assert task.attempts == 1
    assert 2.5 <= task.next_attempt_at <= 4.0, "Backoff lần 1 = 2 + jitter(0.5..2)"

    # chưa đến hạn -> không gửi
    assert queue.process_due(now=1.0) == 0
    assert queue.pending("a1").attempts == 1

    remote.online = True
    clock.advance(10)
    assert queue.process_due() == 1
    assert [s.last_modified for s in synced] == [1]


def test_backoff_is_capped_and_respects_retry_after():
    queue = SyncQueue(InMemoryRemoteStore(), max_wait=30)

    assert queue._compute_backoff(10, None) == 30
    assert queue._compute_backoff(1, 7) == 7
    assert queue._compute_backoff(1, 120) == 30


def test_superseded_while_offline_keeps_schedule():
    clock = FakeClock(0)
    remote = InMemoryRemoteStore()
    remote.online = False
    queue = SyncQueue(remote, clock=clock)

    queue.enqueue(_snap(1))
    queue.process_due()
    scheduled = queue.pending("a1").next_attempt_at

    queue.enqueue(_snap(2))
    task = queue.pending("a1")
    assert task.next_attempt_at == scheduled
    assert task.snapshot.last_modified == 2


def test_stale_in_flight_task_not_rescheduled():
    remote = MagicMock()
    queue = SyncQueue(remote, clock=FakeClock(0))
    queue.enqueue(_snap(1))

    def push_then_fail(payload):
        # snapshot mới hơn tới trong lúc đang gửi bản cũ
        queue.enqueue(_snap(2))
        raise RemoteUnavailableError("timeout")

    remote.push.side_effect = push_then_fail
    queue.process_due()

    task = queue.pending("a1")
    assert task.snapshot.last_modified == 2
    assert task.attempts == 0, "Task cũ bị thay thế không được retry"


def test_conflict_and_rejection_are_not_retried():
    remote = MagicMock()
    queue = SyncQueue(remote, clock=FakeClock(0))

    remote.push.side_effect = SyncConflictError("409")
    queue.enqueue(_snap(1, attempt_id="x"))
    queue.process_due()
    assert queue.pending("x") is None

    remote.push.side_effect = RemoteRejectedError("400")
    queue.enqueue(_snap(1, attempt_id="y"))
    queue.process_due()
    assert queue.pending("y") is None
    assert queue.synced == 0


def test_worker_thread_flushes_queue():
    remote = InMemoryRemoteStore()
    queue = SyncQueue(remote, poll_interval=0.01)
    queue.start()
    try:
        queue.enqueue(_snap(1))
        for _ in range(200):
            if remote.fetch("a1") is not None:
                break
            time.sleep(0.01)
    finally:
        queue.stop()

    assert remote.fetch("a1") is not None
