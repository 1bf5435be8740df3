# tests/test_local_store.py

import sqlite3

import pytest

from exam_core import SessionSnapshot
from exam_sync import LocalStore


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "db" / "sessions.db"))


def _snap(last_modified, attempt_id="a1", **kw):
    return SessionSnapshot(attempt_id=attempt_id, test_id="T1", last_modified=last_modified, **kw)


def test_save_and_load(store):
    assert store.save(_snap(10, state="in_module", current_question=2))
    loaded = store.load("a1")

    assert loaded.current_question == 2
    assert store.exists("a1")
    assert store.is_dirty("a1")
    assert store.load("missing") is None


def test_older_snapshot_never_overwrites_newer(store):
    store.save(_snap(20, current_question=3))
    assert store.save(_snap(10, current_question=1)) is False

    assert store.load("a1").current_question == 3


def test_mark_synced_only_matching_version(store):
    store.save(_snap(10))
    store.save(_snap(20))

    store.mark_synced("a1", 10)
    assert store.is_dirty("a1"), "Bản cũ được xác nhận không được xóa cờ dirty của bản mới"

    store.mark_synced("a1", 20)
    assert not store.is_dirty("a1")
    assert store.dirty_snapshots() == []


def test_dirty_snapshots_ordered(store):
    store.save(_snap(30, attempt_id="b"))
    store.save(_snap(10, attempt_id="a"))

    assert [s.attempt_id for s in store.dirty_snapshots()] == ["a", "b"]


def test_purge_keeps_unsynced(store):
    store.save(_snap(10, attempt_id="synced"))
    store.save(_snap(10, attempt_id="pending"))
    store.mark_synced("synced", 10)

    removed = store.purge_older_than(60, now=10 ** 12)

    assert removed == 1
    assert not store.exists("synced")
    assert store.exists("pending")


def test_corrupt_payload_returns_none(store):
    store.save(_snap(10))
    conn = sqlite3.connect(store.db_path)
    conn.execute("UPDATE attempts SET payload = '{broken' WHERE attempt_id = 'a1'")
    conn.commit()
    conn.close()

    assert store.load("a1") is None
    assert store.dirty_snapshots() == []


def test_archive_and_delete(store):
    store.save(_snap(10))
    store.archive("a1")
    assert store.exists("a1")
    store.delete("a1")
    assert not store.exists("a1")
