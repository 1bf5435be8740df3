# tests/test_remote_store.py

from unittest.mock import MagicMock

import pytest
import requests

from exam_core import RemoteRejectedError, RemoteUnavailableError, SyncConflictError
from exam_sync import HttpRemoteStore, InMemoryRemoteStore


def _response(status, body=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.json.return_value = body
    return resp


@pytest.fixture
def http():
    session = MagicMock()
    session.headers = {}
    store = HttpRemoteStore("https://exam.example.com/api/", token="tok", timeout=3, session=session)
    return store, session


def test_push_sends_put_with_auth(http):
    store, session = http
    session.put.return_value = _response(200)

    store.push({"attempt_id": "a1", "last_modified": 1})

    url = session.put.call_args[0][0]
    assert url == "https://exam.example.com/api/attempts/a1"
    assert session.put.call_args[1]["timeout"] == 3
    assert session.headers["Authorization"] == "Bearer tok"


def test_fetch_unwraps_envelope_and_404(http):
    store, session = http
    session.get.return_value = _response(200, {"success": True, "data": {"attempt_id": "a1"}})
    assert store.fetch("a1") == {"attempt_id": "a1"}

    session.get.return_value = _response(404)
    assert store.fetch("a1") is None


@pytest.mark.parametrize("status, error", [
    (409, SyncConflictError),
    (429, RemoteUnavailableError),
    (503, RemoteUnavailableError),
    (400, RemoteRejectedError),
    (403, RemoteRejectedError),
])
def test_status_classification(http, status, error):
    store, session = http
    session.put.return_value = _response(status, headers={"Retry-After": "4"})

    with pytest.raises(error) as exc:
        store.push({"attempt_id": "a1"})

    if error is RemoteUnavailableError:
        assert exc.value.retry_after == 4.0


def test_network_error_is_retryable(http):
    store, session = http
    session.put.side_effect = requests.ConnectionError("down")

    with pytest.raises(RemoteUnavailableError):
        store.push({"attempt_id": "a1"})


def test_in_memory_keeps_newest():
    remote = InMemoryRemoteStore()
    remote.push({"attempt_id": "a1", "last_modified": 5, "v": "new"})
    remote.push({"attempt_id": "a1", "last_modified": 3, "v": "old"})

    assert remote.fetch("a1")["v"] == "new"

    remote.online = False
    with pytest.raises(RemoteUnavailableError):
        remote.fetch("a1")
