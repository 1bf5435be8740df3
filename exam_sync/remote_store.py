"""
exam_sync/remote_store.py
-----------------------------------
Kho snapshot phía server.

- HttpRemoteStore: PUT/GET {base_url}/attempts/<attempt_id> qua requests
- InMemoryRemoteStore: giữ bản mới nhất mỗi attempt (last-write-wins), dùng khi
  chạy offline hoặc demo không có server

Phân loại lỗi để hàng đợi đồng bộ biết có nên retry hay không:
    mạng / 429 / 5xx -> RemoteUnavailableError (retry, tôn trọng Retry-After)
    409              -> SyncConflictError
    4xx khác         -> RemoteRejectedError (không retry)
"""

import copy
import logging
from threading import Lock
from typing import Any, Dict, Optional

import requests

from exam_core.errors import (
    RemoteRejectedError,
    RemoteUnavailableError,
    SyncConflictError,
)

logger = logging.getLogger(__name__)


class HttpRemoteStore:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests.Session()
        self._http.headers.update({"Content-Type": "application/json"})
        if token:
            self._http.headers.update({"Authorization": f"Bearer {token}"})

    def _url(self, attempt_id: str) -> str:
        return f"{self.base_url}/attempts/{attempt_id}"

    def push(self, payload: Dict[str, Any]) -> None:
        attempt_id = payload["attempt_id"]
        try:
            resp = self._http.put(self._url(attempt_id), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"Không gửi được snapshot {attempt_id}: {e}") from e
        self._raise_for_status(resp, attempt_id)

    def fetch(self, attempt_id: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self._http.get(self._url(attempt_id), timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"Không tải được snapshot {attempt_id}: {e}") from e
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, attempt_id)
        try:
            body = resp.json()
        except ValueError as e:
            raise RemoteUnavailableError(f"Phản hồi không phải JSON cho {attempt_id}") from e
        # Hỗ trợ cả dạng {"data": ..., "success": true}
        if isinstance(body, dict) and "data" in body and "attempt_id" not in body:
            body = body["data"]
        return body

    def _raise_for_status(self, resp: requests.Response, attempt_id: str) -> None:
        status = resp.status_code
        if status < 400:
            return
        if status == 409:
            raise SyncConflictError(f"Remote báo xung đột cho attempt {attempt_id}")
        if status == 429 or 500 <= status < 600:
            raise RemoteUnavailableError(
                f"Remote tạm thời lỗi ({status}) cho {attempt_id}",
                retry_after=self._get_retry_after(resp),
            )
        raise RemoteRejectedError(f"Remote từ chối ({status}) cho {attempt_id}")

    def _get_retry_after(self, resp: requests.Response) -> Optional[float]:
        val = resp.headers.get("Retry-After")
        if not val:
            return None
        try:
            return float(val)
        except ValueError:
            return None


class InMemoryRemoteStore:
    """Remote giả lập trong bộ nhớ. Bản có last_modified lớn hơn thắng."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()
        self.online = True

    def _check_online(self, attempt_id: str) -> None:
        if not self.online:
            raise RemoteUnavailableError(f"Offline, không đồng bộ được {attempt_id}")

    def push(self, payload: Dict[str, Any]) -> None:
        attempt_id = payload["attempt_id"]
        self._check_online(attempt_id)
        with self._lock:
            current = self._data.get(attempt_id)
            if current is not None and current.get("last_modified", 0) > payload.get("last_modified", 0):
                logger.debug("Remote giữ bản mới hơn cho %s", attempt_id)
                return
            self._data[attempt_id] = copy.deepcopy(payload)

    def fetch(self, attempt_id: str) -> Optional[Dict[str, Any]]:
        self._check_online(attempt_id)
        with self._lock:
            payload = self._data.get(attempt_id)
            return copy.deepcopy(payload) if payload is not None else None
