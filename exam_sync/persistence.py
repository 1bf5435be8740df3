"""
exam_sync/persistence.py
-----------------------------------
Nối ExamSession với tầng lưu trữ.

- SnapshotRecorder: subscriber của session; mỗi thay đổi -> ghi local ngay,
  lên lịch đồng bộ remote (nếu bật auto_save), lưu trữ khi lượt thi kết thúc
- AttemptManager: bắt đầu lượt thi (kiểm tra quyền truy cập một lần) và
  khôi phục lượt thi sau reload/mất mạng
"""

import logging
import time
from typing import Callable, Optional

from exam_core.errors import AccessDeniedError, InvalidStateError, SnapshotError, SyncError
from exam_core.module_graph import ModuleGraph
from exam_core.session import TERMINAL_STATES, ExamSession
from exam_core.snapshot import SessionSnapshot

from .local_store import LocalStore
from .reconcile import reconcile
from .sync_queue import SyncQueue

logger = logging.getLogger(__name__)

AccessCheck = Callable[[Optional[str], str], bool]


class SnapshotRecorder:
    def __init__(self, local: LocalStore, queue: Optional[SyncQueue] = None):
        self.local = local
        self.queue = queue

    def __call__(self, session: ExamSession) -> None:
        snapshot = session.to_snapshot()
        self.local.save(snapshot)
        if self.queue is not None and session.auto_save:
            self.queue.enqueue(snapshot)
        if session.state in TERMINAL_STATES:
            self.local.archive(session.attempt_id)


class AttemptManager:
    def __init__(
        self,
        local: LocalStore,
        remote=None,
        queue: Optional[SyncQueue] = None,
        has_access: Optional[AccessCheck] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.local = local
        self.remote = remote
        self.queue = queue
        self.has_access = has_access
        self._clock = clock
        self.recorder = SnapshotRecorder(local, queue)
        if queue is not None and queue.on_synced is None:
            queue.on_synced = lambda snap: local.mark_synced(snap.attempt_id, snap.last_modified)

    # ------------------------------
    # Bắt đầu lượt thi
    # ------------------------------
    def start_attempt(
        self,
        graph: ModuleGraph,
        user_id: Optional[str] = None,
        attempt_id: Optional[str] = None,
        **session_kwargs,
    ) -> ExamSession:
        if self.has_access is not None and not self.has_access(user_id, graph.test_id):
            raise AccessDeniedError(f"User {user_id} chưa có quyền làm đề {graph.test_id}")
        if attempt_id and self.local.exists(attempt_id):
            raise InvalidStateError(f"Attempt {attempt_id} đã tồn tại, hãy resume")
        # Thiết bị khác đã tạo attempt này; offline thì không kiểm tra được
        if attempt_id and self._fetch_remote(attempt_id) is not None:
            raise InvalidStateError(f"Attempt {attempt_id} đã có trên remote, hãy resume")

        session = ExamSession(graph, attempt_id, user_id, clock=self._clock, **session_kwargs)
        session.subscribe(self.recorder)
        session.start()
        return session

    # ------------------------------
    # Khôi phục lượt thi
    # ------------------------------
    def _fetch_remote(self, attempt_id: str) -> Optional[SessionSnapshot]:
        if self.remote is None:
            return None
        try:
            payload = self.remote.fetch(attempt_id)
        except SyncError as e:
            logger.warning("⚠️ Không lấy được remote cho %s, dùng bản local: %s", attempt_id, e)
            return None
        if payload is None:
            return None
        try:
            return SessionSnapshot.from_dict(payload)
        except SnapshotError as e:
            logger.error("❌ Snapshot remote của %s hỏng: %s", attempt_id, e)
            return None

    def resume_attempt(self, graph: ModuleGraph, attempt_id: str, **session_kwargs) -> ExamSession:
        local = self.local.load(attempt_id)
        remote = self._fetch_remote(attempt_id)
        merged = reconcile(local, remote, graph)
        if merged is None:
            raise InvalidStateError(f"Không tìm thấy attempt {attempt_id} ở local lẫn remote")

        session = ExamSession.resume(graph, merged, clock=self._clock, **session_kwargs)
        session.subscribe(self.recorder)
        self.recorder(session)
        logger.info(
            "🔄 Khôi phục attempt %s: %s, module %s, câu %d",
            attempt_id, session.state.value, session.current_module_id, session.current_question,
        )
        return session

    def requeue_pending(self) -> int:
        """Sau khi khởi động lại: đưa các snapshot chưa đồng bộ vào hàng đợi."""
        if self.queue is None:
            return 0
        count = 0
        for snapshot in self.local.dirty_snapshots():
            if snapshot.auto_save and self.queue.enqueue(snapshot):
                count += 1
        if count:
            logger.info("📤 Đưa lại %d snapshot chưa đồng bộ vào hàng đợi", count)
        return count
