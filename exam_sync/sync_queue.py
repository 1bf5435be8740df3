"""
exam_sync/sync_queue.py
-----------------------------------
Hàng đợi đồng bộ snapshot lên remote.

✅ Điểm chính:
- Mỗi attempt chỉ giữ MỘT task chờ: snapshot mới thay thế snapshot cũ,
  snapshot cũ hơn bản đang chờ bị bỏ (không ghi đè dữ liệu mới bằng dữ liệu cũ)
- Lỗi tạm thời -> backoff theo cấp số nhân + jitter, tôn trọng Retry-After,
  retry không giới hạn (học sinh vẫn làm bài offline)
- Task đã bị thay thế thì không retry nữa
- Không bao giờ chặn thao tác của session: worker chạy trên thread riêng,
  hoặc gọi `process_due()` chủ động
"""

import time
import random
import logging
import threading
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, List, Optional

from exam_core.errors import RemoteRejectedError, RemoteUnavailableError, SyncConflictError
from exam_core.snapshot import SessionSnapshot

# ==============================
# ⚙️ Cấu hình logging
# ==============================
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(asctime)s] %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


@dataclass
class SyncTask:
    snapshot: SessionSnapshot
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: Optional[str] = None

    @property
    def attempt_id(self) -> str:
        return self.snapshot.attempt_id


class SyncQueue:
    def __init__(
        self,
        remote,
        max_wait: float = 30.0,
        poll_interval: float = 1.0,
        on_synced: Optional[Callable[[SessionSnapshot], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Tham số:
            remote: đối tượng có push(payload) (HttpRemoteStore, InMemoryRemoteStore)
            max_wait: thời gian chờ tối đa giữa các lần retry
            poll_interval: chu kỳ worker kiểm tra hàng đợi
            on_synced: callback khi remote đã nhận snapshot
        """
        self.remote = remote
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self.on_synced = on_synced
        self._clock = clock

        self._lock = Lock()
        self._flush_lock = Lock()
        self._pending: Dict[str, SyncTask] = {}
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self.superseded = 0
        self.synced = 0

    def _now(self) -> float:
        return self._clock()

    # ------------------------------
    # 📥 Đưa snapshot vào hàng đợi
    # ------------------------------
    def enqueue(self, snapshot: SessionSnapshot) -> bool:
        """Trả False nếu snapshot cũ hơn bản đang chờ (bị bỏ)."""
        with self._lock:
            current = self._pending.get(snapshot.attempt_id)
            if current is not None:
                if current.snapshot.last_modified > snapshot.last_modified:
                    logger.debug("Bỏ snapshot cũ của %s", snapshot.attempt_id)
                    return False
                # Giữ lịch backoff: đang offline thì không dồn request
                task = SyncTask(
                    snapshot=snapshot,
                    attempts=current.attempts,
                    next_attempt_at=current.next_attempt_at,
                    last_error=current.last_error,
                )
                self.superseded += 1
            else:
                task = SyncTask(snapshot=snapshot, next_attempt_at=self._now())
            self._pending[snapshot.attempt_id] = task
        self._wake.set()
        return True

    def pending(self, attempt_id: str) -> Optional[SyncTask]:
        with self._lock:
            return self._pending.get(attempt_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------
    # 🧠 Tính toán thời gian backoff
    # ------------------------------
    def _compute_backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(self.max_wait, max(0.0, retry_after))
        return min(self.max_wait, 2 ** attempt + random.uniform(0.5, 2.0))

    # ------------------------------
    # 🚀 Gửi các task đến hạn
    # ------------------------------
    def process_due(self, now: Optional[float] = None) -> int:
        """Gửi mọi task đã đến hạn. Trả số snapshot remote đã nhận."""
        with self._flush_lock:
            now = self._now() if now is None else now
            with self._lock:
                due: List[SyncTask] = [t for t in self._pending.values() if t.next_attempt_at <= now]

            done = 0
            for task in due:
                if self._send(task, now):
                    done += 1
            return done

    def _send(self, task: SyncTask, now: float) -> bool:
        try:
            self.remote.push(task.snapshot.to_dict())

        # ----- Lỗi tạm thời: retry sau -----
        except RemoteUnavailableError as e:
            with self._lock:
                if self._pending.get(task.attempt_id) is not task:
                    return False  # đã có snapshot mới hơn
                task.attempts += 1
                wait = self._compute_backoff(task.attempts, e.retry_after)
                task.next_attempt_at = now + wait
                task.last_error = str(e)
            logger.warning(
                "⚠️ Đồng bộ %s thất bại, thử lại sau %.1fs (lần %d): %s",
                task.attempt_id, wait, task.attempts, e,
            )
            return False

        # ----- Xung đột / bị từ chối: không retry -----
        except SyncConflictError as e:
            logger.warning("⚠️ Xung đột đồng bộ %s, remote giữ bản của nó: %s", task.attempt_id, e)
            self._drop(task)
            return False
        except RemoteRejectedError as e:
            logger.error("🚫 Remote từ chối snapshot %s: %s", task.attempt_id, e)
            self._drop(task)
            return False

        self._drop(task)
        self.synced += 1
        logger.debug("Đã đồng bộ %s (%.3f)", task.attempt_id, task.snapshot.last_modified)
        if self.on_synced is not None:
            self.on_synced(task.snapshot)
        return True

    def _drop(self, task: SyncTask) -> None:
        with self._lock:
            if self._pending.get(task.attempt_id) is task:
                del self._pending[task.attempt_id]

    # ------------------------------
    # 🧵 Worker nền
    # ------------------------------
    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="exam-sync", daemon=True)
        self._worker.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.process_due()
            except Exception as e:
                logger.error(f"🚨 Lỗi không xác định trong worker đồng bộ: {e}")
            self._wake.wait(self.poll_interval)
            self._wake.clear()
