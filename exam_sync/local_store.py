import json
import logging
import os
import sqlite3
import time
from typing import List, Optional

from exam_core.errors import SnapshotError
from exam_core.snapshot import SessionSnapshot

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Bản sao bền vững trên thiết bị (sqlite).

    Mỗi lần ghi commit ngay, crash ngay sau thao tác cũng không mất.
    Cột `dirty` = 1 khi snapshot chưa được remote xác nhận.
    """

    def __init__(self, db_path: str = "exam_sessions.db"):
        self.db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS attempts (
                    attempt_id TEXT PRIMARY KEY,
                    test_id TEXT NOT NULL,
                    user_id TEXT,
                    state TEXT,
                    last_modified REAL NOT NULL,
                    saved_at REAL NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1,
                    archived INTEGER NOT NULL DEFAULT 0,
                    payload TEXT NOT NULL
                );
            """)
            conn.commit()
        finally:
            conn.close()

    # ------------------------------
    # Ghi
    # ------------------------------
    def save(self, snapshot: SessionSnapshot) -> bool:
        """
        Ghi snapshot. Snapshot cũ hơn bản đang lưu bị bỏ qua.
        Trả True nếu đã ghi.
        """
        conn = self._connect()
        try:
            cur = conn.execute(
                """
                INSERT INTO attempts (attempt_id, test_id, user_id, state, last_modified, saved_at, dirty, archived, payload)
                VALUES (?, ?, ?, ?, ?, ?, 1, 0, ?)
                ON CONFLICT(attempt_id) DO UPDATE SET
                    test_id = excluded.test_id,
                    user_id = excluded.user_id,
                    state = excluded.state,
                    last_modified = excluded.last_modified,
                    saved_at = excluded.saved_at,
                    dirty = 1,
                    payload = excluded.payload
                WHERE excluded.last_modified >= attempts.last_modified
                """,
                (
                    snapshot.attempt_id,
                    snapshot.test_id,
                    snapshot.user_id,
                    snapshot.state,
                    snapshot.last_modified,
                    time.time(),
                    snapshot.to_json(),
                ),
            )
            conn.commit()
            written = cur.rowcount > 0
        finally:
            conn.close()

        if not written:
            logger.debug("Bỏ qua snapshot cũ của %s (%.3f)", snapshot.attempt_id, snapshot.last_modified)
        return written

    def mark_synced(self, attempt_id: str, last_modified: float) -> None:
        """Remote đã nhận đúng phiên bản này -> xóa cờ dirty."""
        conn = self._connect()
        try:
            conn.execute(
                "UPDATE attempts SET dirty = 0 WHERE attempt_id = ? AND last_modified = ?",
                (attempt_id, last_modified),
            )
            conn.commit()
        finally:
            conn.close()

    def archive(self, attempt_id: str) -> None:
        conn = self._connect()
        try:
            conn.execute("UPDATE attempts SET archived = 1 WHERE attempt_id = ?", (attempt_id,))
            conn.commit()
        finally:
            conn.close()

    def delete(self, attempt_id: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM attempts WHERE attempt_id = ?", (attempt_id,))
            conn.commit()
        finally:
            conn.close()

    def purge_older_than(self, max_age: float, now: Optional[float] = None) -> int:
        """Dọn snapshot đã đồng bộ và quá hạn. Snapshot còn dirty được giữ lại."""
        cutoff = (time.time() if now is None else now) - max_age
        conn = self._connect()
        try:
            cur = conn.execute("DELETE FROM attempts WHERE saved_at < ? AND dirty = 0", (cutoff,))
            conn.commit()
            removed = cur.rowcount
        finally:
            conn.close()
        if removed:
            logger.info("🗑️ Đã dọn %d snapshot quá hạn", removed)
        return removed

    # ------------------------------
    # Đọc
    # ------------------------------
    def exists(self, attempt_id: str) -> bool:
        conn = self._connect()
        try:
            row = conn.execute("SELECT 1 FROM attempts WHERE attempt_id = ?", (attempt_id,)).fetchone()
        finally:
            conn.close()
        return row is not None

    def load(self, attempt_id: str) -> Optional[SessionSnapshot]:
        """Đọc snapshot. Payload hỏng không đọc được -> ghi log và trả None."""
        conn = self._connect()
        try:
            row = conn.execute("SELECT payload FROM attempts WHERE attempt_id = ?", (attempt_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        try:
            return SessionSnapshot.from_json(row[0])
        except SnapshotError as e:
            logger.error("❌ Snapshot local của %s hỏng: %s", attempt_id, e)
            return None

    def is_dirty(self, attempt_id: str) -> bool:
        conn = self._connect()
        try:
            row = conn.execute("SELECT dirty FROM attempts WHERE attempt_id = ?", (attempt_id,)).fetchone()
        finally:
            conn.close()
        return bool(row and row[0])

    def dirty_snapshots(self) -> List[SessionSnapshot]:
        """Các snapshot chưa lên remote, theo thứ tự cập nhật."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT attempt_id, payload FROM attempts WHERE dirty = 1 ORDER BY last_modified"
            ).fetchall()
        finally:
            conn.close()

        out = []
        for attempt_id, payload in rows:
            try:
                out.append(SessionSnapshot.from_dict(json.loads(payload)))
            except (ValueError, SnapshotError) as e:
                logger.error("❌ Bỏ qua snapshot hỏng %s: %s", attempt_id, e)
        return out
