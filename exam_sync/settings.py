"""
exam_sync/settings.py
-----------------------------------
Cấu hình tầng lưu trữ/đồng bộ, đọc từ biến môi trường (.env ở thư mục gốc).

    EXAM_DB_PATH            file sqlite lưu snapshot local (mặc định exam_sessions.db)
    EXAM_REMOTE_URL         API remote; bỏ trống -> chỉ dùng store trong bộ nhớ
    EXAM_REMOTE_TOKEN       bearer token gửi kèm request
    EXAM_REQUEST_TIMEOUT    timeout mỗi request (giây)
    EXAM_SYNC_MAX_WAIT      trần backoff giữa các lần retry (giây)
    EXAM_SYNC_POLL_INTERVAL chu kỳ worker kiểm tra hàng đợi (giây)
    EXAM_SNAPSHOT_MAX_AGE   snapshot cũ hơn ngưỡng này bị dọn (giây)
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
env_path = os.path.join(BASE_DIR, ".env")
load_dotenv(dotenv_path=env_path)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"❌ {name}={raw!r} không phải số") from None


@dataclass(frozen=True)
class SyncSettings:
    db_path: str = "exam_sessions.db"
    remote_url: Optional[str] = None
    remote_token: Optional[str] = None
    request_timeout: float = 10.0
    max_wait: float = 30.0
    poll_interval: float = 1.0
    snapshot_max_age: float = 24 * 60 * 60

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            db_path=os.getenv("EXAM_DB_PATH", cls.db_path),
            remote_url=os.getenv("EXAM_REMOTE_URL") or None,
            remote_token=os.getenv("EXAM_REMOTE_TOKEN") or None,
            request_timeout=_float_env("EXAM_REQUEST_TIMEOUT", cls.request_timeout),
            max_wait=_float_env("EXAM_SYNC_MAX_WAIT", cls.max_wait),
            poll_interval=_float_env("EXAM_SYNC_POLL_INTERVAL", cls.poll_interval),
            snapshot_max_age=_float_env("EXAM_SNAPSHOT_MAX_AGE", cls.snapshot_max_age),
        )
