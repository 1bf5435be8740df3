"""
exam_sync: lưu trữ & đồng bộ lượt thi

- LocalStore: snapshot bền vững trên thiết bị (sqlite)
- HttpRemoteStore / InMemoryRemoteStore: kho snapshot phía server
- SyncQueue: hàng đợi đồng bộ có thay thế (supersession) và backoff
- reconcile: hợp nhất local/remote khi có mạng lại
- AttemptManager: bắt đầu và khôi phục lượt thi
"""

from .settings import SyncSettings
from .local_store import LocalStore
from .remote_store import HttpRemoteStore, InMemoryRemoteStore
from .sync_queue import SyncQueue, SyncTask
from .reconcile import reconcile
from .persistence import AttemptManager, SnapshotRecorder

__all__ = [
    "SyncSettings",
    "LocalStore",
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "SyncQueue",
    "SyncTask",
    "reconcile",
    "AttemptManager",
    "SnapshotRecorder",
]
