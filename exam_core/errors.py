# exam_core/errors.py

"""
Phân loại lỗi của engine bài thi thích ứng.

- ValidationError: đồ thị module sai/cyclic, phát hiện lúc publish đề
- InvalidStateError: gọi thao tác ở trạng thái không cho phép
- OutOfRangeError: chỉ số câu hỏi ngoài phạm vi module hiện tại
- SyncConflictError: snapshot local và remote mâu thuẫn về quyền sở hữu
"""

from typing import List, Optional


class ExamEngineError(Exception):
    """Lớp gốc cho mọi lỗi của engine."""


class ValidationError(ExamEngineError):
    """Đề thi không hợp lệ. Gom toàn bộ vấn đề vào `problems`."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}: " + "; ".join(self.problems)
        super().__init__(message)


class InvalidStateError(ExamEngineError):
    """Thao tác không hợp lệ ở trạng thái hiện tại. Session không bị thay đổi."""


class OutOfRangeError(ExamEngineError):
    """Chỉ số câu hỏi nằm ngoài module hiện tại."""

    def __init__(self, index: int, size: int):
        super().__init__(f"Câu hỏi #{index} nằm ngoài phạm vi [0, {size})")
        self.index = index
        self.size = size


class AccessDeniedError(ExamEngineError):
    """Học sinh chưa có quyền truy cập đề thi."""


class SnapshotError(ExamEngineError):
    """Snapshot thiếu thông tin định danh, không thể khôi phục."""


# ==============================
# Lỗi đồng bộ
# ==============================

class SyncError(ExamEngineError):
    """Lỗi chung của tầng đồng bộ remote."""


class SyncConflictError(SyncError):
    """Local và remote bất đồng về attempt. Giải quyết bằng last-write-wins."""


class RemoteUnavailableError(SyncError):
    """Lỗi tạm thời (mạng, 429, 5xx). Có thể retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class RemoteRejectedError(SyncError):
    """Remote từ chối snapshot vĩnh viễn (4xx khác 409/429). Không retry."""
