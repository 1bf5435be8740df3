# exam_core/snapshot.py

"""
Snapshot tuần tự hóa của một lượt thi.

Đây là đơn vị trao đổi giữa store local và remote, phải đi qua
`ExamSession.resume` mà không mất thông tin. `from_dict` đọc khoan dung:
trường hỏng được thay bằng giá trị mặc định và ghi log, chỉ thiếu định danh
(attempt_id/test_id) mới ném SnapshotError.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .errors import SnapshotError
from .schema import Answer

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class SessionSnapshot:
    attempt_id: str
    test_id: str
    user_id: Optional[str] = None
    state: str = "not_started"
    current_module_id: Optional[str] = None
    current_question: int = 0
    time_remaining: float = 0.0
    break_remaining: float = 0.0
    module_elapsed: float = 0.0
    module_path: List[str] = field(default_factory=list)
    answers: Dict[str, Answer] = field(default_factory=dict)
    flags: Dict[str, List[int]] = field(default_factory=dict)
    module_times: Dict[str, float] = field(default_factory=dict)
    timed_out: List[str] = field(default_factory=list)
    submitted: bool = False
    auto_save: bool = True
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    last_modified: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "attempt_id": self.attempt_id,
            "test_id": self.test_id,
            "user_id": self.user_id,
            "state": self.state,
            "current_module_id": self.current_module_id,
            "current_question": self.current_question,
            "time_remaining": self.time_remaining,
            "break_remaining": self.break_remaining,
            "module_elapsed": self.module_elapsed,
            "module_path": list(self.module_path),
            "answers": {qid: a.to_dict() for qid, a in self.answers.items()},
            "flags": {mid: sorted(idx) for mid, idx in self.flags.items()},
            "module_times": dict(self.module_times),
            "timed_out": list(self.timed_out),
            "submitted": self.submitted,
            "auto_save": self.auto_save,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "last_modified": self.last_modified,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> "SessionSnapshot":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Snapshot không phải JSON hợp lệ: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionSnapshot":
        if not isinstance(data, Mapping):
            raise SnapshotError("Snapshot phải là một object")
        attempt_id = data.get("attempt_id")
        test_id = data.get("test_id")
        if not attempt_id or not test_id:
            raise SnapshotError("Snapshot thiếu attempt_id hoặc test_id")

        return cls(
            attempt_id=str(attempt_id),
            test_id=str(test_id),
            user_id=_opt_str(data.get("user_id")),
            state=str(data.get("state") or "not_started"),
            current_module_id=_opt_str(data.get("current_module_id")),
            current_question=int(_number(data, "current_question", 0)),
            time_remaining=_number(data, "time_remaining", 0.0),
            break_remaining=_number(data, "break_remaining", 0.0),
            module_elapsed=_number(data, "module_elapsed", 0.0),
            module_path=_str_list(data.get("module_path")),
            answers=_answers(data.get("answers")),
            flags=_flags(data.get("flags")),
            module_times=_module_times(data.get("module_times")),
            timed_out=_str_list(data.get("timed_out")),
            submitted=bool(data.get("submitted", False)),
            auto_save=bool(data.get("auto_save", True)),
            started_at=_opt_number(data.get("started_at")),
            ended_at=_opt_number(data.get("ended_at")),
            last_modified=_number(data, "last_modified", 0.0),
        )


# ==============================
# Hàm đọc khoan dung
# ==============================

def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _opt_number(value: Any) -> Optional[float]:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def _number(data: Mapping[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isfinite(number):
        return number
    logger.warning("⚠️ Snapshot: trường %s hỏng (%r), dùng %s", key, value, default)
    return default


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int))]


def _answers(value: Any) -> Dict[str, Answer]:
    out: Dict[str, Answer] = {}
    if not isinstance(value, Mapping):
        return out
    for qid, raw in value.items():
        try:
            answer = Answer.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning("⚠️ Snapshot: bỏ câu trả lời hỏng cho %s", qid)
            continue
        out[str(qid)] = answer
    return out


def _flags(value: Any) -> Dict[str, List[int]]:
    out: Dict[str, List[int]] = {}
    if not isinstance(value, Mapping):
        return out
    for mid, indices in value.items():
        if isinstance(indices, list):
            out[str(mid)] = sorted({int(i) for i in indices if isinstance(i, int) and not isinstance(i, bool)})
    return out


def _module_times(value: Any) -> Dict[str, float]:
    out: Dict[str, float] = {}
    if not isinstance(value, Mapping):
        return out
    for mid, seconds in value.items():
        try:
            out[str(mid)] = float(seconds)
        except (TypeError, ValueError):
            continue
    return out
