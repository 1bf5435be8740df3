# exam_core/session.py

"""
Máy trạng thái của một lượt thi thích ứng.

    not_started -> in_module -> in_break -> in_module (kế tiếp) -> ... -> submitted
    abandoned: từ bất kỳ trạng thái chưa kết thúc nào

Mọi thao tác được tuần tự hóa bằng RLock. Sau mỗi thay đổi, các subscriber
(tầng lưu trữ) được gọi với chính session.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from .errors import InvalidStateError, OutOfRangeError, ValidationError
from .module_graph import ModuleGraph
from .router import route
from .schema import Answer, Module, ModuleResult, ModuleScore, TestResult
from .scorer import is_blank, score_module, summarize
from .snapshot import SessionSnapshot

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_MODULE = "in_module"
    IN_BREAK = "in_break"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"


TERMINAL_STATES = (SessionState.SUBMITTED, SessionState.ABANDONED)


# ============================
# Projection cho UI (chỉ đọc)
# ============================

@dataclass(frozen=True)
class QuestionStatus:
    index: int
    question_id: str
    answered: bool
    flagged: bool


@dataclass(frozen=True)
class SessionView:
    attempt_id: str
    state: SessionState
    module_id: Optional[str]
    module_name: Optional[str]
    subject: Optional[str]
    question_index: int
    question_count: int
    time_remaining: float
    break_remaining: float
    modules_completed: int
    questions: Tuple[QuestionStatus, ...] = ()


Listener = Callable[["ExamSession"], None]


class ExamSession:
    def __init__(
        self,
        graph: ModuleGraph,
        attempt_id: Optional[str] = None,
        user_id: Optional[str] = None,
        *,
        break_duration: Optional[int] = None,
        auto_save: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.graph = graph
        self.test_id = graph.test_id
        self.attempt_id = attempt_id or uuid.uuid4().hex
        self.user_id = user_id
        self.break_duration = graph.break_duration if break_duration is None else max(0, int(break_duration))
        self.auto_save = auto_save
        self._clock = clock

        self.state = SessionState.NOT_STARTED
        self.started_at: Optional[float] = None
        self.ended_at: Optional[float] = None
        self.last_modified: float = 0.0

        self.current_module_id: Optional[str] = None
        self.current_question = 0
        self.time_remaining: float = 0.0
        self.break_remaining: float = 0.0
        self.module_elapsed: float = 0.0

        self.answers: Dict[str, Answer] = {}
        self.flagged: Set[int] = set()
        self.history: List[ModuleResult] = []
        self.result: Optional[TestResult] = None

        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    # ------------------------------
    # Quan sát
    # ------------------------------
    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _touch(self) -> None:
        self.last_modified = max(self._clock(), self.last_modified)
        for listener in list(self._listeners):
            listener(self)

    # ------------------------------
    # Tiện ích nội bộ
    # ------------------------------
    @property
    def current_module(self) -> Optional[Module]:
        if self.current_module_id is None:
            return None
        return self.graph.module(self.current_module_id)

    @property
    def submitted(self) -> bool:
        return self.state == SessionState.SUBMITTED

    @property
    def module_path(self) -> List[str]:
        return [r.module_id for r in self.history]

    def _require(self, state: SessionState, action: str) -> None:
        if self.state != state:
            raise InvalidStateError(f"{action} chỉ hợp lệ khi {state.value}, hiện tại: {self.state.value}")

    def _check_index(self, index: int) -> Module:
        module = self.current_module
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(module.questions):
            raise OutOfRangeError(index, len(module.questions))
        return module

    def _enter_module(self, module_id: str) -> None:
        module = self.graph.module(module_id)
        self.state = SessionState.IN_MODULE
        self.current_module_id = module_id
        self.current_question = 0
        self.time_remaining = float(module.duration)
        self.break_remaining = 0.0
        self.module_elapsed = 0.0
        self.answers = {}
        self.flagged = set()
        logger.info("▶️ Attempt %s vào module %s (%s, %s)", self.attempt_id, module.id, module.subject, module.difficulty)

    # ------------------------------
    # Bắt đầu
    # ------------------------------
    def start(self, entry_module_id: Optional[str] = None) -> "ExamSession":
        with self._lock:
            if self.state != SessionState.NOT_STARTED:
                raise InvalidStateError(f"Attempt {self.attempt_id} đã tồn tại ({self.state.value})")
            entry = entry_module_id or self.graph.entry_module_id
            if entry != self.graph.entry_module_id:
                raise ValidationError(f"{entry!r} không phải module bắt đầu của đề {self.test_id}")

            self.started_at = self._clock()
            self._enter_module(entry)
            self._touch()
            return self

    # ------------------------------
    # Thao tác trong module
    # ------------------------------
    def record_answer(self, question_index: int, value: Any, time_spent: float = 0.0) -> Answer:
        with self._lock:
            self._require(SessionState.IN_MODULE, "record_answer")
            module = self._check_index(question_index)
            question = module.questions[question_index]

            prior = self.answers.get(question.id)
            answer = Answer(
                question_id=question.id,
                question_index=question_index,
                value=value,
                time_spent=(prior.time_spent if prior else 0.0) + max(0.0, float(time_spent)),
                last_modified=self._clock(),
                flagged=question_index in self.flagged,
            )
            self.answers[question.id] = answer
            self._touch()
            return answer

    def toggle_flag(self, question_index: int) -> bool:
        with self._lock:
            self._require(SessionState.IN_MODULE, "toggle_flag")
            module = self._check_index(question_index)

            if question_index in self.flagged:
                self.flagged.discard(question_index)
                flagged = False
            else:
                self.flagged.add(question_index)
                flagged = True

            answer = self.answers.get(module.questions[question_index].id)
            if answer is not None:
                answer.flagged = flagged
            self._touch()
            return flagged

    def set_current_question(self, index: int) -> int:
        with self._lock:
            self._require(SessionState.IN_MODULE, "set_current_question")
            self._check_index(index)
            if index != self.current_question:
                self.current_question = index
                self._touch()
            return self.current_question

    def advance_question(self) -> int:
        with self._lock:
            self._require(SessionState.IN_MODULE, "advance_question")
            if self.current_question < len(self.current_module.questions) - 1:
                self.current_question += 1
                self._touch()
            return self.current_question

    def previous_question(self) -> int:
        with self._lock:
            self._require(SessionState.IN_MODULE, "previous_question")
            if self.current_question > 0:
                self.current_question -= 1
                self._touch()
            return self.current_question

    # ------------------------------
    # Đồng hồ
    # ------------------------------
    def tick(self, elapsed: float) -> SessionState:
        """
        Trừ thời gian còn lại. Hết giờ module -> tự nộp module đó.
        Hết giờ nghỉ -> vào module kế tiếp.
        """
        if not math.isfinite(elapsed) or elapsed < 0:
            raise ValueError(f"elapsed phải là số hữu hạn >= 0, nhận {elapsed!r}")

        with self._lock:
            if self.state in TERMINAL_STATES:
                return self.state
            if self.state == SessionState.NOT_STARTED:
                raise InvalidStateError("tick trước khi bắt đầu lượt thi")

            if self.state == SessionState.IN_MODULE:
                used = min(float(elapsed), self.time_remaining)
                self.time_remaining -= used
                self.module_elapsed += used
                if self.time_remaining <= 0:
                    self.time_remaining = 0.0
                    logger.info("⏱️ Hết giờ module %s, tự động nộp", self.current_module_id)
                    self._finalize(timed_out=True)
                else:
                    self._touch()

            elif self.state == SessionState.IN_BREAK:
                self.break_remaining = max(0.0, self.break_remaining - float(elapsed))
                if self.break_remaining <= 0:
                    self._enter_module(self.current_module_id)
                self._touch()

            return self.state

    # ------------------------------
    # Chuyển module
    # ------------------------------
    def _finalize(self, timed_out: bool, notify: bool = True) -> ModuleResult:
        module = self.current_module
        score = score_module(module, self.answers)
        decision = route(module, score)

        scored: Dict[str, Answer] = {}
        for qs in score.per_question:
            answer = self.answers.get(qs.question_id)
            if answer is not None:
                scored[qs.question_id] = replace(answer, correct=qs.correct, points_earned=qs.points_earned)

        result = ModuleResult(
            module_id=module.id,
            score=score,
            answers=scored,
            flagged=sorted(self.flagged),
            time_spent=self.module_elapsed,
            timed_out=timed_out,
            decision=decision,
            finalized_at=self._clock(),
        )
        self.history.append(result)
        logger.info(
            "✅ Module %s: %.1f/%.1f điểm -> %s",
            module.id, score.total_points, score.max_points, decision.target or "kết thúc",
        )

        self.answers = {}
        self.flagged = set()
        self.current_question = 0
        self.module_elapsed = 0.0

        if decision.target is None:
            self._complete()
        elif self.break_duration > 0:
            self.state = SessionState.IN_BREAK
            self.current_module_id = decision.target
            self.time_remaining = 0.0
            self.break_remaining = float(self.break_duration)
        else:
            self._enter_module(decision.target)

        if notify:
            self._touch()
        return result

    def _complete(self) -> None:
        self.state = SessionState.SUBMITTED
        self.ended_at = self._clock()
        self.time_remaining = 0.0
        self.break_remaining = 0.0
        self.result = summarize(self.history)
        logger.info(
            "🏁 Attempt %s nộp bài: %.1f/%.1f (%d%%)",
            self.attempt_id, self.result.score, self.result.max_score, self.result.percentage,
        )

    def finalize_module(self, module_id: Optional[str] = None) -> SessionState:
        """
        Chấm module hiện tại và chuyển tiếp.
        Gọi lặp (timeout và bấm nộp cùng lúc) là no-op: đang nghỉ/đã nộp,
        hoặc `module_id` là module đã chấm rồi.
        """
        with self._lock:
            if self.state in (SessionState.IN_BREAK, SessionState.SUBMITTED):
                logger.debug("finalize_module bỏ qua ở trạng thái %s", self.state.value)
                return self.state
            self._require(SessionState.IN_MODULE, "finalize_module")

            if module_id is not None and module_id != self.current_module_id:
                if module_id in self.module_path:
                    logger.debug("Module %s đã chấm, bỏ qua", module_id)
                    return self.state
                raise InvalidStateError(f"{module_id} không phải module hiện tại ({self.current_module_id})")

            self._finalize(timed_out=False)
            return self.state

    def end_break(self) -> SessionState:
        with self._lock:
            self._require(SessionState.IN_BREAK, "end_break")
            self._enter_module(self.current_module_id)
            self._touch()
            return self.state

    def submit(self) -> TestResult:
        """Nộp toàn bài: chấm liên tiếp các module còn lại cho tới khi không còn module kế tiếp."""
        with self._lock:
            if self.state == SessionState.SUBMITTED:
                return self.result
            if self.state not in (SessionState.IN_MODULE, SessionState.IN_BREAK):
                raise InvalidStateError(f"submit không hợp lệ khi {self.state.value}")

            while self.state != SessionState.SUBMITTED:
                if self.state == SessionState.IN_BREAK:
                    self._enter_module(self.current_module_id)
                self._finalize(timed_out=False, notify=False)

            self._touch()
            return self.result

    def abandon(self, reason: str = "") -> SessionState:
        with self._lock:
            if self.state in TERMINAL_STATES:
                raise InvalidStateError(f"Attempt {self.attempt_id} đã kết thúc ({self.state.value})")
            self.state = SessionState.ABANDONED
            self.ended_at = self._clock()
            logger.warning("🛑 Attempt %s bị hủy: %s", self.attempt_id, reason or "không rõ lý do")
            self._touch()
            return self.state

    # ------------------------------
    # Projection
    # ------------------------------
    def preview_score(self) -> Optional[ModuleScore]:
        """Điểm tạm tính của module đang làm. Không thay đổi session."""
        with self._lock:
            if self.state != SessionState.IN_MODULE:
                return None
            return score_module(self.current_module, self.answers)

    def view(self) -> SessionView:
        with self._lock:
            module = self.current_module
            statuses: Tuple[QuestionStatus, ...] = ()
            if module is not None and self.state == SessionState.IN_MODULE:
                statuses = tuple(
                    QuestionStatus(
                        index=i,
                        question_id=q.id,
                        answered=q.id in self.answers and not is_blank(self.answers[q.id].value),
                        flagged=i in self.flagged,
                    )
                    for i, q in enumerate(module.questions)
                )
            return SessionView(
                attempt_id=self.attempt_id,
                state=self.state,
                module_id=module.id if module else None,
                module_name=module.name if module else None,
                subject=module.subject if module else None,
                question_index=self.current_question,
                question_count=len(module.questions) if module else 0,
                time_remaining=self.time_remaining,
                break_remaining=self.break_remaining,
                modules_completed=len(self.history),
                questions=statuses,
            )

    # ------------------------------
    # Snapshot & resume
    # ------------------------------
    def to_snapshot(self) -> SessionSnapshot:
        with self._lock:
            answers: Dict[str, Answer] = {}
            flags: Dict[str, List[int]] = {}
            for r in self.history:
                answers.update({qid: replace(a) for qid, a in r.answers.items()})
                if r.flagged:
                    flags[r.module_id] = list(r.flagged)
            answers.update({qid: replace(a) for qid, a in self.answers.items()})
            if self.flagged and self.current_module_id:
                flags[self.current_module_id] = sorted(self.flagged)

            return SessionSnapshot(
                attempt_id=self.attempt_id,
                test_id=self.test_id,
                user_id=self.user_id,
                state=self.state.value,
                current_module_id=self.current_module_id,
                current_question=self.current_question,
                time_remaining=self.time_remaining,
                break_remaining=self.break_remaining,
                module_elapsed=self.module_elapsed,
                module_path=self.module_path,
                answers=answers,
                flags=flags,
                module_times={r.module_id: r.time_spent for r in self.history},
                timed_out=[r.module_id for r in self.history if r.timed_out],
                submitted=self.submitted,
                auto_save=self.auto_save,
                started_at=self.started_at,
                ended_at=self.ended_at,
                last_modified=self.last_modified,
            )

    @classmethod
    def resume(
        cls,
        graph: ModuleGraph,
        snapshot: Union[SessionSnapshot, Mapping[str, Any]],
        *,
        break_duration: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> "ExamSession":
        """
        Dựng lại session từ snapshot.

        Không tin quyết định định tuyến đã lưu: phát lại module_path từ module
        bắt đầu, chấm lại và định tuyến lại. Lệch ở đâu thì dừng ở ranh giới
        module hợp lệ gần nhất (bắt đầu lại module đó). Thời gian mất kết nối
        không bị trừ.
        """
        snap = snapshot if isinstance(snapshot, SessionSnapshot) else SessionSnapshot.from_dict(snapshot)
        if snap.test_id != graph.test_id:
            raise ValidationError(f"Snapshot thuộc đề {snap.test_id}, không phải {graph.test_id}")

        session = cls(
            graph,
            attempt_id=snap.attempt_id,
            user_id=snap.user_id,
            break_duration=break_duration,
            auto_save=snap.auto_save,
            clock=clock,
        )
        session.started_at = snap.started_at

        try:
            saved_state = SessionState(snap.state)
        except ValueError:
            logger.warning("⚠️ Snapshot %s: trạng thái lạ %r", snap.attempt_id, snap.state)
            saved_state = SessionState.IN_MODULE

        if saved_state == SessionState.NOT_STARTED and not snap.module_path:
            session.last_modified = snap.last_modified
            return session

        session._replay(snap, saved_state)
        session.last_modified = max(session.last_modified, snap.last_modified)
        return session

    def _restore_module_answers(self, snap: SessionSnapshot, module: Module) -> None:
        self.answers = {
            q.id: replace(snap.answers[q.id], correct=None, points_earned=0.0, question_index=i)
            for i, q in enumerate(module.questions)
            if q.id in snap.answers
        }
        self.flagged = {i for i in snap.flags.get(module.id, []) if 0 <= i < len(module.questions)}

    def _replay(self, snap: SessionSnapshot, saved_state: SessionState) -> None:
        verified = True
        self._enter_module(self.graph.entry_module_id)

        for recorded in snap.module_path:
            if self.state == SessionState.SUBMITTED:
                verified = False
                break
            if recorded != self.current_module_id:
                verified = False
                break
            if self.state == SessionState.IN_BREAK:
                self._enter_module(self.current_module_id)

            module = self.current_module
            self._restore_module_answers(snap, module)
            self.module_elapsed = min(float(module.duration), max(0.0, snap.module_times.get(module.id, 0.0)))
            result = self._finalize(timed_out=recorded in snap.timed_out, notify=False)
            result.finalized_at = snap.last_modified or result.finalized_at

        if self.state == SessionState.SUBMITTED:
            if not verified or saved_state != SessionState.SUBMITTED:
                logger.warning("⚠️ Snapshot %s lệch với định tuyến, giữ kết quả đã chấm lại", snap.attempt_id)
            self.ended_at = snap.ended_at or self.ended_at
            return

        if verified and snap.current_module_id != self.current_module_id:
            verified = False
        if verified and saved_state == SessionState.SUBMITTED:
            verified = False

        if not verified:
            logger.warning(
                "⚠️ Snapshot %s không khớp, khôi phục từ đầu module %s",
                snap.attempt_id, self.current_module_id,
            )
            if self.state == SessionState.IN_BREAK:
                self._enter_module(self.current_module_id)
            return

        if saved_state == SessionState.ABANDONED:
            self.state = SessionState.ABANDONED
            self.ended_at = snap.ended_at
            return

        if saved_state == SessionState.IN_BREAK:
            if self.state == SessionState.IN_BREAK:
                self.break_remaining = min(float(self.break_duration), max(0.0, snap.break_remaining))
                if self.break_remaining <= 0:
                    self._enter_module(self.current_module_id)
            return

        # Khôi phục đúng vị trí trong module đang làm
        if self.state == SessionState.IN_BREAK:
            self._enter_module(self.current_module_id)
        module = self.current_module
        self._restore_module_answers(snap, module)
        self.current_question = min(max(0, snap.current_question), len(module.questions) - 1)
        self.time_remaining = min(float(module.duration), max(0.0, snap.time_remaining))
        self.module_elapsed = min(float(module.duration), max(0.0, snap.module_elapsed))
        if self.time_remaining <= 0:
            logger.info("⏱️ Snapshot %s hết giờ module %s, tự động nộp", snap.attempt_id, module.id)
            self._finalize(timed_out=True, notify=False)
