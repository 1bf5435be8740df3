# exam_core/scorer.py

"""
Chấm điểm module theo tổng điểm câu hỏi.

Hàm thuần: không có side effect, gọi lặp lại hoặc gọi thử (preview điểm
trực tiếp) đều không ảnh hưởng trạng thái session.
"""

import math
import re
from fractions import Fraction
from typing import Any, Iterable, Mapping, Optional

from .schema import (
    MCQ,
    IMAGE,
    NUMERIC,
    PARAGRAPH,
    Answer,
    Module,
    ModuleResult,
    ModuleScore,
    Question,
    QuestionScore,
    TestResult,
)

_WS = re.compile(r"\s+")

# Số nguyên/thập phân có số mũ, hoặc phân số a/b
_NUMBER = re.compile(r"[+-]?(?:\d+/\d+|(?:\d+\.?\d*|\.\d+)(?:[eE](?P<exp>[+-]?\d+))?)")
MAX_NUMERIC_LENGTH = 64
MAX_EXPONENT = 100


def _raw_value(answer: Any) -> Any:
    if isinstance(answer, Answer):
        return answer.value
    return answer


def is_blank(value: Any) -> bool:
    """Câu bị bỏ qua: không có giá trị hoặc chuỗi rỗng."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def normalize_numeric(value: Any) -> Optional[Fraction]:
    """
    Chuẩn hóa đáp án số về số hữu tỉ chính xác.
    "3.50" == "3.5" == "7/2"; khoảng trắng và dấu phẩy ngăn cách hàng nghìn bị bỏ.
    Trả None nếu không phải số, là NaN/inf, dài quá MAX_NUMERIC_LENGTH
    hoặc có số mũ vượt MAX_EXPONENT.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Fraction(repr(value))
    text = str(value).strip().replace(",", "")
    if not text or len(text) > MAX_NUMERIC_LENGTH:
        return None
    match = _NUMBER.fullmatch(text)
    if match is None:
        return None
    if match.group("exp") and abs(int(match.group("exp"))) > MAX_EXPONENT:
        return None
    try:
        return Fraction(text)
    except (ValueError, ZeroDivisionError):
        return None


def _normalize_text(value: Any) -> str:
    return _WS.sub(" ", str(value).strip()).casefold()


def is_correct(question: Question, value: Any) -> bool:
    if is_blank(value):
        return False

    if question.kind == NUMERIC:
        got = normalize_numeric(value)
        expected = normalize_numeric(question.correct_answer)
        return got is not None and expected is not None and got == expected

    if question.kind in (MCQ, IMAGE) or question.options:
        # So khớp option id tuyệt đối
        return str(value) == str(question.correct_answer)

    if question.kind == PARAGRAPH:
        return _normalize_text(value) == _normalize_text(question.correct_answer)

    return str(value) == str(question.correct_answer)


def score_module(module: Module, answers: Mapping[str, Any]) -> ModuleScore:
    """
    Chấm một module.

    Tham số:
        module: module cần chấm
        answers: {question_id: Answer | giá trị thô}

    Câu chưa trả lời được 0 điểm và tính là sai.
    """
    per_question = []
    total = 0.0
    for question in module.questions:
        value = _raw_value(answers.get(question.id))
        answered = not is_blank(value)
        correct = answered and is_correct(question, value)
        earned = question.points if correct else 0.0
        total += earned
        per_question.append(QuestionScore(
            question_id=question.id,
            correct=correct,
            points_earned=earned,
            answered=answered,
        ))

    return ModuleScore(
        total_points=total,
        max_points=module.max_points,
        per_question=tuple(per_question),
    )


def summarize(results: Iterable[ModuleResult]) -> TestResult:
    """Tổng hợp kết quả cuối cùng từ các module đã chấm."""
    results = tuple(results)
    score = sum(r.score.total_points for r in results)
    max_score = sum(r.score.max_points for r in results)
    correct = sum(r.score.correct_count for r in results)
    answered = sum(r.score.answered_count for r in results)
    seen = sum(len(r.score.per_question) for r in results)

    return TestResult(
        score=score,
        max_score=max_score,
        percentage=round(score / max_score * 100) if max_score > 0 else 0,
        time_spent=sum(r.time_spent for r in results),
        questions_correct=correct,
        questions_incorrect=answered - correct,
        questions_skipped=seen - answered,
        module_path=tuple(r.module_id for r in results),
        modules=results,
    )
