# exam_core/schema.py

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


# ============================
# Hằng số miền
# ============================

SUBJECTS = ("Math", "English")
DIFFICULTIES = ("Easy", "Medium", "Hard")

MCQ = "MCQ"
NUMERIC = "Numeric"
IMAGE = "Image"
PARAGRAPH = "Paragraph"
QUESTION_KINDS = (MCQ, NUMERIC, IMAGE, PARAGRAPH)

# Khóa trong question_counts / question_scores theo từng loại câu
KIND_KEYS = {MCQ: "mcq", NUMERIC: "numeric", IMAGE: "image", PARAGRAPH: "passage"}

DEFAULT_BREAK_SECONDS = 300


# ============================
# Dữ liệu đề (bất biến)
# ============================

@dataclass(frozen=True)
class Option:
    id: str
    text: str


@dataclass(frozen=True)
class Question:
    """
    Một câu hỏi trong module:
    - kind: MCQ | Numeric | Image | Paragraph
    - options rỗng với câu Numeric và câu đoạn văn tự luận
    - correct_answer là option id ("0","1",...) hoặc giá trị số/văn bản
    """
    id: str
    kind: str
    prompt: str
    correct_answer: str
    options: Tuple[Option, ...] = ()
    explanation: str = ""
    points: float = 1.0
    image_url: Optional[str] = None

    def option_ids(self) -> List[str]:
        return [o.id for o in self.options]


@dataclass(frozen=True)
class Passage:
    id: str
    title: str
    content: str


@dataclass(frozen=True)
class AdaptiveRule:
    """
    Luật chuyển module:
    - operator: greater_than | less_than
    - basis: so sánh theo "points" (tổng điểm) hoặc "percentage"
    - else_module_id rỗng nghĩa là luật này không quyết định khi điều kiện sai
    """
    id: str
    operator: str
    threshold: float
    next_module_id: str
    else_module_id: Optional[str] = None
    description: str = ""
    source_module_id: Optional[str] = None
    basis: str = "points"


@dataclass(frozen=True)
class Module:
    id: str
    name: str
    subject: str        # Math | English
    difficulty: str     # Easy | Medium | Hard
    questions: Tuple[Question, ...]
    order: int
    duration: int       # giây
    rules: Tuple[AdaptiveRule, ...] = ()
    passage: Optional[Passage] = None
    question_counts: Mapping[str, int] = field(default_factory=dict)
    question_scores: Mapping[str, float] = field(default_factory=dict)

    @property
    def max_points(self) -> float:
        return sum(q.points for q in self.questions)

    def __len__(self) -> int:
        return len(self.questions)


@dataclass(frozen=True)
class TestDefinition:
    """Đề thi hoàn chỉnh do admin xuất bản. Engine chỉ đọc."""
    __test__ = False  # không phải test class của pytest

    id: str
    name: str
    modules: Tuple[Module, ...]
    break_duration: int = DEFAULT_BREAK_SECONDS
    entry_module_id: Optional[str] = None


# ============================
# Dữ liệu lượt làm bài
# ============================

@dataclass
class Answer:
    """
    Câu trả lời của học sinh cho một câu hỏi.
    `correct` và `points_earned` chỉ được điền khi module đã chấm.
    """
    question_id: str
    question_index: int
    value: Any
    time_spent: float = 0.0
    last_modified: float = 0.0
    flagged: bool = False
    correct: Optional[bool] = None
    points_earned: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "question_index": self.question_index,
            "value": self.value,
            "time_spent": self.time_spent,
            "last_modified": self.last_modified,
            "flagged": self.flagged,
            "correct": self.correct,
            "points_earned": self.points_earned,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Answer":
        return cls(
            question_id=str(data["question_id"]),
            question_index=int(data["question_index"]),
            value=data.get("value"),
            time_spent=float(data.get("time_spent") or 0.0),
            last_modified=float(data.get("last_modified") or 0.0),
            flagged=bool(data.get("flagged", False)),
            correct=data.get("correct"),
            points_earned=float(data.get("points_earned") or 0.0),
        )


@dataclass(frozen=True)
class QuestionScore:
    question_id: str
    correct: bool
    points_earned: float
    answered: bool


@dataclass(frozen=True)
class ModuleScore:
    total_points: float
    max_points: float
    per_question: Tuple[QuestionScore, ...]

    @property
    def percentage(self) -> float:
        if self.max_points <= 0:
            return 0.0
        return self.total_points / self.max_points * 100.0

    @property
    def correct_count(self) -> int:
        return sum(1 for q in self.per_question if q.correct)

    @property
    def answered_count(self) -> int:
        return sum(1 for q in self.per_question if q.answered)


@dataclass(frozen=True)
class RouteDecision:
    """Kết quả định tuyến: module kế tiếp (None = kết thúc bài) và luật đã quyết định."""
    target: Optional[str]
    rule_id: Optional[str] = None
    branch: Optional[str] = None  # "then" | "else" | None
    value: float = 0.0


@dataclass
class ModuleResult:
    module_id: str
    score: ModuleScore
    answers: Dict[str, Answer]
    flagged: List[int]
    time_spent: float
    timed_out: bool
    decision: RouteDecision
    finalized_at: float


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    score: float
    max_score: float
    percentage: int
    time_spent: float
    questions_correct: int
    questions_incorrect: int
    questions_skipped: int
    module_path: Tuple[str, ...]
    modules: Tuple[ModuleResult, ...] = ()
