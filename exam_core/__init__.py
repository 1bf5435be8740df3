# exam_core/__init__.py

"""
Core module cho engine bài thi thích ứng nhiều module

Bao gồm:
- Schema đề thi (Module, Question, AdaptiveRule) và kết quả
- ModuleGraph: đồ thị module bất biến, kiểm tra khi publish đề
- Chấm điểm theo tổng điểm và định tuyến theo luật ngưỡng
- ExamSession: máy trạng thái của một lượt thi, snapshot & resume

Các thành phần xuất khẩu phổ biến:
    ModuleGraph, ExamSession, SessionState, SessionSnapshot
    score_module, summarize, route, next_module
    build_graph, load_test_definition
"""

# Errors
from .errors import (
    ExamEngineError,
    ValidationError,
    InvalidStateError,
    OutOfRangeError,
    AccessDeniedError,
    SnapshotError,
    SyncError,
    SyncConflictError,
    RemoteUnavailableError,
    RemoteRejectedError,
)

# Schema models
from .schema import (
    Option,
    Question,
    Passage,
    AdaptiveRule,
    Module,
    TestDefinition,
    Answer,
    QuestionScore,
    ModuleScore,
    RouteDecision,
    ModuleResult,
    TestResult,
)

# Graph, scoring & routing
from .module_graph import ModuleGraph
from .scorer import (
    score_module,
    summarize,
    normalize_numeric,
)
from .router import (
    route,
    next_module,
    register_operator,
)

# Session
from .snapshot import SessionSnapshot
from .session import (
    ExamSession,
    SessionState,
    SessionView,
)

# Authoring input
from .loader import (
    parse_test_definition,
    load_test_definition,
    build_graph,
)


__all__ = [
    # Errors
    "ExamEngineError",
    "ValidationError",
    "InvalidStateError",
    "OutOfRangeError",
    "AccessDeniedError",
    "SnapshotError",
    "SyncError",
    "SyncConflictError",
    "RemoteUnavailableError",
    "RemoteRejectedError",

    # Schema
    "Option",
    "Question",
    "Passage",
    "AdaptiveRule",
    "Module",
    "TestDefinition",
    "Answer",
    "QuestionScore",
    "ModuleScore",
    "RouteDecision",
    "ModuleResult",
    "TestResult",

    # Graph / scoring / routing
    "ModuleGraph",
    "score_module",
    "summarize",
    "normalize_numeric",
    "route",
    "next_module",
    "register_operator",

    # Session
    "SessionSnapshot",
    "ExamSession",
    "SessionState",
    "SessionView",

    # Loader
    "parse_test_definition",
    "load_test_definition",
    "build_graph",
]
