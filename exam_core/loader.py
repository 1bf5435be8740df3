# exam_core/loader.py

"""
Đọc đề thi do trình soạn đề (admin wizard) xuất ra.

Dữ liệu dùng khóa camelCase như front end lưu:
    {id, name, breakDuration, totalDuration, adaptiveRules?, modules: [
        {id, name, subject, difficulty, order, duration, questions: [...],
         questionCounts, questionScores, passage?, adaptiveRules?}
    ]}
- duration của module tính bằng phút (durationSeconds nếu cần chính xác giây)
- thiếu duration -> chia đều totalDuration (phút) cho số module
- options là chuỗi -> option id là chỉ số "0","1",...
"""

import json
import math
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import ValidationError
from .module_graph import ModuleGraph
from .schema import (
    DEFAULT_BREAK_SECONDS,
    KIND_KEYS,
    AdaptiveRule,
    Module,
    Option,
    Passage,
    Question,
    TestDefinition,
)


def _options(raw: Any) -> tuple:
    out = []
    for i, opt in enumerate(raw or []):
        if isinstance(opt, Mapping):
            out.append(Option(id=str(opt.get("id", i)), text=str(opt.get("text", ""))))
        else:
            out.append(Option(id=str(i), text=str(opt)))
    return tuple(out)


def _question(raw: Mapping[str, Any], question_scores: Mapping[str, float]) -> Question:
    kind = raw.get("type") or raw.get("kind")
    points = raw.get("points")
    if points is None:
        points = question_scores.get(KIND_KEYS.get(kind, ""), 0) or 1

    return Question(
        id=str(raw["id"]),
        kind=kind,
        prompt=raw.get("question") or raw.get("prompt") or "",
        correct_answer=str(raw.get("correctAnswer", raw.get("correct_answer", ""))),
        options=_options(raw.get("options")),
        explanation=raw.get("explanation") or "",
        points=float(points),
        image_url=raw.get("imageUrl") or raw.get("image_url"),
    )


def _rule(raw: Mapping[str, Any], index: int) -> AdaptiveRule:
    return AdaptiveRule(
        id=str(raw.get("id") or f"rule-{index + 1}"),
        operator=raw["operator"],
        threshold=float(raw["scoreThreshold"] if "scoreThreshold" in raw else raw["threshold"]),
        next_module_id=str(raw["nextModuleId"] if "nextModuleId" in raw else raw["next_module_id"]),
        else_module_id=raw.get("elseModuleId") or raw.get("else_module_id") or None,
        description=raw.get("description") or "",
        source_module_id=raw.get("sourceModuleId") or raw.get("source_module_id"),
        basis=raw.get("basis", "points"),
    )


def _duration_seconds(raw: Mapping[str, Any], fallback_minutes: Optional[float]) -> int:
    if raw.get("durationSeconds") is not None:
        return int(raw["durationSeconds"])
    if raw.get("duration") is not None:
        return int(round(float(raw["duration"]) * 60))
    if fallback_minutes:
        return int(math.ceil(fallback_minutes) * 60)
    return 0


def parse_test_definition(data: Mapping[str, Any]) -> TestDefinition:
    """Chuyển dict đề thi sang TestDefinition. Dữ liệu thiếu trường bắt buộc -> ValidationError."""
    try:
        raw_modules: List[Mapping[str, Any]] = list(data["modules"])
        per_module = None
        if data.get("totalDuration") and raw_modules:
            per_module = float(data["totalDuration"]) / len(raw_modules)

        # Luật cấp đề (sourceModuleId) được gắn vào module nguồn
        test_rules: Dict[str, List[Mapping[str, Any]]] = {}
        for raw_rule in data.get("adaptiveRules") or []:
            test_rules.setdefault(str(raw_rule.get("sourceModuleId")), []).append(raw_rule)

        modules = []
        for pos, raw in enumerate(raw_modules):
            module_id = str(raw["id"])
            scores = raw.get("questionScores") or {}
            raw_rules = list(raw.get("adaptiveRules") or []) + test_rules.pop(module_id, [])
            passage = raw.get("passage")
            modules.append(Module(
                id=module_id,
                name=raw.get("name") or module_id,
                subject=raw.get("subject"),
                difficulty=raw.get("difficulty"),
                questions=tuple(_question(q, scores) for q in raw.get("questions") or []),
                order=int(raw.get("order", pos)),
                duration=_duration_seconds(raw, per_module),
                rules=tuple(_rule(r, i) for i, r in enumerate(raw_rules)),
                passage=Passage(
                    id=str(passage.get("id", "")),
                    title=passage.get("title", ""),
                    content=passage.get("content", ""),
                ) if passage else None,
                question_counts=dict(raw.get("questionCounts") or {}),
                question_scores=dict(scores),
            ))
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Đề thi {data.get('id')!r} sai định dạng: {e!r}") from e

    if test_rules:
        raise ValidationError(
            f"Đề thi {data.get('id')!r} có luật trỏ từ module không tồn tại",
            [f"sourceModuleId={k}" for k in test_rules],
        )

    break_duration = data.get("breakDuration")
    return TestDefinition(
        id=str(data.get("id", "")),
        name=data.get("name") or "",
        modules=tuple(modules),
        break_duration=DEFAULT_BREAK_SECONDS if break_duration is None else int(break_duration),
        entry_module_id=data.get("entryModuleId"),
    )


def load_test_definition(path: str) -> TestDefinition:
    with open(path, encoding="utf-8") as f:
        return parse_test_definition(json.load(f))


def build_graph(source: Union[str, Mapping[str, Any], TestDefinition]) -> ModuleGraph:
    """Nhận đường dẫn JSON, dict hoặc TestDefinition và trả về ModuleGraph đã kiểm tra."""
    if isinstance(source, TestDefinition):
        return ModuleGraph(source)
    if isinstance(source, str):
        return ModuleGraph(load_test_definition(source))
    return ModuleGraph(parse_test_definition(source))
