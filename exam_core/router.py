# exam_core/router.py

from __future__ import annotations

import logging
import operator
from typing import Callable, Dict, Optional

from .schema import AdaptiveRule, Module, ModuleScore, RouteDecision

logger = logging.getLogger(__name__)


# ============================
# Bảng toán tử so sánh
# ============================

COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    "greater_than": operator.gt,
    "less_than": operator.lt,
}

BASES = ("points", "percentage")


def register_operator(name: str, fn: Callable[[float, float], bool]) -> None:
    """Thêm toán tử mới cho luật thích ứng (vd: "at_least")."""
    COMPARATORS[name] = fn


def _rule_value(rule: AdaptiveRule, score: ModuleScore) -> float:
    if rule.basis == "percentage":
        return score.percentage
    return score.total_points


def evaluate_rule(rule: AdaptiveRule, score: ModuleScore) -> RouteDecision:
    """
    Đánh giá một luật:
    - điều kiện đúng -> nhánh "then" (next_module_id)
    - điều kiện sai và có else_module_id -> nhánh "else"
    - còn lại -> không quyết định (target=None, branch=None)
    """
    compare = COMPARATORS[rule.operator]
    value = _rule_value(rule, score)

    if compare(value, rule.threshold):
        return RouteDecision(target=rule.next_module_id, rule_id=rule.id, branch="then", value=value)
    if rule.else_module_id:
        return RouteDecision(target=rule.else_module_id, rule_id=rule.id, branch="else", value=value)
    return RouteDecision(target=None, value=value)


# ============================
# Chọn module tiếp theo
# ============================

def route(module: Module, score: ModuleScore) -> RouteDecision:
    """
    Duyệt luật theo thứ tự khai báo như chuỗi if/elif.
    Kết quả quyết định đầu tiên (then hoặc else) thắng.
    Không luật nào quyết định -> kết thúc bài thi.
    """
    for rule in module.rules:
        decision = evaluate_rule(rule, score)
        if decision.branch is not None:
            logger.debug(
                "Rule %s (%s %s %s) -> %s [%s]",
                rule.id, decision.value, rule.operator, rule.threshold, decision.target, decision.branch,
            )
            return decision

    return RouteDecision(target=None, value=score.total_points)


def next_module(module: Module, score: ModuleScore) -> Optional[str]:
    return route(module, score).target
