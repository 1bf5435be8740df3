# exam_core/module_graph.py

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, List, Optional, Set

from .errors import ValidationError
from .router import BASES, COMPARATORS
from .schema import (
    DIFFICULTIES,
    IMAGE,
    KIND_KEYS,
    MCQ,
    QUESTION_KINDS,
    SUBJECTS,
    Module,
    TestDefinition,
)

logger = logging.getLogger(__name__)


class ModuleGraph:
    """
    Đồ thị module bất biến của một đề thi.

    Kiểm tra ngay khi khởi tạo (trước khi cho phép bắt đầu lượt thi):
        1) Mọi module đích của luật đều tồn tại
        2) Mỗi cạnh luật đi tới module có `order` lớn hơn hẳn -> không có vòng lặp
        3) Đúng một module không có cạnh vào, đó là module bắt đầu
    Mọi vi phạm được gom lại và ném một ValidationError duy nhất.
    """

    def __init__(self, test: TestDefinition):
        self.test = test
        self.test_id = test.id
        self.break_duration = max(0, int(test.break_duration))
        self._modules: Dict[str, Module] = {}
        self._question_owner: Dict[str, str] = {}

        problems: List[str] = []
        self._index(problems)
        self._check_modules(problems)
        self._check_rules(problems)
        entry = self._find_entry(problems)

        if problems:
            raise ValidationError(f"Đề thi {test.id!r} không hợp lệ", problems)

        self.entry_module_id: str = entry
        logger.debug("ModuleGraph %s: %d module, entry=%s", self.test_id, len(self._modules), entry)

    # ------------------------------
    # Kiểm tra cấu trúc
    # ------------------------------
    def _index(self, problems: List[str]) -> None:
        if not self.test.modules:
            problems.append("đề thi không có module nào")

        for module in self.test.modules:
            if module.id in self._modules:
                problems.append(f"module id trùng lặp: {module.id}")
                continue
            self._modules[module.id] = module

            for question in module.questions:
                owner = self._question_owner.get(question.id)
                if owner is not None:
                    problems.append(f"câu hỏi {question.id} xuất hiện ở cả {owner} và {module.id}")
                    continue
                self._question_owner[question.id] = module.id

    def _check_modules(self, problems: List[str]) -> None:
        for module in self._modules.values():
            if module.subject not in SUBJECTS:
                problems.append(f"{module.id}: subject không hợp lệ {module.subject!r}")
            if module.difficulty not in DIFFICULTIES:
                problems.append(f"{module.id}: difficulty không hợp lệ {module.difficulty!r}")
            if module.duration <= 0:
                problems.append(f"{module.id}: thời lượng phải > 0")
            if not module.questions:
                problems.append(f"{module.id}: module không có câu hỏi")

            for question in module.questions:
                if question.kind not in QUESTION_KINDS:
                    problems.append(f"{question.id}: loại câu không hợp lệ {question.kind!r}")
                if question.points < 0:
                    problems.append(f"{question.id}: điểm âm")
                if question.kind in (MCQ, IMAGE) and question.correct_answer not in question.option_ids():
                    problems.append(f"{question.id}: đáp án {question.correct_answer!r} không thuộc option")

            if module.question_counts:
                actual = Counter(KIND_KEYS.get(q.kind) for q in module.questions)
                for key, declared in module.question_counts.items():
                    if declared and actual.get(key, 0) != declared:
                        logger.warning(
                            "⚠️ %s: khai báo %d câu %s nhưng có %d",
                            module.id, declared, key, actual.get(key, 0),
                        )

    def _check_rules(self, problems: List[str]) -> None:
        for module in self._modules.values():
            for rule in module.rules:
                label = f"{module.id}/{rule.id}"
                if rule.operator not in COMPARATORS:
                    problems.append(f"{label}: toán tử không hỗ trợ {rule.operator!r}")
                if rule.basis not in BASES:
                    problems.append(f"{label}: basis không hỗ trợ {rule.basis!r}")
                if rule.source_module_id and rule.source_module_id != module.id:
                    problems.append(f"{label}: source_module_id={rule.source_module_id} không khớp")

                for target in (rule.next_module_id, rule.else_module_id):
                    if target is None:
                        continue
                    dest = self._modules.get(target)
                    if dest is None:
                        problems.append(f"{label}: module đích {target!r} không tồn tại")
                    elif dest.order <= module.order:
                        problems.append(
                            f"{label}: {module.id}(order={module.order}) -> {target}(order={dest.order}) "
                            "không tăng order, có thể tạo vòng lặp"
                        )

    def _find_entry(self, problems: List[str]) -> Optional[str]:
        referenced: Set[str] = set()
        for module in self._modules.values():
            for rule in module.rules:
                referenced.add(rule.next_module_id)
                if rule.else_module_id:
                    referenced.add(rule.else_module_id)

        roots = [m.id for m in self.ordered_modules() if m.id not in referenced]
        if len(roots) != 1:
            if self._modules:
                problems.append(f"cần đúng 1 module bắt đầu (không có cạnh vào), tìm thấy {roots}")
            return None

        declared = self.test.entry_module_id
        if declared and declared != roots[0]:
            problems.append(f"entry_module_id={declared} nhưng module gốc là {roots[0]}")
            return None
        return roots[0]

    # ------------------------------
    # Truy vấn
    # ------------------------------
    @property
    def entry_module(self) -> Module:
        return self._modules[self.entry_module_id]

    def module(self, module_id: str) -> Module:
        return self._modules[module_id]

    def has_module(self, module_id: Optional[str]) -> bool:
        return module_id in self._modules

    def ordered_modules(self) -> List[Module]:
        return sorted(self._modules.values(), key=lambda m: (m.order, m.id))

    def successors(self, module_id: str) -> Set[str]:
        out: Set[str] = set()
        for rule in self._modules[module_id].rules:
            out.add(rule.next_module_id)
            if rule.else_module_id:
                out.add(rule.else_module_id)
        return out

    def module_of_question(self, question_id: str) -> Optional[str]:
        return self._question_owner.get(question_id)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)
