import logging
from dataclasses import replace
from typing import Optional, Set

from exam_core.errors import SyncConflictError
from exam_core.module_graph import ModuleGraph
from exam_core.snapshot import SessionSnapshot

logger = logging.getLogger(__name__)


def _finalized_questions(snapshot: SessionSnapshot, graph: ModuleGraph) -> Set[str]:
    out: Set[str] = set()
    for module_id in snapshot.module_path:
        if module_id in graph:
            out.update(q.id for q in graph.module(module_id).questions)
    return out


def reconcile(
    local: Optional[SessionSnapshot],
    remote: Optional[SessionSnapshot],
    graph: ModuleGraph,
) -> Optional[SessionSnapshot]:
    """
    Hợp nhất snapshot local và remote khi có kết nối lại.

    - Không có local -> dùng remote (remote chỉ là nguồn chuẩn khi thiết bị chưa có bản ghi)
    - Có local -> local là nguồn chuẩn; câu trả lời của các module chưa chấm
      được hợp nhất từng câu theo last_modified (last-write-wins)
    - Bất đồng quyền sở hữu (test_id/user_id) -> SyncConflictError được ghi log,
      giữ nguyên snapshot có last_modified mới hơn
    """
    if local is None:
        return remote
    if remote is None:
        return local

    if local.test_id != remote.test_id or (
        local.user_id and remote.user_id and local.user_id != remote.user_id
    ):
        conflict = SyncConflictError(
            f"Attempt {local.attempt_id}: local ({local.test_id}, {local.user_id}) "
            f"khác remote ({remote.test_id}, {remote.user_id})"
        )
        winner = local if local.last_modified >= remote.last_modified else remote
        logger.warning("⚠️ %s -> giữ bản %s", conflict, "local" if winner is local else "remote")
        return winner

    frozen = _finalized_questions(local, graph)
    answers = dict(local.answers)
    taken = 0
    for qid, theirs in remote.answers.items():
        if qid in frozen:
            continue
        mine = answers.get(qid)
        if mine is None or theirs.last_modified > mine.last_modified:
            answers[qid] = replace(theirs)
            taken += 1

    if taken:
        logger.info("🔄 Attempt %s: lấy %d câu trả lời mới hơn từ remote", local.attempt_id, taken)

    return replace(
        local,
        answers=answers,
        last_modified=max(local.last_modified, remote.last_modified),
    )
