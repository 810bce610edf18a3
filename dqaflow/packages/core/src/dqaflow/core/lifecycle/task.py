"""Task 生命周期

TODO / IN_PROGRESS / ON_HOLD 之间可由负责人或 Manager 自由流转，
ON_HOLD 需附原因。DONE 为终态：
- AUGMENTING / QA 类型只能由自动化规则完成
- 其他类型可人工完成，但不能存在未关闭的 Escalation
"""

from datetime import datetime

from ulid import ULID

from ..models.enums import AUTOMATED_TASK_TYPES, TaskStatus, validate_transition
from ..models.task import Task, TaskNote
from ..models.user import Viewer
from .base import TransitionContext, TransitionExtra, has_text, is_manager_or, raise_if_rejected


def explain(
    task: Task,
    from_status: TaskStatus,
    to_status: TaskStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> str | None:
    """返回拒绝原因；允许流转时返回 None"""
    if task.status != from_status:
        return f"任务状态已变化: 期望 {from_status}，实际 {task.status}"
    if from_status == to_status:
        return f"任务已处于 {to_status}"
    if not validate_transition(from_status, to_status):
        return f"不允许从 {from_status} 流转到 {to_status}"

    if not context.via_automation:
        if actor is None:
            return "缺少操作者"
        if not is_manager_or(actor, task.assignee_id):
            return "仅负责人或 Manager 可修改任务状态"

    if to_status == TaskStatus.ON_HOLD and not has_text(context.note):
        return "挂起任务需要填写原因"

    if to_status == TaskStatus.DONE and not context.via_automation:
        if task.type in AUTOMATED_TASK_TYPES:
            return f"{task.type} 任务只能由库存数据自动完成"
        if context.active_escalation_ids:
            return "存在未关闭的 Escalation，请先关闭后再完成任务"

    return None


def can_transition(
    task: Task,
    from_status: TaskStatus,
    to_status: TaskStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> bool:
    return explain(task, from_status, to_status, actor, context) is None


def check_transition(
    task: Task,
    to_status: TaskStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> None:
    """校验从当前状态到 to_status 的流转，拒绝时抛出 ValidationError"""
    raise_if_rejected(explain(task, task.status, to_status, actor, context), task.task_id)


def make_note(text: str, extra: TransitionExtra) -> TaskNote:
    actor = extra.actor
    return TaskNote(
        note_id=extra.record_id or str(ULID()),
        author_id=actor.user_id if actor else "system",
        author_name=(actor.name if actor else "") or "",
        text=text,
        timestamp=extra.now,
    )


def apply(task: Task, to_status: TaskStatus, extra: TransitionExtra) -> Task:
    """应用流转，返回新的 Task（不修改入参）"""
    update: dict = {"status": to_status}
    if to_status == TaskStatus.DONE:
        update["completed_at"] = extra.now
    if has_text(extra.note):
        note = make_note(f"Status changed to {to_status}: {extra.note}", extra)
        update["notes"] = [*task.notes, note]
    return task.model_copy(update=update)


def complete_by_automation(task: Task, now: datetime) -> Task:
    """自动化规则完成任务（绕过人工守卫，仍受流转表约束）"""
    context = TransitionContext(via_automation=True)
    raise_if_rejected(
        explain(task, task.status, TaskStatus.DONE, None, context),
        task.task_id,
    )
    return apply(task, TaskStatus.DONE, TransitionExtra(now=now))
