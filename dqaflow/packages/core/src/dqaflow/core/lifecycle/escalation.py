"""Escalation 生命周期

PENDING --manager 回复--> RESPONDED
任意未关闭状态 --agent 回复--> PENDING
PENDING/RESPONDED --发起人关闭（至少一条回复）--> CLOSED（终态）

关闭后关联 Task 的 is_escalated 需要根据其余未关闭 Escalation 重新计算，
不能无条件清除。
"""

from collections.abc import Iterable
from datetime import datetime

from ulid import ULID

from ..exceptions import ValidationError
from ..models.enums import EscalationStatus, TaskStatus, UserRole, validate_transition
from ..models.escalation import Escalation, EscalationMessage
from ..models.task import Task
from ..models.user import Viewer
from .base import TransitionContext, TransitionExtra, has_text, raise_if_rejected


def reply_target(actor: Viewer) -> EscalationStatus:
    """回复后 Escalation 应进入的状态"""
    if actor.role == UserRole.MANAGER:
        return EscalationStatus.RESPONDED
    if actor.role == UserRole.AGENT:
        return EscalationStatus.PENDING
    raise ValueError(f"未知角色: {actor.role}")


def explain(
    escalation: Escalation,
    from_status: EscalationStatus,
    to_status: EscalationStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> str | None:
    """返回拒绝原因；允许流转时返回 None"""
    if escalation.status != from_status:
        return f"Escalation 状态已变化: 期望 {from_status}，实际 {escalation.status}"
    if from_status == EscalationStatus.CLOSED:
        return "Escalation 已关闭"
    if not validate_transition(from_status, to_status):
        return f"不允许从 {from_status} 流转到 {to_status}"
    if actor is None:
        return "缺少操作者"

    if to_status == EscalationStatus.CLOSED:
        if actor.user_id != escalation.agent_id:
            return "仅发起人可关闭 Escalation"
        if len(escalation.history) <= 1:
            return "至少收到一条回复后才能关闭 Escalation"
        return None

    # 其余流转均为回复
    if not has_text(context.message):
        return "回复内容不能为空"
    if reply_target(actor) != to_status:
        return f"{actor.role} 的回复不能使 Escalation 进入 {to_status}"
    return None


def can_transition(
    escalation: Escalation,
    from_status: EscalationStatus,
    to_status: EscalationStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> bool:
    return explain(escalation, from_status, to_status, actor, context) is None


def check_transition(
    escalation: Escalation,
    to_status: EscalationStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> None:
    raise_if_rejected(
        explain(escalation, escalation.status, to_status, actor, context),
        escalation.escalation_id,
    )


def make_message(actor: Viewer, text: str, now: datetime, message_id: str | None = None):
    return EscalationMessage(
        message_id=message_id or str(ULID()),
        author_id=actor.user_id,
        author_name=actor.name,
        role=actor.role,
        text=text,
        timestamp=now,
    )


def apply(
    escalation: Escalation,
    to_status: EscalationStatus,
    extra: TransitionExtra,
) -> Escalation:
    """应用流转；带 message 时追加到 history 末尾"""
    update: dict = {"status": to_status, "updated_at": extra.now}
    if has_text(extra.message) and extra.actor is not None:
        message = make_message(extra.actor, extra.message, extra.now, extra.record_id)
        update["history"] = [*escalation.history, message]
    return escalation.model_copy(update=update)


def open_escalation(
    task: Task,
    actor: Viewer,
    text: str,
    *,
    now: datetime,
    link: str | None = None,
    escalation_id: str | None = None,
) -> Escalation:
    """创建 PENDING 状态的 Escalation，history 中只有发起人的第一条消息

    调用方需同时把关联 Task 的 is_escalated 置为 True。

    Raises:
        ValidationError: 原因为空或任务已完成
    """
    if not has_text(text):
        raise ValidationError("Escalation 原因不能为空", entity_id=task.task_id)
    if task.status == TaskStatus.DONE:
        raise ValidationError("已完成的任务不能发起 Escalation", entity_id=task.task_id)

    return Escalation(
        escalation_id=escalation_id or f"esc-{ULID()}",
        task_id=task.task_id,
        agent_id=actor.user_id,
        agent_name=actor.name,
        link=link,
        history=[make_message(actor, text, now)],
        status=EscalationStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


def task_has_active_escalation(
    task_id: str,
    escalations: Iterable[Escalation],
    excluding: str | None = None,
) -> bool:
    """是否仍有未关闭的 Escalation 引用该任务

    Args:
        task_id: 任务 ID
        escalations: 全部 Escalation
        excluding: 计算时忽略的 Escalation ID（通常是正在关闭的那一条）
    """
    return any(
        esc.task_id == task_id and esc.is_active and esc.escalation_id != excluding
        for esc in escalations
    )
