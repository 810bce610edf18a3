"""生命周期公共类型

TransitionContext 提供守卫所需的上下文（只读），
TransitionExtra 提供 apply 写入实体的附加数据。
两者都不触发任何 I/O。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ..exceptions import ValidationError
from ..models.enums import UserRole
from ..models.invoice import InvoiceFileMeta
from ..models.user import Viewer


class TransitionContext(BaseModel):
    """守卫上下文"""

    via_automation: bool = Field(default=False, description="是否由自动化规则发起")
    note: str | None = Field(default=None, description="附带的备注（挂起原因等）")
    message: str | None = Field(default=None, description="Escalation 回复内容")
    active_escalation_ids: frozenset[str] = Field(
        default_factory=frozenset,
        description="引用该任务的未关闭 Escalation ID",
    )
    has_final_deliverable: bool = Field(
        default=False,
        description="Invoice 是否已附上最终交付物",
    )
    assignee_id: str | None = Field(default=None, description="Invoice 指派的处理人")
    due_date: datetime | None = Field(default=None, description="Invoice 指派的截止时间")


class TransitionExtra(BaseModel):
    """apply 附加数据"""

    now: datetime = Field(description="流转发生时间")
    actor: Viewer | None = Field(default=None, description="操作者，自动化规则为 None")
    note: str | None = Field(default=None, description="追加到 Task 的备注")
    message: str | None = Field(default=None, description="追加到 Escalation 的消息")
    record_id: str | None = Field(default=None, description="新备注/消息的 ID")
    assignee_id: str | None = None
    assignee_name: str | None = None
    start_date: datetime | None = None
    due_date: datetime | None = None
    final_deliverable: InvoiceFileMeta | None = None


def is_manager_or(actor: Viewer, user_id: str | None) -> bool:
    """actor 是 Manager，或 actor 就是 user_id 本人"""
    if actor.role == UserRole.MANAGER:
        return True
    if actor.role == UserRole.AGENT:
        return bool(user_id) and actor.user_id == user_id
    raise ValueError(f"未知角色: {actor.role}")


def has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def raise_if_rejected(reason: str | None, entity_id: str) -> None:
    """守卫拒绝时抛出 ValidationError"""
    if reason is not None:
        raise ValidationError(reason, entity_id=entity_id)
