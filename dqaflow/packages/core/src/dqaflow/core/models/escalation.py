"""Escalation Domain Model

history 只追加不修改；已关闭的 Escalation 作为历史保留。
task_id 是对 Task 的弱引用，Task 被删除后 Escalation 仍可存在。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import EscalationStatus, UserRole


class EscalationMessage(BaseModel):
    """Escalation 对话中的一条消息"""

    message_id: str = Field(description="消息 ID")
    author_id: str = Field(description="作者 ID")
    author_name: str = Field(default="", description="作者名称")
    role: UserRole = Field(description="作者角色")
    text: str = Field(description="消息内容")
    timestamp: datetime = Field(description="发送时间")


class Escalation(BaseModel):
    """Escalation 数据模型"""

    escalation_id: str = Field(description="唯一标识")
    task_id: str = Field(description="关联的 Task ID（弱引用）")
    agent_id: str = Field(description="发起人 ID")
    agent_name: str = Field(default="", description="发起人名称")
    link: str | None = Field(default=None, description="问题链接")
    history: list[EscalationMessage] = Field(
        default_factory=list,
        description="对话历史，append-only",
    )
    status: EscalationStatus = Field(
        default=EscalationStatus.PENDING,
        description="当前状态",
    )
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    @property
    def is_active(self) -> bool:
        return self.status != EscalationStatus.CLOSED

    @property
    def last_message(self) -> EscalationMessage | None:
        return self.history[-1] if self.history else None
