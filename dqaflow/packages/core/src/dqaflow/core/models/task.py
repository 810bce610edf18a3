"""Task Domain Model

Task 只能通过生命周期校验后的流转被修改；
is_escalated 必须与是否存在未关闭的 Escalation 保持一致。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import AttachmentType, TaskPriority, TaskStatus, TaskType


class TaskNote(BaseModel):
    """任务备注（按时间顺序追加）"""

    note_id: str = Field(description="备注 ID")
    author_id: str = Field(description="作者 ID")
    author_name: str = Field(default="", description="作者名称")
    text: str = Field(description="备注内容")
    timestamp: datetime = Field(description="写入时间")


class TaskAttachment(BaseModel):
    """任务附件元数据（文件本身由附件存储协作方持有）"""

    name: str = Field(description="文件名")
    url: str | None = Field(default=None, description="访问链接")
    type: AttachmentType = Field(description="附件类型")


class Task(BaseModel):
    """Task 数据模型

    inventory_file_id + inventory_item_ids 非空时，任务参与库存驱动的自动完成。
    """

    task_id: str = Field(description="唯一标识")
    title: str = Field(description="任务标题")
    description: str = Field(default="", description="任务描述")
    assignee_id: str = Field(default="", description="负责人 ID")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    type: TaskType = Field(description="任务类型")
    tags: list[str] = Field(default_factory=list, description="标签")
    due_date: datetime | None = Field(default=None, description="截止时间")
    created_at: datetime = Field(description="创建时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    inventory_file_id: str | None = Field(default=None, description="关联库存文件 ID")
    inventory_item_ids: set[str] | None = Field(
        default=None,
        description="关联的库存条目 ID 集合",
    )
    is_escalated: bool = Field(default=False, description="是否存在未关闭的 Escalation")
    notes: list[TaskNote] = Field(default_factory=list, description="备注（时间顺序）")
    attachments: list[TaskAttachment] = Field(default_factory=list, description="附件")

    @property
    def is_inventory_linked(self) -> bool:
        return bool(self.inventory_file_id) and bool(self.inventory_item_ids)
