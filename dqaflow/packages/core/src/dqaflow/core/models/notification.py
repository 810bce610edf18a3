"""Notification Domain Model

通知是临时对象：每个周期按当前 viewer 生成，引擎不持久化。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import EntityKind, NotificationEvent


class Notification(BaseModel):
    """面向单个 viewer 的通知"""

    notification_id: str = Field(description="唯一标识，ULID 格式")
    title: str = Field(description="标题")
    message: str = Field(description="正文")
    timestamp: datetime = Field(description="生成时间")
    read: bool = Field(default=False, description="是否已读")
    event: NotificationEvent = Field(description="触发事件")
    entity_kind: EntityKind = Field(description="关联实体类别")
    entity_id: str = Field(description="关联实体 ID")
