"""类型化引用

跨实体关联统一通过引用类型 + 快照显式查找完成，
查找失败抛出 NotFoundError，而不是静默返回空值。
"""

from pydantic import BaseModel, Field

from ..config import COMPANION_TASK_PREFIX, MANAGER_REVIEW_TASK_PREFIX


class TaskRef(BaseModel):
    """指向 Task 的引用"""

    task_id: str = Field(description="目标 Task ID")

    @classmethod
    def companion_of(cls, invoice_id: str) -> "TaskRef":
        """Invoice 的 companion 处理任务"""
        return cls(task_id=f"{COMPANION_TASK_PREFIX}{invoice_id}")

    @classmethod
    def manager_review_of(cls, invoice_id: str) -> "TaskRef":
        """Invoice 的 manager-review 任务"""
        return cls(task_id=f"{MANAGER_REVIEW_TASK_PREFIX}{invoice_id}")


class InventoryFileRef(BaseModel):
    """指向库存文件的引用"""

    file_id: str = Field(description="目标库存文件 ID")
