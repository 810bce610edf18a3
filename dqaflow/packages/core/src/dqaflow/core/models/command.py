"""SyncCommand -- 下发给存储/同步协作方的指令

所有指令以实体 ID 为键，按幂等 upsert / delete 语义执行。
fingerprint 去掉易变时间戳后用于跨周期去重。
"""

import hashlib
import json

from pydantic import BaseModel, Field, model_validator

from .enums import COMMAND_KIND, DELETE_OPS, CommandOp, EntityKind
from .escalation import Escalation
from .invoice import Invoice
from .task import Task

# 参与去重比较时忽略的字段（每个周期重新计算都会变化）
VOLATILE_FIELDS: frozenset[str] = frozenset({"created_at", "updated_at", "completed_at"})

_ENTITY_TYPES: dict[EntityKind, type[BaseModel]] = {
    EntityKind.TASK: Task,
    EntityKind.INVOICE: Invoice,
    EntityKind.ESCALATION: Escalation,
}


def entity_id_of(entity: Task | Invoice | Escalation) -> str:
    """取实体主键"""
    if isinstance(entity, Task):
        return entity.task_id
    if isinstance(entity, Invoice):
        return entity.invoice_id
    if isinstance(entity, Escalation):
        return entity.escalation_id
    raise TypeError(f"不支持的实体类型: {type(entity).__name__}")


class SyncCommand(BaseModel):
    """幂等同步指令"""

    op: CommandOp = Field(description="指令类型")
    entity_id: str = Field(description="目标实体 ID")
    entity: Task | Invoice | Escalation | None = Field(
        default=None,
        description="upsert 的完整实体，delete 指令为 None",
    )
    origin: str = Field(default="", description="产生该指令的规则或动作名")

    @model_validator(mode="after")
    def _check_entity(self) -> "SyncCommand":
        if self.op in DELETE_OPS:
            if self.entity is not None:
                raise ValueError(f"{self.op} 不应携带实体")
            return self
        if self.entity is None:
            raise ValueError(f"{self.op} 缺少实体")
        expected = _ENTITY_TYPES[self.kind]
        if not isinstance(self.entity, expected):
            raise ValueError(
                f"{self.op} 需要 {expected.__name__}，实际为 {type(self.entity).__name__}"
            )
        if entity_id_of(self.entity) != self.entity_id:
            raise ValueError("entity_id 与实体主键不一致")
        return self

    @property
    def kind(self) -> EntityKind:
        return COMMAND_KIND[self.op]

    @property
    def is_delete(self) -> bool:
        return self.op in DELETE_OPS

    def fingerprint(self) -> str:
        """去掉易变时间戳后的内容指纹"""
        body = None
        if self.entity is not None:
            body = self.entity.model_dump(mode="json", exclude=set(VOLATILE_FIELDS))
            # set 序列化后的顺序不稳定
            if isinstance(body.get("inventory_item_ids"), list):
                body["inventory_item_ids"] = sorted(body["inventory_item_ids"])
        raw = json.dumps(
            {"op": self.op.value, "id": self.entity_id, "body": body},
            sort_keys=True,
            ensure_ascii=False,
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    @classmethod
    def upsert(
        cls,
        entity: Task | Invoice | Escalation,
        *,
        created: bool,
        origin: str = "",
    ) -> "SyncCommand":
        """按实体类型构造 create / update 指令"""
        if isinstance(entity, Task):
            op = CommandOp.CREATE_TASK if created else CommandOp.UPDATE_TASK
        elif isinstance(entity, Invoice):
            op = CommandOp.CREATE_INVOICE if created else CommandOp.UPDATE_INVOICE
        elif isinstance(entity, Escalation):
            op = CommandOp.CREATE_ESCALATION if created else CommandOp.UPDATE_ESCALATION
        else:
            raise TypeError(f"不支持的实体类型: {type(entity).__name__}")
        return cls(op=op, entity_id=entity_id_of(entity), entity=entity, origin=origin)

    @classmethod
    def delete_task(cls, task_id: str, origin: str = "") -> "SyncCommand":
        return cls(op=CommandOp.DELETE_TASK, entity_id=task_id, origin=origin)

    @classmethod
    def delete_invoice(cls, invoice_id: str, origin: str = "") -> "SyncCommand":
        return cls(op=CommandOp.DELETE_INVOICE, entity_id=invoice_id, origin=origin)
