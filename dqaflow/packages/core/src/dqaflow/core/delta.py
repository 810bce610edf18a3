"""Delta Detector -- 对比前后快照，按实体分类变化

每类实体基于 ID 索引做一次 O(n+m) 对比：
- created: 仅存在于 current
- updated: 两侧都存在且"实质字段"发生变化
- unchanged: 两侧都存在且实质字段未变
- deleted: 仅存在于 previous（供级联删除规则使用）

基线周期把所有 current 实体视为 created，并打上 baseline 标记，
下游据此抑制通知，但自动化规则照常执行。
"""

from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from .models.enums import ChangeKind, EntityKind
from .models.escalation import Escalation
from .models.invoice import Invoice
from .models.task import Task
from .snapshot import Snapshot

Entity = Task | Invoice | Escalation

# 每类实体的实质字段：字段名 -> 取值函数
MATERIAL_FIELDS: dict[EntityKind, dict[str, Callable[[Any], Any]]] = {
    EntityKind.TASK: {
        "status": lambda t: t.status,
        "assignee_id": lambda t: t.assignee_id,
    },
    EntityKind.ESCALATION: {
        "status": lambda e: e.status,
        "history_length": lambda e: len(e.history),
    },
    EntityKind.INVOICE: {
        "status": lambda i: i.status,
        "assignee_id": lambda i: i.assignee_id,
        "due_date": lambda i: i.due_date,
    },
}


class EntityDelta(BaseModel):
    """单个实体的变化"""

    kind: EntityKind = Field(description="实体类别")
    entity_id: str = Field(description="实体 ID")
    change: ChangeKind = Field(description="变化分类")
    before: Entity | None = Field(default=None, description="上一周期的实体")
    after: Entity | None = Field(default=None, description="本周期的实体")
    changed_fields: frozenset[str] = Field(
        default_factory=frozenset,
        description="发生变化的实质字段",
    )

    def field_changed(self, name: str) -> bool:
        return name in self.changed_fields


class KindDeltas(BaseModel):
    """某一类实体的分类结果"""

    kind: EntityKind
    created: list[EntityDelta] = Field(default_factory=list)
    updated: list[EntityDelta] = Field(default_factory=list)
    unchanged: list[EntityDelta] = Field(default_factory=list)
    deleted: list[EntityDelta] = Field(default_factory=list)

    @property
    def changes(self) -> list[EntityDelta]:
        """created + updated（按此顺序），通知只关心这两类"""
        return [*self.created, *self.updated]

    @property
    def has_changes(self) -> bool:
        return bool(self.created or self.updated or self.deleted)


class DeltaSet(BaseModel):
    """一个周期的全部变化"""

    baseline: bool = Field(default=False, description="是否为基线周期")
    tasks: KindDeltas = Field(default_factory=lambda: KindDeltas(kind=EntityKind.TASK))
    invoices: KindDeltas = Field(
        default_factory=lambda: KindDeltas(kind=EntityKind.INVOICE)
    )
    escalations: KindDeltas = Field(
        default_factory=lambda: KindDeltas(kind=EntityKind.ESCALATION)
    )

    @property
    def has_changes(self) -> bool:
        return self.tasks.has_changes or self.invoices.has_changes or self.escalations.has_changes


def material_diff(kind: EntityKind, before: Entity, after: Entity) -> frozenset[str]:
    """返回两版本实体之间发生变化的实质字段"""
    extractors = MATERIAL_FIELDS[kind]
    return frozenset(
        name for name, extract in extractors.items() if extract(before) != extract(after)
    )


def diff_kind(
    kind: EntityKind,
    previous: Mapping[str, Entity],
    current: Mapping[str, Entity],
    baseline: bool = False,
) -> KindDeltas:
    """对单类实体做分类

    Args:
        kind: 实体类别
        previous: 上一周期 ID -> 实体
        current: 本周期 ID -> 实体
        baseline: 基线周期时全部视为 created

    Returns:
        KindDeltas
    """
    result = KindDeltas(kind=kind)

    if baseline:
        for entity_id, entity in current.items():
            result.created.append(
                EntityDelta(kind=kind, entity_id=entity_id, change=ChangeKind.CREATED, after=entity)
            )
        return result

    for entity_id, entity in current.items():
        old = previous.get(entity_id)
        if old is None:
            result.created.append(
                EntityDelta(kind=kind, entity_id=entity_id, change=ChangeKind.CREATED, after=entity)
            )
            continue
        changed = material_diff(kind, old, entity)
        delta = EntityDelta(
            kind=kind,
            entity_id=entity_id,
            change=ChangeKind.UPDATED if changed else ChangeKind.UNCHANGED,
            before=old,
            after=entity,
            changed_fields=changed,
        )
        if changed:
            result.updated.append(delta)
        else:
            result.unchanged.append(delta)

    for entity_id, old in previous.items():
        if entity_id not in current:
            result.deleted.append(
                EntityDelta(kind=kind, entity_id=entity_id, change=ChangeKind.DELETED, before=old)
            )

    return result


def detect_deltas(previous: Snapshot, current: Snapshot, baseline: bool = False) -> DeltaSet:
    """对比前后快照，返回本周期的 DeltaSet"""
    return DeltaSet(
        baseline=baseline,
        tasks=diff_kind(EntityKind.TASK, previous.tasks, current.tasks, baseline),
        invoices=diff_kind(EntityKind.INVOICE, previous.invoices, current.invoices, baseline),
        escalations=diff_kind(
            EntityKind.ESCALATION, previous.escalations, current.escalations, baseline
        ),
    )
