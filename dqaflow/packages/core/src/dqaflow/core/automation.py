"""Automation Rule Engine -- 跨实体级联、守卫与自动完成

每个周期在通知分发之前执行。规则只写 Task，全部写入先进入 WorkingSet，
后执行的规则读取到的是同一周期内前序规则写入后的版本，
周期结束时按实体合并为最少的同步指令。

规则：
1. auto_complete            库存条目全部达标且无未关闭 Escalation -> DONE
2. invoice_companion_create Invoice 创建 -> companion 处理任务
3. invoice_companion_sync   Invoice 更新 -> 同步处理人/截止时间，终结状态强制 DONE
4. manager_review_create    Invoice 进入 COMPLETED（边沿） -> manager-review 任务
5. upload_confirmation      Invoice 进入 UPLOADED -> manager-review 任务 DONE
6. invoice_cascade_delete   Invoice 删除 -> 删除派生任务，缺失视为 no-op
7. escalation_flag_sync     is_escalated 与未关闭 Escalation 保持一致

规则不抛出用户可见错误：守卫不满足时推迟到后续周期。
"""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from .config import EngineSettings
from .delta import DeltaSet, EntityDelta
from .exceptions import EngineError, NotFoundError
from .lifecycle import task as task_lifecycle
from .models.command import SyncCommand
from .models.enums import (
    AttachmentType,
    InventoryStatus,
    InvoiceStatus,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from .models.inventory import InventoryItem
from .models.invoice import Invoice
from .models.refs import InventoryFileRef, TaskRef
from .models.task import Task, TaskAttachment
from .snapshot import CycleFrame

log = structlog.get_logger()

RULE_AUTO_COMPLETE = "auto_complete"
RULE_COMPANION_CREATE = "invoice_companion_create"
RULE_COMPANION_SYNC = "invoice_companion_sync"
RULE_MANAGER_REVIEW = "manager_review_create"
RULE_UPLOAD_CONFIRMATION = "upload_confirmation"
RULE_CASCADE_DELETE = "invoice_cascade_delete"
RULE_ESCALATION_FLAG = "escalation_flag_sync"

FINALIZED_INVOICE_STATES: frozenset[InvoiceStatus] = frozenset(
    {InvoiceStatus.COMPLETED, InvoiceStatus.UPLOADED}
)


class WorkingSet:
    """本周期 Task 的工作副本

    记录每个 Task 的首次写入顺序，flush 时按实体合并：
    create 后 update 合并为 create；create 后 delete 两者抵消。
    """

    def __init__(self, tasks: dict[str, Task]) -> None:
        self._tasks = dict(tasks)
        self._created: set[str] = set()
        self._deleted: set[str] = set()
        self._origins: dict[str, list[str]] = {}

    def task(self, ref: TaskRef | str) -> Task | None:
        """可选查找：派生任务允许缺失"""
        task_id = ref.task_id if isinstance(ref, TaskRef) else ref
        return self._tasks.get(task_id)

    def task_ids(self) -> list[str]:
        return list(self._tasks)

    def _touch(self, task_id: str, origin: str) -> None:
        origins = self._origins.setdefault(task_id, [])
        if origin not in origins:
            origins.append(origin)

    def put_task(self, task: Task, origin: str, created: bool = False) -> None:
        if created and task.task_id not in self._tasks:
            self._created.add(task.task_id)
        self._deleted.discard(task.task_id)
        self._tasks[task.task_id] = task
        self._touch(task.task_id, origin)

    def delete_task(self, task_id: str, origin: str) -> bool:
        """删除 Task；不存在时返回 False（no-op）"""
        if self._tasks.pop(task_id, None) is None:
            return False
        if task_id in self._created:
            self._created.discard(task_id)
            self._origins.pop(task_id, None)
            return True
        self._deleted.add(task_id)
        self._touch(task_id, origin)
        return True

    def commands(self) -> list[SyncCommand]:
        result: list[SyncCommand] = []
        for task_id, origins in self._origins.items():
            origin = "+".join(origins)
            if task_id in self._deleted:
                result.append(SyncCommand.delete_task(task_id, origin=origin))
                continue
            task = self._tasks[task_id]
            result.append(
                SyncCommand.upsert(task, created=task_id in self._created, origin=origin)
            )
        return result


def item_satisfies(task_type: TaskType, item: InventoryItem) -> bool:
    """库存条目是否满足任务的完成条件"""
    if task_type == TaskType.QA:
        return item.status == InventoryStatus.QA_COMPLETE
    return item.status in (InventoryStatus.AUGMENTED, InventoryStatus.QA_COMPLETE)


def rule_auto_complete(
    ws: WorkingSet,
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> None:
    current = frame.current
    for task_id in ws.task_ids():
        task = ws.task(task_id)
        if task is None or task.status == TaskStatus.DONE or not task.is_inventory_linked:
            continue

        try:
            inventory = current.get_inventory_file(InventoryFileRef(file_id=task.inventory_file_id))
        except NotFoundError:
            log.debug(
                "auto_complete_deferred",
                task_id=task_id,
                reason="inventory_file_missing",
                inventory_file_id=task.inventory_file_id,
            )
            continue

        wanted = task.inventory_item_ids or set()
        items = [item for item in inventory.data if item.item_id in wanted]
        if not items:
            continue

        if current.active_escalations_for(task_id):
            log.debug("auto_complete_blocked", task_id=task_id, reason="active_escalation")
            continue

        if all(item_satisfies(task.type, item) for item in items):
            ws.put_task(task_lifecycle.complete_by_automation(task, now), RULE_AUTO_COMPLETE)
            log.info(
                "task_auto_completed",
                task_id=task_id,
                task_type=task.type.value,
                item_count=len(items),
            )


def build_companion_task(invoice: Invoice, settings: EngineSettings, now: datetime) -> Task:
    """构造 Invoice 的 companion 处理任务"""
    attachments = []
    if invoice.pdf_file is not None:
        attachments.append(
            TaskAttachment(name=invoice.pdf_file.name, type=AttachmentType.PDF, url="#")
        )
    return Task(
        task_id=TaskRef.companion_of(invoice.invoice_id).task_id,
        title=f"Process Invoice: {invoice.reference_name}",
        description=(
            f"Invoice processing task created for {invoice.reference_name}. "
            f"Link to invoice ID: {invoice.invoice_id}"
        ),
        assignee_id=invoice.assignee_id or "",
        status=TaskStatus.TODO,
        priority=TaskPriority.MEDIUM,
        type=TaskType.INVOICE_PROCESSING,
        tags=["Invoice", "Administrative"],
        due_date=invoice.due_date or now + timedelta(days=settings.companion_due_days),
        created_at=now,
        attachments=attachments,
    )


def sync_companion(companion: Task, invoice: Invoice, now: datetime) -> Task:
    """把 Invoice 的处理人/截止时间单向同步到 companion，终结状态时强制 DONE"""
    synced = companion.model_copy(
        update={
            "assignee_id": invoice.assignee_id or companion.assignee_id,
            "due_date": invoice.due_date or companion.due_date,
        }
    )
    if invoice.status in FINALIZED_INVOICE_STATES and synced.status != TaskStatus.DONE:
        synced = task_lifecycle.complete_by_automation(synced, now)
    return synced


def _companion_differs(old: Task, new: Task) -> bool:
    return (old.assignee_id, old.due_date, old.status) != (
        new.assignee_id,
        new.due_date,
        new.status,
    )


def rule_companion_create(
    ws: WorkingSet,
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> None:
    # 基线周期的 created 只是分类结果，不代表真实的创建事件
    if deltas.baseline:
        return
    for delta in deltas.invoices.created:
        invoice = delta.after
        ref = TaskRef.companion_of(invoice.invoice_id)
        if ws.task(ref) is not None:
            continue
        companion = sync_companion(build_companion_task(invoice, settings, now), invoice, now)
        ws.put_task(companion, RULE_COMPANION_CREATE, created=True)
        log.info("companion_task_created", invoice_id=invoice.invoice_id, task_id=ref.task_id)


def rule_companion_sync(
    ws: WorkingSet,
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> None:
    for delta in deltas.invoices.updated:
        invoice = delta.after
        companion = ws.task(TaskRef.companion_of(invoice.invoice_id))
        if companion is None:
            continue
        synced = sync_companion(companion, invoice, now)
        if _companion_differs(companion, synced):
            ws.put_task(synced, RULE_COMPANION_SYNC)


def resolve_manager_id(frame: CycleFrame, settings: EngineSettings) -> str | None:
    """指定的 manager：优先取配置，否则取名册中第一个 MANAGER"""
    if settings.manager_id:
        return settings.manager_id
    manager = frame.current.first_manager()
    return manager.user_id if manager else None


def build_manager_review_task(
    invoice: Invoice,
    manager_id: str,
    settings: EngineSettings,
    now: datetime,
) -> Task:
    attachments = []
    if invoice.final_csv_file is not None:
        attachments.append(
            TaskAttachment(name=invoice.final_csv_file.name, type=AttachmentType.CSV, url="#")
        )
    return Task(
        task_id=TaskRef.manager_review_of(invoice.invoice_id).task_id,
        title=f"Upload Final Deliverable: {invoice.reference_name}",
        description=(
            f"The invoice {invoice.reference_name} has been processed by the agent. "
            "Please upload the final deliverable and confirm it on the invoice."
        ),
        assignee_id=manager_id,
        status=TaskStatus.TODO,
        priority=TaskPriority.HIGH,
        type=TaskType.INVOICE_PROCESSING,
        tags=["Manager Action", "Upload", "Invoice"],
        due_date=now + timedelta(hours=settings.manager_review_due_hours),
        created_at=now,
        attachments=attachments,
    )


def is_completed_edge(delta: EntityDelta) -> bool:
    """旧状态不是 COMPLETED 且新状态是 COMPLETED"""
    before_status = delta.before.status if delta.before is not None else None
    return before_status != InvoiceStatus.COMPLETED and delta.after.status == InvoiceStatus.COMPLETED


def rule_manager_review(
    ws: WorkingSet,
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> None:
    candidates = list(deltas.invoices.updated)
    if not deltas.baseline:
        candidates.extend(deltas.invoices.created)

    for delta in candidates:
        if not is_completed_edge(delta):
            continue
        invoice = delta.after
        ref = TaskRef.manager_review_of(invoice.invoice_id)
        if ws.task(ref) is not None:
            continue
        manager_id = resolve_manager_id(frame, settings)
        if manager_id is None:
            log.warning(
                "manager_review_deferred",
                invoice_id=invoice.invoice_id,
                reason="no_manager_designated",
            )
            continue
        ws.put_task(
            build_manager_review_task(invoice, manager_id, settings, now),
            RULE_MANAGER_REVIEW,
            created=True,
        )
        log.info(
            "manager_review_task_created",
            invoice_id=invoice.invoice_id,
            task_id=ref.task_id,
            manager_id=manager_id,
        )


def rule_upload_confirmation(
    ws: WorkingSet,
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> None:
    for delta in deltas.invoices.updated:
        invoice = delta.after
        if invoice.status != InvoiceStatus.UPLOADED or not delta.field_changed("status"):
            continue
        review = ws.task(TaskRef.manager_review_of(invoice.invoice_id))
        if review is None or review.status == TaskStatus.DONE:
            continue
        ws.put_task(task_lifecycle.complete_by_automation(review, now), RULE_UPLOAD_CONFIRMATION)


def rule_cascade_delete(
    ws: WorkingSet,
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> None:
    for delta in deltas.invoices.deleted:
        for ref in (
            TaskRef.companion_of(delta.entity_id),
            TaskRef.manager_review_of(delta.entity_id),
        ):
            if ws.delete_task(ref.task_id, RULE_CASCADE_DELETE):
                log.info("derived_task_deleted", invoice_id=delta.entity_id, task_id=ref.task_id)


def rule_escalation_flag(
    ws: WorkingSet,
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> None:
    escalated = frame.current.escalated_task_ids()
    for task_id in ws.task_ids():
        task = ws.task(task_id)
        desired = task_id in escalated
        if task is not None and task.is_escalated != desired:
            ws.put_task(task.model_copy(update={"is_escalated": desired}), RULE_ESCALATION_FLAG)


Rule = Callable[[WorkingSet, CycleFrame, DeltaSet, EngineSettings, datetime], None]

# 执行顺序：先级联（创建/同步/删除），再一致性修正，最后自动完成
RULES: list[tuple[str, Rule]] = [
    (RULE_COMPANION_CREATE, rule_companion_create),
    (RULE_COMPANION_SYNC, rule_companion_sync),
    (RULE_MANAGER_REVIEW, rule_manager_review),
    (RULE_UPLOAD_CONFIRMATION, rule_upload_confirmation),
    (RULE_CASCADE_DELETE, rule_cascade_delete),
    (RULE_ESCALATION_FLAG, rule_escalation_flag),
    (RULE_AUTO_COMPLETE, rule_auto_complete),
]


def evaluate_rules(
    frame: CycleFrame,
    deltas: DeltaSet,
    settings: EngineSettings,
    now: datetime,
) -> list[SyncCommand]:
    """执行全部自动化规则，返回合并后的同步指令

    Args:
        frame: 本周期快照
        deltas: 本周期变化
        settings: 引擎配置
        now: 本周期时间基准

    Returns:
        按实体合并后的 SyncCommand 列表
    """
    ws = WorkingSet(dict(frame.current.tasks))
    for name, rule in RULES:
        try:
            rule(ws, frame, deltas, settings, now)
        except EngineError as e:
            log.warning(
                "automation_rule_deferred",
                rule=name,
                cycle_no=frame.cycle_no,
                error_type=type(e).__name__,
                error=str(e),
            )
    return ws.commands()
