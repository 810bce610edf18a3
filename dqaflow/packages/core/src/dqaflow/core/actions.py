"""用户动作 -- 显式操作的指令构造

每个动作先经生命周期校验，被拒绝时抛出 ValidationError 且不产生任何指令；
通过后返回需要下发给存储/同步协作方的 SyncCommand 列表。
Invoice 状态变化引起的 companion 同步、manager-review 等级联由调和周期负责，
Invoice 创建时的 companion 任务在此同步生成。
"""

from datetime import datetime

import structlog

from .automation import build_companion_task, sync_companion
from .config import EngineSettings
from .exceptions import ValidationError
from .lifecycle import escalation as escalation_lifecycle
from .lifecycle import invoice as invoice_lifecycle
from .lifecycle import task as task_lifecycle
from .lifecycle.base import TransitionContext, TransitionExtra, has_text
from .models.command import SyncCommand
from .models.enums import EscalationStatus, InvoiceStatus, TaskStatus
from .models.escalation import Escalation
from .models.invoice import Invoice, InvoiceFileMeta
from .models.refs import TaskRef
from .models.task import Task
from .models.user import Viewer
from .snapshot import Snapshot

log = structlog.get_logger()


# ---------------------------------------------------------------- Task


def create_task(task: Task, actor: Viewer) -> list[SyncCommand]:
    """创建任务：新任务必须从 TODO 开始，且不能预先标记为 escalated"""
    if task.status != TaskStatus.TODO:
        raise ValidationError("新任务必须从 TODO 开始", entity_id=task.task_id)
    if task.is_escalated:
        raise ValidationError("新任务不能预先标记为 escalated", entity_id=task.task_id)
    log.info("task_create_requested", task_id=task.task_id, actor_id=actor.user_id)
    return [SyncCommand.upsert(task, created=True, origin="create_task")]


def delete_task(task_id: str, snapshot: Snapshot) -> list[SyncCommand]:
    """删除任务；不存在时视为 no-op"""
    if snapshot.find_task(task_id) is None:
        log.debug("task_delete_noop", task_id=task_id)
        return []
    return [SyncCommand.delete_task(task_id, origin="delete_task")]


def change_task_status(
    task: Task,
    to_status: TaskStatus,
    actor: Viewer,
    snapshot: Snapshot,
    *,
    now: datetime,
    note: str | None = None,
) -> list[SyncCommand]:
    """人工修改任务状态

    Raises:
        ValidationError: 流转被生命周期守卫拒绝
    """
    active = frozenset(esc.escalation_id for esc in snapshot.active_escalations_for(task.task_id))
    context = TransitionContext(note=note, active_escalation_ids=active)
    task_lifecycle.check_transition(task, to_status, actor, context)

    updated = task_lifecycle.apply(task, to_status, TransitionExtra(now=now, actor=actor, note=note))
    log.info(
        "task_status_changed",
        task_id=task.task_id,
        from_status=task.status.value,
        to_status=to_status.value,
        actor_id=actor.user_id,
    )
    return [SyncCommand.upsert(updated, created=False, origin="change_task_status")]


def add_task_note(task: Task, actor: Viewer, text: str, *, now: datetime) -> list[SyncCommand]:
    if not has_text(text):
        raise ValidationError("备注内容不能为空", entity_id=task.task_id)
    note = task_lifecycle.make_note(text, TransitionExtra(now=now, actor=actor))
    updated = task.model_copy(update={"notes": [*task.notes, note]})
    return [SyncCommand.upsert(updated, created=False, origin="add_task_note")]


# ---------------------------------------------------------------- Escalation


def raise_escalation(
    task: Task,
    actor: Viewer,
    text: str,
    *,
    now: datetime,
    link: str | None = None,
) -> list[SyncCommand]:
    """发起 Escalation，同时把任务标记为 escalated"""
    escalation = escalation_lifecycle.open_escalation(task, actor, text, now=now, link=link)
    log.info(
        "escalation_raised",
        escalation_id=escalation.escalation_id,
        task_id=task.task_id,
        actor_id=actor.user_id,
    )
    commands = [SyncCommand.upsert(escalation, created=True, origin="raise_escalation")]
    if not task.is_escalated:
        flagged = task.model_copy(update={"is_escalated": True})
        commands.append(SyncCommand.upsert(flagged, created=False, origin="raise_escalation"))
    return commands


def reply_to_escalation(
    escalation: Escalation,
    actor: Viewer,
    text: str,
    *,
    now: datetime,
) -> list[SyncCommand]:
    """回复 Escalation：Manager 回复 -> RESPONDED，Agent 回复 -> PENDING"""
    to_status = escalation_lifecycle.reply_target(actor)
    escalation_lifecycle.check_transition(
        escalation, to_status, actor, TransitionContext(message=text)
    )
    updated = escalation_lifecycle.apply(
        escalation,
        to_status,
        TransitionExtra(now=now, actor=actor, message=text),
    )
    return [SyncCommand.upsert(updated, created=False, origin="reply_to_escalation")]


def close_escalation(
    escalation: Escalation,
    actor: Viewer,
    snapshot: Snapshot,
    *,
    now: datetime,
) -> list[SyncCommand]:
    """关闭 Escalation，并按其余未关闭 Escalation 重新计算任务的 is_escalated

    Raises:
        ValidationError: 非发起人关闭，或尚无回复
    """
    escalation_lifecycle.check_transition(
        escalation, EscalationStatus.CLOSED, actor, TransitionContext()
    )
    closed = escalation_lifecycle.apply(
        escalation, EscalationStatus.CLOSED, TransitionExtra(now=now, actor=actor)
    )
    commands = [SyncCommand.upsert(closed, created=False, origin="close_escalation")]

    task = snapshot.find_task(escalation.task_id)
    if task is not None:
        still_escalated = escalation_lifecycle.task_has_active_escalation(
            task.task_id,
            snapshot.escalations.values(),
            excluding=escalation.escalation_id,
        )
        if task.is_escalated != still_escalated:
            commands.append(
                SyncCommand.upsert(
                    task.model_copy(update={"is_escalated": still_escalated}),
                    created=False,
                    origin="close_escalation",
                )
            )
    log.info(
        "escalation_closed",
        escalation_id=escalation.escalation_id,
        task_id=escalation.task_id,
        task_present=task is not None,
    )
    return commands


# ---------------------------------------------------------------- Invoice


def create_invoice(
    invoice: Invoice,
    actor: Viewer,
    *,
    settings: EngineSettings,
    now: datetime,
) -> list[SyncCommand]:
    """创建 Invoice 并同步生成 companion 处理任务"""
    if invoice.status != InvoiceStatus.PENDING and invoice.assignee_id is None:
        raise ValidationError("非 PENDING 的 Invoice 必须有处理人", entity_id=invoice.invoice_id)
    companion = sync_companion(build_companion_task(invoice, settings, now), invoice, now)
    log.info(
        "invoice_created",
        invoice_id=invoice.invoice_id,
        companion_task_id=companion.task_id,
        actor_id=actor.user_id,
    )
    return [
        SyncCommand.upsert(invoice, created=True, origin="create_invoice"),
        SyncCommand.upsert(companion, created=True, origin="create_invoice"),
    ]


def _transition_invoice(
    invoice: Invoice,
    to_status: InvoiceStatus,
    actor: Viewer,
    context: TransitionContext,
    extra: TransitionExtra,
    origin: str,
) -> list[SyncCommand]:
    invoice_lifecycle.check_transition(invoice, to_status, actor, context)
    updated = invoice_lifecycle.apply(invoice, to_status, extra)
    log.info(
        "invoice_status_changed",
        invoice_id=invoice.invoice_id,
        from_status=invoice.status.value,
        to_status=to_status.value,
        actor_id=actor.user_id,
    )
    return [SyncCommand.upsert(updated, created=False, origin=origin)]


def assign_invoice(
    invoice: Invoice,
    actor: Viewer,
    assignee_id: str,
    due_date: datetime,
    *,
    now: datetime,
    assignee_name: str | None = None,
    start_date: datetime | None = None,
) -> list[SyncCommand]:
    """PENDING -> ASSIGNED"""
    return _transition_invoice(
        invoice,
        InvoiceStatus.ASSIGNED,
        actor,
        TransitionContext(assignee_id=assignee_id, due_date=due_date),
        TransitionExtra(
            now=now,
            actor=actor,
            assignee_id=assignee_id,
            assignee_name=assignee_name,
            start_date=start_date,
            due_date=due_date,
        ),
        "assign_invoice",
    )


def complete_invoice(
    invoice: Invoice,
    actor: Viewer,
    *,
    now: datetime,
    final_deliverable: InvoiceFileMeta | None = None,
) -> list[SyncCommand]:
    """ASSIGNED -> COMPLETED，需要本次上传或已存在的最终交付物"""
    has_deliverable = final_deliverable is not None or invoice.final_csv_file is not None
    return _transition_invoice(
        invoice,
        InvoiceStatus.COMPLETED,
        actor,
        TransitionContext(has_final_deliverable=has_deliverable),
        TransitionExtra(now=now, actor=actor, final_deliverable=final_deliverable),
        "complete_invoice",
    )


def confirm_invoice_upload(invoice: Invoice, actor: Viewer, *, now: datetime) -> list[SyncCommand]:
    """COMPLETED -> UPLOADED"""
    return _transition_invoice(
        invoice,
        InvoiceStatus.UPLOADED,
        actor,
        TransitionContext(),
        TransitionExtra(now=now, actor=actor),
        "confirm_invoice_upload",
    )


def delete_invoice(invoice_id: str, snapshot: Snapshot) -> list[SyncCommand]:
    """删除 Invoice 及其派生任务；派生任务缺失时跳过"""
    commands = [SyncCommand.delete_invoice(invoice_id, origin="delete_invoice")]
    for ref in (TaskRef.companion_of(invoice_id), TaskRef.manager_review_of(invoice_id)):
        if snapshot.find_task(ref.task_id) is not None:
            commands.append(SyncCommand.delete_task(ref.task_id, origin="delete_invoice"))
    log.info("invoice_deleted", invoice_id=invoice_id, cascade_count=len(commands) - 1)
    return commands
