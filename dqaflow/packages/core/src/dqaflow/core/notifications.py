"""Notification Dispatcher -- 把本周期变化转成面向当前 viewer 的通知

受众规则（逐个 delta、逐个 viewer 判断）：

| 事件                         | 受众                                        |
|------------------------------|---------------------------------------------|
| Task 创建 / 状态变化         | 负责人 或 Manager                            |
| Invoice 创建 / 其他状态变化  | 处理人 或 Manager                            |
| Invoice -> COMPLETED（边沿） | 仅 Manager，并转发告警通道                   |
| Escalation 创建              | Manager 或 发起人；非 Manager 发起时只由发起人会话转发告警 |
| Escalation 状态变化          | Manager 或 发起人                            |
| Escalation 新消息            | 最后一条消息作者不是 viewer，且 Manager 或发起人 |

基线周期不产生任何通知和告警。
"""

from datetime import datetime

import structlog
from pydantic import BaseModel, Field
from ulid import ULID

from .delta import DeltaSet, EntityDelta
from .models.enums import EntityKind, InvoiceStatus, NotificationEvent, TaskStatus, UserRole
from .models.escalation import Escalation
from .models.invoice import Invoice
from .models.notification import Notification
from .models.task import Task
from .models.user import Viewer
from .snapshot import Snapshot

log = structlog.get_logger()


class DispatchResult(BaseModel):
    """分发结果：通知 + 需要转发到告警通道的文本"""

    notifications: list[Notification] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)


def is_manager(viewer: Viewer) -> bool:
    if viewer.role == UserRole.MANAGER:
        return True
    if viewer.role == UserRole.AGENT:
        return False
    raise ValueError(f"未知角色: {viewer.role}")


def is_assignee_or_manager(viewer: Viewer, assignee_id: str | None) -> bool:
    return is_manager(viewer) or (bool(assignee_id) and viewer.user_id == assignee_id)


def is_agent_or_manager(viewer: Viewer, escalation: Escalation) -> bool:
    return is_manager(viewer) or viewer.user_id == escalation.agent_id


class NotificationDispatcher:
    """通知分发器

    无状态；每次 dispatch 只依赖入参。
    """

    def __init__(self, viewer: Viewer) -> None:
        self._viewer = viewer

    @property
    def viewer(self) -> Viewer:
        return self._viewer

    def dispatch(self, deltas: DeltaSet, current: Snapshot, now: datetime) -> DispatchResult:
        """根据本周期变化生成通知

        Args:
            deltas: 本周期 DeltaSet
            current: 本周期快照（用于解析标题、名称）
            now: 通知时间戳

        Returns:
            DispatchResult
        """
        result = DispatchResult()
        if deltas.baseline:
            return result

        for delta in deltas.tasks.changes:
            self._on_task(delta, current, now, result)
        for delta in deltas.invoices.changes:
            self._on_invoice(delta, current, now, result)
        for delta in deltas.escalations.changes:
            self._on_escalation(delta, current, now, result)

        if result.notifications or result.alerts:
            log.debug(
                "notifications_dispatched",
                viewer_id=self._viewer.user_id,
                notification_count=len(result.notifications),
                alert_count=len(result.alerts),
            )
        return result

    def _notify(
        self,
        result: DispatchResult,
        event: NotificationEvent,
        delta: EntityDelta,
        title: str,
        message: str,
        now: datetime,
    ) -> None:
        result.notifications.append(
            Notification(
                notification_id=str(ULID()),
                title=title,
                message=message,
                timestamp=now,
                event=event,
                entity_kind=delta.kind,
                entity_id=delta.entity_id,
            )
        )

    def _on_task(
        self,
        delta: EntityDelta,
        current: Snapshot,
        now: datetime,
        result: DispatchResult,
    ) -> None:
        task: Task = delta.after
        if not is_assignee_or_manager(self._viewer, task.assignee_id):
            return

        if delta.before is None:
            assignee = current.display_name(task.assignee_id)
            self._notify(
                result,
                NotificationEvent.TASK_CREATED,
                delta,
                "New Task Assigned",
                f'Task "{task.title}" assigned to {assignee}.',
                now,
            )
        elif delta.field_changed("status"):
            completed = task.status == TaskStatus.DONE
            self._notify(
                result,
                NotificationEvent.TASK_STATUS_CHANGED,
                delta,
                "Task Completed" if completed else "Task Updated",
                f'"{task.title}" moved to {task.status.value.replace("_", " ")}.',
                now,
            )

    def _on_invoice(
        self,
        delta: EntityDelta,
        current: Snapshot,
        now: datetime,
        result: DispatchResult,
    ) -> None:
        invoice: Invoice = delta.after

        if delta.before is None:
            if is_assignee_or_manager(self._viewer, invoice.assignee_id):
                self._notify(
                    result,
                    NotificationEvent.INVOICE_CREATED,
                    delta,
                    "New Invoice Slot",
                    f'Invoice "{invoice.reference_name}" created.',
                    now,
                )
            return

        if not delta.field_changed("status"):
            return

        if invoice.status == InvoiceStatus.COMPLETED:
            # 边沿：before 一定不是 COMPLETED，否则 status 不会出现在 changed_fields
            if is_manager(self._viewer):
                by = invoice.assignee_name or current.display_name(invoice.assignee_id)
                text = f'Invoice Completed: "{invoice.reference_name}" by {by}. Ready for upload.'
                self._notify(
                    result,
                    NotificationEvent.INVOICE_COMPLETED,
                    delta,
                    "Invoice Ready",
                    text,
                    now,
                )
                result.alerts.append(text)
        elif is_assignee_or_manager(self._viewer, invoice.assignee_id):
            self._notify(
                result,
                NotificationEvent.INVOICE_STATUS_CHANGED,
                delta,
                "Invoice Status",
                f'"{invoice.reference_name}" is now {invoice.status.value}.',
                now,
            )

    def _on_escalation(
        self,
        delta: EntityDelta,
        current: Snapshot,
        now: datetime,
        result: DispatchResult,
    ) -> None:
        escalation: Escalation = delta.after
        task = current.find_task(escalation.task_id)
        task_title = task.title if task is not None else escalation.task_id

        if delta.before is None:
            if not is_agent_or_manager(self._viewer, escalation):
                return
            agent_name = escalation.agent_name or current.display_name(escalation.agent_id)
            text = f'Escalation Raised: "{task_title}" by {agent_name}.'
            self._notify(
                result,
                NotificationEvent.ESCALATION_CREATED,
                delta,
                "Escalation Raised",
                text,
                now,
            )
            # 同一 Escalation 只从发起人的会话转发一次
            if self._viewer.user_id == escalation.agent_id and not self._raised_by_manager(
                escalation, current
            ):
                result.alerts.append(text)
            return

        if delta.field_changed("status"):
            if is_agent_or_manager(self._viewer, escalation):
                self._notify(
                    result,
                    NotificationEvent.ESCALATION_STATUS_CHANGED,
                    delta,
                    "Escalation Update",
                    f'Escalation for "{task_title}" is {escalation.status.value}.',
                    now,
                )
            return

        if len(escalation.history) > len(delta.before.history):
            last = escalation.last_message
            if last is None or last.author_id == self._viewer.user_id:
                return
            if is_agent_or_manager(self._viewer, escalation):
                self._notify(
                    result,
                    NotificationEvent.ESCALATION_MESSAGE,
                    delta,
                    "New Message",
                    f'New reply in escalation for "{task_title}".',
                    now,
                )

    @staticmethod
    def _raised_by_manager(escalation: Escalation, current: Snapshot) -> bool:
        """发起人是否为 Manager：优先看第一条消息的角色，其次查名册"""
        if escalation.history:
            return escalation.history[0].role == UserRole.MANAGER
        user = current.find_user(escalation.agent_id)
        return user is not None and user.role == UserRole.MANAGER
