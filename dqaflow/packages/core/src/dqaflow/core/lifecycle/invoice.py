"""Invoice 生命周期

PENDING --指派（处理人 + 日期）--> ASSIGNED
ASSIGNED --附上最终交付物--> COMPLETED
COMPLETED --Manager 确认上传--> UPLOADED（终态）
不存在 PENDING -> COMPLETED 的捷径。
"""

from ..models.enums import InvoiceStatus, UserRole, validate_transition
from ..models.invoice import Invoice
from ..models.user import Viewer
from .base import TransitionContext, TransitionExtra, is_manager_or, raise_if_rejected


def explain(
    invoice: Invoice,
    from_status: InvoiceStatus,
    to_status: InvoiceStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> str | None:
    """返回拒绝原因；允许流转时返回 None"""
    if invoice.status != from_status:
        return f"Invoice 状态已变化: 期望 {from_status}，实际 {invoice.status}"
    if not validate_transition(from_status, to_status):
        return f"不允许从 {from_status} 流转到 {to_status}"
    if actor is None:
        return "缺少操作者"

    if to_status == InvoiceStatus.ASSIGNED:
        if actor.role != UserRole.MANAGER:
            return "仅 Manager 可指派 Invoice"
        if not context.assignee_id:
            return "指派 Invoice 需要处理人"
        if context.due_date is None:
            return "指派 Invoice 需要截止时间"
        return None

    if to_status == InvoiceStatus.COMPLETED:
        if not is_manager_or(actor, invoice.assignee_id):
            return "仅处理人或 Manager 可完成 Invoice"
        if not context.has_final_deliverable:
            return "请先上传最终处理后的 CSV 文件"
        return None

    if to_status == InvoiceStatus.UPLOADED:
        if actor.role != UserRole.MANAGER:
            return "仅 Manager 可确认上传"
        return None

    return f"不支持的目标状态: {to_status}"


def can_transition(
    invoice: Invoice,
    from_status: InvoiceStatus,
    to_status: InvoiceStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> bool:
    return explain(invoice, from_status, to_status, actor, context) is None


def check_transition(
    invoice: Invoice,
    to_status: InvoiceStatus,
    actor: Viewer | None,
    context: TransitionContext,
) -> None:
    raise_if_rejected(
        explain(invoice, invoice.status, to_status, actor, context),
        invoice.invoice_id,
    )


def apply(invoice: Invoice, to_status: InvoiceStatus, extra: TransitionExtra) -> Invoice:
    """应用流转，返回新的 Invoice"""
    update: dict = {"status": to_status}
    if to_status == InvoiceStatus.ASSIGNED:
        update["assignee_id"] = extra.assignee_id
        update["assignee_name"] = extra.assignee_name
        update["start_date"] = extra.start_date or extra.now
        update["due_date"] = extra.due_date
    elif to_status == InvoiceStatus.COMPLETED:
        update["completed_at"] = extra.now
        if extra.final_deliverable is not None:
            update["final_csv_file"] = extra.final_deliverable
    return invoice.model_copy(update=update)
