"""dqaflow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .collections import CollectionSet
from .command import SyncCommand, entity_id_of
from .enums import (
    AUTOMATED_TASK_TYPES,
    ESCALATION_TRANSITIONS,
    INVOICE_TRANSITIONS,
    TASK_TRANSITIONS,
    TERMINAL_STATES,
    AttachmentType,
    ChangeKind,
    CommandOp,
    EntityKind,
    EscalationStatus,
    InventoryStatus,
    InvoiceStatus,
    NotificationEvent,
    TaskPriority,
    TaskStatus,
    TaskType,
    UserRole,
    validate_transition,
)
from .escalation import Escalation, EscalationMessage
from .inventory import InventoryFile, InventoryItem
from .invoice import Invoice, InvoiceFileMeta
from .notification import Notification
from .refs import InventoryFileRef, TaskRef
from .task import Task, TaskAttachment, TaskNote
from .user import User, Viewer

__all__ = [
    # 枚举
    "UserRole",
    "TaskStatus",
    "TaskPriority",
    "TaskType",
    "EscalationStatus",
    "InvoiceStatus",
    "InventoryStatus",
    "AttachmentType",
    "EntityKind",
    "ChangeKind",
    "CommandOp",
    "NotificationEvent",
    # 状态机
    "TASK_TRANSITIONS",
    "ESCALATION_TRANSITIONS",
    "INVOICE_TRANSITIONS",
    "TERMINAL_STATES",
    "AUTOMATED_TASK_TYPES",
    "validate_transition",
    # 实体
    "Task",
    "TaskNote",
    "TaskAttachment",
    "Escalation",
    "EscalationMessage",
    "Invoice",
    "InvoiceFileMeta",
    "InventoryFile",
    "InventoryItem",
    "User",
    "Viewer",
    "Notification",
    # 集合与指令
    "CollectionSet",
    "SyncCommand",
    "entity_id_of",
    # 引用
    "TaskRef",
    "InventoryFileRef",
]
