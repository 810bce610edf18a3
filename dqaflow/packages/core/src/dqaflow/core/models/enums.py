"""枚举定义

包含 Task / Escalation / Invoice 三条生命周期的状态枚举、
各自的 VALID_TRANSITIONS 合法流转映射和终态集合，
以及角色、库存状态、同步指令、通知事件等封闭枚举。
"""

from enum import StrEnum


class UserRole(StrEnum):
    """操作者角色"""

    MANAGER = "MANAGER"
    AGENT = "AGENT"


class TaskStatus(StrEnum):
    """Task 状态机"""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    DONE = "DONE"


class TaskPriority(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class TaskType(StrEnum):
    """任务类型

    AUGMENTING / QA 由库存数据驱动自动完成，不允许人工直接完成。
    """

    AUGMENTING = "AUGMENTING"
    QA = "QA"
    CHECK_404 = "404_CHECK"
    INVOICE_PROCESSING = "INVOICE_PROCESSING"
    DATA_REFRESHER = "DATA_REFRESHER"


# 只能经由自动化规则完成的任务类型
AUTOMATED_TASK_TYPES: frozenset[TaskType] = frozenset({TaskType.AUGMENTING, TaskType.QA})


class EscalationStatus(StrEnum):
    """Escalation 状态机"""

    PENDING = "PENDING"
    RESPONDED = "RESPONDED"
    CLOSED = "CLOSED"


class InvoiceStatus(StrEnum):
    """Invoice 状态机"""

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    COMPLETED = "COMPLETED"
    UPLOADED = "UPLOADED"


class InventoryStatus(StrEnum):
    """库存条目状态（由导入方维护，本引擎只读）"""

    PENDING = "PENDING"
    ASSIGNED_AUGMENTATION = "ASSIGNED_AUGMENTATION"
    AUGMENTED = "AUGMENTED"
    ASSIGNED_QA = "ASSIGNED_QA"
    QA_COMPLETE = "QA_COMPLETE"


class AttachmentType(StrEnum):
    PDF = "pdf"
    CSV = "csv"
    IMG = "img"
    DOC = "doc"


class EntityKind(StrEnum):
    """引擎追踪的实体类别"""

    TASK = "task"
    INVOICE = "invoice"
    ESCALATION = "escalation"


class ChangeKind(StrEnum):
    """单个实体在两次快照之间的变化分类"""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"


class CommandOp(StrEnum):
    """下发给存储/同步协作方的幂等指令"""

    CREATE_TASK = "createTask"
    UPDATE_TASK = "updateTask"
    DELETE_TASK = "deleteTask"
    CREATE_INVOICE = "createInvoice"
    UPDATE_INVOICE = "updateInvoice"
    DELETE_INVOICE = "deleteInvoice"
    CREATE_ESCALATION = "createEscalation"
    UPDATE_ESCALATION = "updateEscalation"


COMMAND_KIND: dict[CommandOp, EntityKind] = {
    CommandOp.CREATE_TASK: EntityKind.TASK,
    CommandOp.UPDATE_TASK: EntityKind.TASK,
    CommandOp.DELETE_TASK: EntityKind.TASK,
    CommandOp.CREATE_INVOICE: EntityKind.INVOICE,
    CommandOp.UPDATE_INVOICE: EntityKind.INVOICE,
    CommandOp.DELETE_INVOICE: EntityKind.INVOICE,
    CommandOp.CREATE_ESCALATION: EntityKind.ESCALATION,
    CommandOp.UPDATE_ESCALATION: EntityKind.ESCALATION,
}

DELETE_OPS: frozenset[CommandOp] = frozenset(
    {CommandOp.DELETE_TASK, CommandOp.DELETE_INVOICE}
)


class NotificationEvent(StrEnum):
    """通知事件类型，与受众规则一一对应"""

    TASK_CREATED = "TASK_CREATED"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_COMPLETED = "INVOICE_COMPLETED"
    INVOICE_STATUS_CHANGED = "INVOICE_STATUS_CHANGED"
    ESCALATION_CREATED = "ESCALATION_CREATED"
    ESCALATION_STATUS_CHANGED = "ESCALATION_STATUS_CHANGED"
    ESCALATION_MESSAGE = "ESCALATION_MESSAGE"


# Task 合法状态流转（不含 actor / 上下文守卫，守卫见 lifecycle.task）
TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.TODO: {TaskStatus.IN_PROGRESS, TaskStatus.ON_HOLD, TaskStatus.DONE},
    TaskStatus.IN_PROGRESS: {TaskStatus.TODO, TaskStatus.ON_HOLD, TaskStatus.DONE},
    TaskStatus.ON_HOLD: {TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.DONE},
    # 终态不可再流转
    TaskStatus.DONE: set(),
}

# 回复不改变 RESPONDED / PENDING 时允许自流转
ESCALATION_TRANSITIONS: dict[EscalationStatus, set[EscalationStatus]] = {
    EscalationStatus.PENDING: {
        EscalationStatus.PENDING,
        EscalationStatus.RESPONDED,
        EscalationStatus.CLOSED,
    },
    EscalationStatus.RESPONDED: {
        EscalationStatus.PENDING,
        EscalationStatus.RESPONDED,
        EscalationStatus.CLOSED,
    },
    EscalationStatus.CLOSED: set(),
}

INVOICE_TRANSITIONS: dict[InvoiceStatus, set[InvoiceStatus]] = {
    InvoiceStatus.PENDING: {InvoiceStatus.ASSIGNED},
    InvoiceStatus.ASSIGNED: {InvoiceStatus.COMPLETED},
    InvoiceStatus.COMPLETED: {InvoiceStatus.UPLOADED},
    InvoiceStatus.UPLOADED: set(),
}

TERMINAL_STATES: set[StrEnum] = {
    TaskStatus.DONE,
    EscalationStatus.CLOSED,
    InvoiceStatus.UPLOADED,
}


def validate_transition(from_status: StrEnum, to_status: StrEnum) -> bool:
    """验证状态流转是否出现在对应生命周期的流转表中

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    if isinstance(from_status, TaskStatus):
        table: dict = TASK_TRANSITIONS
    elif isinstance(from_status, EscalationStatus):
        table = ESCALATION_TRANSITIONS
    elif isinstance(from_status, InvoiceStatus):
        table = INVOICE_TRANSITIONS
    else:
        raise TypeError(f"未知的状态类型: {type(from_status).__name__}")
    if type(to_status) is not type(from_status):
        return False
    allowed = table.get(from_status, set())
    return to_status in allowed
