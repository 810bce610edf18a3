"""Projection -- 把同步指令应用到全量集合

存储/同步协作方的内存实现和回放工具用它来推进下一次推送的集合。
指令按 upsert / delete 幂等执行：重复应用同一条指令结果不变，
删除不存在的实体视为 no-op。
"""

import time

import structlog

from .models.collections import CollectionSet
from .models.command import SyncCommand
from .models.enums import EntityKind

log = structlog.get_logger()

_COLLECTION_FIELDS: dict[EntityKind, str] = {
    EntityKind.TASK: "tasks",
    EntityKind.INVOICE: "invoices",
    EntityKind.ESCALATION: "escalations",
}


def apply_command(state: dict[EntityKind, dict], command: SyncCommand) -> None:
    """将单条指令应用到按实体类别分组的索引（就地修改）

    Args:
        state: EntityKind -> {entity_id: entity}
        command: 要应用的指令
    """
    entities = state[command.kind]
    if command.is_delete:
        entities.pop(command.entity_id, None)
    else:
        entities[command.entity_id] = command.entity


def apply_commands(collections: CollectionSet, commands: list[SyncCommand]) -> CollectionSet:
    """按顺序应用指令，返回新的全量集合

    保留原有实体顺序，新建实体追加在末尾；库存与名册原样带过。

    Args:
        collections: 当前全量集合（不会被修改）
        commands: 待应用的指令

    Returns:
        新的 CollectionSet
    """
    start_time = time.monotonic()

    state: dict[EntityKind, dict] = {
        EntityKind.TASK: {task.task_id: task for task in collections.tasks},
        EntityKind.INVOICE: {inv.invoice_id: inv for inv in collections.invoices},
        EntityKind.ESCALATION: {esc.escalation_id: esc for esc in collections.escalations},
    }
    for command in commands:
        apply_command(state, command)

    result = collections.model_copy(
        update={
            field: list(state[kind].values())
            for kind, field in _COLLECTION_FIELDS.items()
        }
    )

    if commands:
        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        log.debug(
            "commands_projected",
            command_count=len(commands),
            task_count=len(result.tasks),
            invoice_count=len(result.invoices),
            escalation_count=len(result.escalations),
            elapsed_ms=elapsed_ms,
        )
    return result
