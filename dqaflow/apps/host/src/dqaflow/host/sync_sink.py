"""SyncSink -- 存储/同步协作方的写入端

引擎产生的每条 SyncCommand 都通过 apply() 下发；
写入结果通过下一次推送的全量集合回到引擎，apply() 本身不返回数据。
"""

import asyncio
from typing import Protocol

import structlog
from dqaflow.core.models import CollectionSet, SyncCommand
from dqaflow.core.projection import apply_commands

log = structlog.get_logger()


class SyncSink(Protocol):
    """同步写入协议"""

    async def apply(self, command: SyncCommand) -> None:
        """执行一条幂等指令；失败时抛出任意异常"""
        ...


class InMemorySyncSink:
    """内存实现 -- 回放与测试用

    把指令应用到内存中的全量集合，snapshot() 返回下一次应推送给引擎的集合。
    """

    def __init__(self, collections: CollectionSet | None = None) -> None:
        self._collections = collections or CollectionSet()
        self._applied: list[SyncCommand] = []
        self._lock = asyncio.Lock()

    @property
    def applied(self) -> list[SyncCommand]:
        """已应用的指令（按应用顺序）"""
        return list(self._applied)

    async def apply(self, command: SyncCommand) -> None:
        async with self._lock:
            self._collections = apply_commands(self._collections, [command])
            self._applied.append(command)
        log.debug(
            "sync_command_applied",
            op=command.op.value,
            entity_id=command.entity_id,
            origin=command.origin,
        )

    def load(self, collections: CollectionSet) -> None:
        """整体替换内存集合（例如回放时推进到下一条外部快照）"""
        self._collections = collections

    def snapshot(self) -> CollectionSet:
        return self._collections.model_copy(deep=True)
