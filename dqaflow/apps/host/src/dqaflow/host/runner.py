"""CycleRunner -- 单写者调和循环

每个引擎实例一个 runner：推送的集合先进入 asyncio.Queue，
由唯一的消费协程逐个交给 WorkflowEngine，保证周期严格串行。

周期产出的处理：
1. SyncCommand 以后台任务下发到 SyncSink（fire-and-forget），
   失败包装为 SyncWriteError 记录日志，不重试，由下一次推送的集合对齐
2. 告警文本 best-effort 发送到 AlertChannel，通道抛出的异常只记录日志
3. 通知推送到 NotificationHub 中该 viewer 的订阅者
"""

import asyncio
from datetime import datetime

import structlog
from dqaflow.core.exceptions import SyncWriteError
from dqaflow.core.models import CollectionSet, SyncCommand
from dqaflow.core.reconcile import ReconcileResult, WorkflowEngine

from .alert_channel import AlertChannel, NullAlertChannel
from .notification_hub import NotificationHub
from .sync_sink import SyncSink

log = structlog.get_logger()

# 队列中的停止信号
_STOP = object()


class CycleRunner:
    """调和循环"""

    def __init__(
        self,
        engine: WorkflowEngine,
        sink: SyncSink,
        alerts: AlertChannel | None = None,
        hub: NotificationHub | None = None,
    ) -> None:
        self._engine = engine
        self._sink = sink
        self._alerts = alerts or NullAlertChannel()
        self._hub = hub or NotificationHub()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: set[asyncio.Task] = set()
        self._write_errors: list[SyncWriteError] = []
        self._alert_errors = 0

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    @property
    def hub(self) -> NotificationHub:
        return self._hub

    @property
    def write_errors(self) -> list[SyncWriteError]:
        """累计的写入失败（仅用于观测）"""
        return list(self._write_errors)

    @property
    def alert_errors(self) -> int:
        """告警通道抛出异常的次数"""
        return self._alert_errors

    async def submit(self, collections: CollectionSet) -> None:
        """推送一次全量集合，等待消费协程处理"""
        await self._queue.put(collections)

    async def stop(self) -> None:
        """请求消费协程在处理完已排队的集合后退出"""
        await self._queue.put(_STOP)

    async def run(self) -> None:
        """消费协程：逐个处理排队的集合，直到收到停止信号"""
        log.info("cycle_runner_started", viewer_id=self._engine.viewer.user_id)
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    break
                await self.process(item)
            finally:
                self._queue.task_done()
        await self.drain()
        log.info("cycle_runner_stopped", viewer_id=self._engine.viewer.user_id)

    async def process(
        self,
        collections: CollectionSet,
        now: datetime | None = None,
    ) -> ReconcileResult:
        """执行一个周期并分发其产出

        引擎周期本身同步执行；指令和告警以后台任务发出，不阻塞下一个周期。
        """
        result = self._engine.on_snapshot(collections, now=now)

        for command in result.commands:
            self._spawn(self._write(command))
        for text in result.alerts:
            self._spawn(self._alert(text))
        for notification in result.notifications:
            await self._hub.publish(self._engine.viewer.user_id, notification)

        return result

    async def drain(self) -> None:
        """等待所有已发出的后台写入与告警结束"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, command: SyncCommand) -> None:
        try:
            await self._sink.apply(command)
        except Exception as e:
            error = SyncWriteError(command.op.value, command.entity_id, e)
            self._write_errors.append(error)
            log.error(
                "sync_write_failed",
                op=command.op.value,
                entity_id=command.entity_id,
                origin=command.origin,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def _alert(self, text: str) -> None:
        try:
            await self._alerts.send(text)
        except Exception as e:
            self._alert_errors += 1
            log.error(
                "alert_send_failed",
                viewer_id=self._engine.viewer.user_id,
                error_type=type(e).__name__,
                error=str(e),
            )
