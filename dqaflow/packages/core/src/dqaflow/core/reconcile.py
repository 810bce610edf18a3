"""Reconcile -- 单个调和周期

reconcile() 是纯函数：给定前后快照、viewer 和已下发指令指纹，
返回通知、指令、告警和新的指纹集合，不做任何 I/O。
WorkflowEngine 持有 SnapshotStore 与指纹集合，由宿主在每次快照到达时调用。

周期顺序：Delta Detector -> Automation Rules -> Notification Dispatcher，
快照存储在 begin_cycle 中已切换到新基线。
"""

import time
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, Field

from .automation import evaluate_rules
from .config import EngineSettings
from .delta import DeltaSet, detect_deltas
from .models.collections import CollectionSet
from .models.command import SyncCommand
from .models.notification import Notification
from .models.user import Viewer
from .notifications import NotificationDispatcher
from .snapshot import CycleFrame, Snapshot, SnapshotStore

log = structlog.get_logger()


class ReconcileResult(BaseModel):
    """一个周期的输出"""

    cycle_no: int = Field(default=0, description="周期序号")
    baseline: bool = Field(default=False, description="是否为基线周期")
    deltas: DeltaSet = Field(default_factory=DeltaSet, description="本周期变化")
    notifications: list[Notification] = Field(default_factory=list)
    commands: list[SyncCommand] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)
    issued: frozenset[str] = Field(
        default_factory=frozenset,
        description="本周期计算出的全部指令指纹（含被抑制的）",
    )
    suppressed: int = Field(
        default=0,
        description="集合原样重推时，与上一周期重复而被抑制的指令数",
    )


def reconcile(
    previous: Snapshot,
    current: Snapshot,
    viewer: Viewer,
    *,
    baseline: bool = False,
    now: datetime | None = None,
    settings: EngineSettings | None = None,
    issued: frozenset[str] = frozenset(),
    cycle_no: int = 0,
) -> ReconcileResult:
    """执行一个调和周期

    Args:
        previous: 上一周期快照
        current: 本周期快照
        viewer: 当前 viewer
        baseline: 是否为基线周期（抑制通知，规则照常）
        now: 时间基准，默认当前 UTC 时间
        settings: 引擎配置
        issued: 上一周期算出的指令指纹；仅当 current 与 previous 内容完全相同时，
            其中的指令视为仍在途而不再重复下发
        cycle_no: 周期序号（仅用于日志）

    Returns:
        ReconcileResult
    """
    now = now or datetime.now(UTC)
    settings = settings or EngineSettings()

    frame = CycleFrame(cycle_no=cycle_no, previous=previous, current=current, baseline=baseline)
    deltas = detect_deltas(previous, current, baseline)

    computed = evaluate_rules(frame, deltas, settings, now)
    fingerprints = [command.fingerprint() for command in computed]
    # 账本只对原样重推的集合生效；集合一变化，上一周期的写入要么已回到快照
    # （规则不会再算出同一指令），要么已丢失，需要重新下发
    ledger = issued if current.same_content(previous) else frozenset()
    commands = [
        command
        for command, fingerprint in zip(computed, fingerprints, strict=True)
        if fingerprint not in ledger
    ]

    dispatched = NotificationDispatcher(viewer).dispatch(deltas, current, now)

    return ReconcileResult(
        cycle_no=cycle_no,
        baseline=baseline,
        deltas=deltas,
        notifications=dispatched.notifications,
        commands=commands,
        alerts=dispatched.alerts,
        issued=frozenset(fingerprints),
        suppressed=len(computed) - len(commands),
    )


class WorkflowEngine:
    """工作流引擎 -- 每个 viewer 会话一个实例

    周期严格串行：宿主必须保证上一次 on_snapshot 返回之前不会开始下一次。
    """

    def __init__(self, viewer: Viewer, settings: EngineSettings | None = None) -> None:
        self._viewer = viewer
        self._settings = settings or EngineSettings()
        self._store = SnapshotStore()
        self._issued: frozenset[str] = frozenset()

    @property
    def viewer(self) -> Viewer:
        return self._viewer

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def snapshots(self) -> SnapshotStore:
        return self._store

    def on_snapshot(
        self,
        collections: CollectionSet,
        now: datetime | None = None,
    ) -> ReconcileResult:
        """处理一次推送的全量集合"""
        start_time = time.monotonic()
        frame = self._store.begin_cycle(collections)

        result = reconcile(
            frame.previous,
            frame.current,
            self._viewer,
            baseline=frame.baseline,
            now=now,
            settings=self._settings,
            issued=self._issued,
            cycle_no=frame.cycle_no,
        )
        self._issued = result.issued

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        log.info(
            "reconcile_cycle_completed",
            cycle_no=frame.cycle_no,
            viewer_id=self._viewer.user_id,
            baseline=frame.baseline,
            command_count=len(result.commands),
            suppressed_count=result.suppressed,
            notification_count=len(result.notifications),
            alert_count=len(result.alerts),
            elapsed_ms=elapsed_ms,
        )
        return result
