"""Snapshot Store -- 保存上一周期与当前周期的集合

Snapshot 是一个周期内集合的只读视图（按 ID 索引，O(1) 查找），
每个周期整体替换，不做原地修改。
SnapshotStore 归属于单个引擎实例，只在 begin_cycle 中替换快照。
"""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

import structlog
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import NotFoundError
from .models.collections import CollectionSet
from .models.enums import UserRole
from .models.escalation import Escalation
from .models.inventory import InventoryFile
from .models.invoice import Invoice
from .models.refs import InventoryFileRef, TaskRef
from .models.task import Task
from .models.user import User

log = structlog.get_logger()


def _index(items: Iterable, key: str) -> Mapping:
    return MappingProxyType({getattr(item, key): item for item in items})


class Snapshot:
    """一个周期的集合快照（只读）"""

    __slots__ = ("_tasks", "_invoices", "_escalations", "_inventories", "_users")

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        invoices: Iterable[Invoice] = (),
        escalations: Iterable[Escalation] = (),
        inventories: Iterable[InventoryFile] = (),
        users: Iterable[User] = (),
    ) -> None:
        self._tasks: Mapping[str, Task] = _index(tasks, "task_id")
        self._invoices: Mapping[str, Invoice] = _index(invoices, "invoice_id")
        self._escalations: Mapping[str, Escalation] = _index(escalations, "escalation_id")
        self._inventories: Mapping[str, InventoryFile] = _index(inventories, "file_id")
        self._users: Mapping[str, User] = _index(users, "user_id")

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    @classmethod
    def from_collections(cls, collections: CollectionSet) -> "Snapshot":
        return cls(
            tasks=collections.tasks,
            invoices=collections.invoices,
            escalations=collections.escalations,
            inventories=collections.inventories,
            users=collections.users,
        )

    def same_content(self, other: "Snapshot") -> bool:
        """逐实体比较全部字段（含库存与名册），与集合内顺序无关"""
        pairs = (
            (self._tasks, other._tasks),
            (self._invoices, other._invoices),
            (self._escalations, other._escalations),
            (self._inventories, other._inventories),
            (self._users, other._users),
        )
        return all(dict(mine) == dict(theirs) for mine, theirs in pairs)

    @property
    def tasks(self) -> Mapping[str, Task]:
        return self._tasks

    @property
    def invoices(self) -> Mapping[str, Invoice]:
        return self._invoices

    @property
    def escalations(self) -> Mapping[str, Escalation]:
        return self._escalations

    @property
    def inventories(self) -> Mapping[str, InventoryFile]:
        return self._inventories

    @property
    def users(self) -> Mapping[str, User]:
        return self._users

    @property
    def is_empty(self) -> bool:
        """三类受追踪集合均为空（库存与名册不计入）"""
        return not (self._tasks or self._invoices or self._escalations)

    # ---- 类型化引用查找：失败抛 NotFoundError ----

    def get_task(self, ref: TaskRef | str) -> Task:
        task_id = ref.task_id if isinstance(ref, TaskRef) else ref
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def get_inventory_file(self, ref: InventoryFileRef | str) -> InventoryFile:
        file_id = ref.file_id if isinstance(ref, InventoryFileRef) else ref
        inventory = self._inventories.get(file_id)
        if inventory is None:
            raise NotFoundError("InventoryFile", file_id)
        return inventory

    # ---- 可选查找：明确允许缺失的路径使用 ----

    def find_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def find_user(self, user_id: str | None) -> User | None:
        if not user_id:
            return None
        return self._users.get(user_id)

    def display_name(self, user_id: str | None) -> str:
        """名册中的显示名称；不在名册中时回退为 ID"""
        user = self.find_user(user_id)
        if user is not None and user.name:
            return user.name
        return user_id or "someone"

    def first_manager(self) -> User | None:
        for user in self._users.values():
            if user.role == UserRole.MANAGER:
                return user
        return None

    def active_escalations_for(self, task_id: str) -> list[Escalation]:
        return [
            esc
            for esc in self._escalations.values()
            if esc.task_id == task_id and esc.is_active
        ]

    def escalated_task_ids(self) -> set[str]:
        """存在未关闭 Escalation 的 Task ID 集合"""
        return {esc.task_id for esc in self._escalations.values() if esc.is_active}


class CycleFrame(BaseModel):
    """begin_cycle 的结果：本周期的前后快照"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    cycle_no: int = Field(description="周期序号，从 1 开始")
    previous: Snapshot = Field(description="上一周期快照")
    current: Snapshot = Field(description="本周期快照")
    baseline: bool = Field(default=False, description="是否为基线周期")


class SnapshotStore:
    """快照存储 -- 每个引擎实例独占一个

    首个非空快照所在周期标记为基线周期：
    下游仍正常执行自动化规则，但不发送通知。
    """

    def __init__(self) -> None:
        self._previous = Snapshot.empty()
        self._current = Snapshot.empty()
        self._cycle_no = 0
        self._baseline_taken = False

    @property
    def previous(self) -> Snapshot:
        return self._previous

    @property
    def current(self) -> Snapshot:
        return self._current

    @property
    def cycle_no(self) -> int:
        return self._cycle_no

    @property
    def baseline_taken(self) -> bool:
        return self._baseline_taken

    def begin_cycle(self, collections: CollectionSet) -> CycleFrame:
        """开始新周期：旧的 current 变为 previous，换入新推送的集合

        Args:
            collections: 存储/同步协作方推送的全量集合

        Returns:
            CycleFrame，包含前后快照与基线标记
        """
        self._previous = self._current
        self._current = Snapshot.from_collections(collections)
        self._cycle_no += 1

        baseline = False
        if not self._baseline_taken and not self._current.is_empty:
            baseline = True
            self._baseline_taken = True
            log.info(
                "baseline_cycle_taken",
                cycle_no=self._cycle_no,
                task_count=len(self._current.tasks),
                invoice_count=len(self._current.invoices),
                escalation_count=len(self._current.escalations),
            )

        return CycleFrame(
            cycle_no=self._cycle_no,
            previous=self._previous,
            current=self._current,
            baseline=baseline,
        )
