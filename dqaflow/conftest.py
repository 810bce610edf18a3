"""全局 pytest 配置 -- 固定时间、角色与实体工厂 fixture"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
from dqaflow.core.config import EngineSettings
from dqaflow.core.models import (
    CollectionSet,
    Escalation,
    EscalationMessage,
    EscalationStatus,
    InventoryFile,
    InventoryItem,
    Invoice,
    InvoiceStatus,
    Task,
    TaskStatus,
    TaskType,
    User,
    UserRole,
    Viewer,
)


@pytest.fixture
def now() -> datetime:
    """固定的时间基准"""
    return datetime(2025, 1, 15, 9, 0, tzinfo=UTC)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def manager() -> Viewer:
    return Viewer(user_id="u-mgr", role=UserRole.MANAGER, name="Maya")


@pytest.fixture
def agent() -> Viewer:
    return Viewer(user_id="u-agent", role=UserRole.AGENT, name="Alex")


@pytest.fixture
def other_agent() -> Viewer:
    return Viewer(user_id="u-other", role=UserRole.AGENT, name="Olive")


@pytest.fixture
def roster() -> list[User]:
    return [
        User(user_id="u-mgr", name="Maya", role=UserRole.MANAGER),
        User(user_id="u-agent", name="Alex", role=UserRole.AGENT),
        User(user_id="u-other", name="Olive", role=UserRole.AGENT),
    ]


@pytest.fixture
def make_task(now: datetime) -> Callable[..., Task]:
    """Task 工厂：默认是分配给 u-agent 的 TODO 任务"""

    def _make(task_id: str = "t-1", **overrides) -> Task:
        fields = {
            "task_id": task_id,
            "title": f"Task {task_id}",
            "assignee_id": "u-agent",
            "status": TaskStatus.TODO,
            "type": TaskType.DATA_REFRESHER,
            "created_at": now - timedelta(days=1),
        }
        fields.update(overrides)
        return Task(**fields)

    return _make


@pytest.fixture
def make_invoice(now: datetime) -> Callable[..., Invoice]:
    """Invoice 工厂：默认是 PENDING 且未指派"""

    def _make(invoice_id: str = "inv-1", **overrides) -> Invoice:
        fields = {
            "invoice_id": invoice_id,
            "reference_name": f"Studio {invoice_id}",
            "status": InvoiceStatus.PENDING,
            "created_at": now - timedelta(days=1),
        }
        fields.update(overrides)
        return Invoice(**fields)

    return _make


@pytest.fixture
def make_escalation(now: datetime) -> Callable[..., Escalation]:
    """Escalation 工厂：replies 为 manager 回复条数"""

    def _make(
        escalation_id: str = "esc-1",
        task_id: str = "t-1",
        replies: int = 0,
        **overrides,
    ) -> Escalation:
        history = [
            EscalationMessage(
                message_id=f"{escalation_id}-m0",
                author_id="u-agent",
                author_name="Alex",
                role=UserRole.AGENT,
                text="Source link is broken",
                timestamp=now - timedelta(hours=2),
            )
        ]
        for i in range(replies):
            history.append(
                EscalationMessage(
                    message_id=f"{escalation_id}-m{i + 1}",
                    author_id="u-mgr",
                    author_name="Maya",
                    role=UserRole.MANAGER,
                    text=f"Reply {i + 1}",
                    timestamp=now - timedelta(hours=1),
                )
            )
        fields = {
            "escalation_id": escalation_id,
            "task_id": task_id,
            "agent_id": "u-agent",
            "agent_name": "Alex",
            "history": history,
            "status": EscalationStatus.RESPONDED if replies else EscalationStatus.PENDING,
            "created_at": now - timedelta(hours=2),
            "updated_at": now - timedelta(hours=1),
        }
        fields.update(overrides)
        return Escalation(**fields)

    return _make


@pytest.fixture
def make_inventory() -> Callable[..., InventoryFile]:
    """库存文件工厂：statuses 为 item_id -> InventoryStatus"""

    def _make(file_id: str = "inv-file-1", statuses: dict | None = None) -> InventoryFile:
        statuses = statuses or {}
        return InventoryFile(
            file_id=file_id,
            file_name=f"{file_id}.csv",
            data=[
                InventoryItem(item_id=item_id, status=status)
                for item_id, status in statuses.items()
            ],
        )

    return _make


@pytest.fixture
def make_collections(roster: list[User]) -> Callable[..., CollectionSet]:
    """CollectionSet 工厂：默认带上人员名册"""

    def _make(
        tasks: list[Task] | None = None,
        invoices: list[Invoice] | None = None,
        escalations: list[Escalation] | None = None,
        inventories: list[InventoryFile] | None = None,
        users: list[User] | None = None,
    ) -> CollectionSet:
        return CollectionSet(
            tasks=tasks or [],
            invoices=invoices or [],
            escalations=escalations or [],
            inventories=inventories or [],
            users=roster if users is None else users,
        )

    return _make
