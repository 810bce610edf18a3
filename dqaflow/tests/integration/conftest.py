"""集成测试共享 fixture -- 内存后端 + 两个 viewer 会话"""

import pytest
from dqaflow.core.reconcile import WorkflowEngine
from dqaflow.host.notification_hub import NotificationHub
from dqaflow.host.runner import CycleRunner
from dqaflow.host.sync_sink import InMemorySyncSink


class Sessions:
    """同一个内存后端上的 Manager 与 Agent 会话

    每次 push() 把后端当前集合推送给两个会话，
    并等待各自产生的写入落到后端。
    """

    def __init__(self, manager, agent, settings) -> None:
        self.backend = InMemorySyncSink()
        self.hub = NotificationHub()
        self.manager = CycleRunner(WorkflowEngine(manager, settings), self.backend, hub=self.hub)
        self.agent = CycleRunner(WorkflowEngine(agent, settings), self.backend, hub=self.hub)

    async def push(self, now):
        collections = self.backend.snapshot()
        manager_result = await self.manager.process(collections, now=now)
        agent_result = await self.agent.process(collections, now=now)
        await self.manager.drain()
        await self.agent.drain()
        return manager_result, agent_result

    async def write(self, commands) -> None:
        for command in commands:
            await self.backend.apply(command)


@pytest.fixture
def sessions(manager, agent, settings) -> Sessions:
    return Sessions(manager, agent, settings)
