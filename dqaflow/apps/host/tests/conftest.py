"""apps/host 测试配置 -- 同步写入端、通知广播器、告警通道 fixture"""

import pytest
from dqaflow.host.notification_hub import NotificationHub
from dqaflow.host.sync_sink import InMemorySyncSink


class RecordingAlertChannel:
    """记录发送内容的告警通道"""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False

    async def send(self, text: str) -> bool:
        self.sent.append(text)
        return True

    async def aclose(self) -> None:
        self.closed = True


class FailingSyncSink:
    """每次写入都失败的写入端"""

    def __init__(self) -> None:
        self.attempts = 0

    async def apply(self, command) -> None:
        self.attempts += 1
        raise RuntimeError("backend unavailable")


@pytest.fixture
def sink() -> InMemorySyncSink:
    return InMemorySyncSink()


@pytest.fixture
def failing_sink() -> FailingSyncSink:
    return FailingSyncSink()


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub(queue_maxsize=10, replay_size=5)


@pytest.fixture
def alerts() -> RecordingAlertChannel:
    return RecordingAlertChannel()


class BrokenAlertChannel:
    """send 直接抛异常的告警通道"""

    async def send(self, text: str) -> bool:
        raise RuntimeError("webhook client crashed")

    async def aclose(self) -> None:
        pass


class FlakySyncSink(InMemorySyncSink):
    """前 failures 次写入失败，之后恢复正常"""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    async def apply(self, command) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("backend unavailable")
        await super().apply(command)


@pytest.fixture
def broken_alerts() -> BrokenAlertChannel:
    return BrokenAlertChannel()


@pytest.fixture
def flaky_sink() -> FlakySyncSink:
    return FlakySyncSink(failures=1)
