"""NotificationHub -- 按 viewer 分发的通知收件箱

引擎不持久化通知，宿主进程内为每个 viewer 保留最近 N 条：
新订阅者先收到回放，再接收实时通知（晚打开的面板不丢失刚生成的通知）。
订阅者消费跟不上时丢弃其队列中最旧的一条，订阅本身保留。
"""

import asyncio
from collections import defaultdict, deque

import structlog
from dqaflow.core.config import NOTIFICATION_QUEUE_MAXSIZE, NOTIFICATION_REPLAY_SIZE
from dqaflow.core.models import Notification

log = structlog.get_logger()


class NotificationHub:
    """通知收件箱 -- asyncio.Queue 订阅 + 每个 viewer 的最近通知回放"""

    def __init__(
        self,
        queue_maxsize: int = NOTIFICATION_QUEUE_MAXSIZE,
        replay_size: int = NOTIFICATION_REPLAY_SIZE,
    ) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._recent: dict[str, deque[Notification]] = {}
        self._queue_maxsize = queue_maxsize
        self._replay_size = replay_size
        self._dropped = 0

    @property
    def dropped(self) -> int:
        """因订阅者积压而被丢弃的通知总数"""
        return self._dropped

    def subscriber_count(self, viewer_id: str) -> int:
        return len(self._subscribers.get(viewer_id, ()))

    def recent(self, viewer_id: str) -> list[Notification]:
        """viewer 最近的通知，按发布顺序"""
        return list(self._recent.get(viewer_id, ()))

    async def subscribe(self, viewer_id: str, replay: bool = True) -> asyncio.Queue:
        """订阅指定 viewer 的通知流

        Args:
            viewer_id: viewer 的用户 ID
            replay: 是否先把最近的通知放入队列

        Returns:
            asyncio.Queue 实例，回放与新通知都推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        if replay:
            # 回放超过队列容量时只保留最新的部分
            for notification in self.recent(viewer_id)[-self._queue_maxsize :]:
                queue.put_nowait(notification)
        self._subscribers[viewer_id].add(queue)
        log.debug(
            "notification_subscribed",
            viewer_id=viewer_id,
            replayed=queue.qsize(),
        )
        return queue

    async def unsubscribe(self, viewer_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(viewer_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[viewer_id]

    async def publish(self, viewer_id: str, notification: Notification) -> int:
        """记录通知并推送给 viewer 的所有订阅者

        Returns:
            投递到的订阅者数量（含挤掉旧通知后投递的）
        """
        recent = self._recent.get(viewer_id)
        if recent is None:
            recent = self._recent[viewer_id] = deque(maxlen=self._replay_size)
        recent.append(notification)

        delivered = 0
        for queue in self._subscribers.get(viewer_id, ()):
            if queue.full():
                stale = queue.get_nowait()
                self._dropped += 1
                log.warning(
                    "notification_dropped_oldest",
                    viewer_id=viewer_id,
                    notification_id=stale.notification_id,
                )
            queue.put_nowait(notification)
            delivered += 1
        return delivered
