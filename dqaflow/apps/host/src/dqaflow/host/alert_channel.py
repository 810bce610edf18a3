"""告警通道 -- 把高优先级事件转发到外部聊天 webhook

发送是 best-effort：连接失败、超时或非 2xx 响应只记录日志，不抛出。
"""

import time
from typing import Protocol

import httpx
import structlog
from dqaflow.core.config import EngineSettings

log = structlog.get_logger()

# 连接类异常（记录为 unreachable，其余 HTTP 错误记录为 rejected）
_CONNECTION_ERROR_TYPES = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.TimeoutException,
    OSError,
)


class AlertChannel(Protocol):
    """告警通道协议"""

    async def send(self, text: str) -> bool:
        """发送一条告警文本，返回是否送达"""
        ...

    async def aclose(self) -> None: ...


class NullAlertChannel:
    """未配置 webhook 时使用：只记录日志"""

    async def send(self, text: str) -> bool:
        log.debug("alert_skipped", reason="no_webhook_configured", text_length=len(text))
        return False

    async def aclose(self) -> None:
        return None


class WebhookAlertChannel:
    """聊天 webhook 告警通道

    POST {"text": ...} JSON 到配置的地址。
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_s: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            webhook_url: webhook 地址
            timeout_s: 请求超时（秒）
            client: 可注入的 httpx.AsyncClient（测试用 MockTransport）；
                未注入时自行创建并在 aclose 中关闭
        """
        self._webhook_url = webhook_url
        self._timeout_s = timeout_s
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    @property
    def webhook_url(self) -> str:
        return self._webhook_url

    async def send(self, text: str) -> bool:
        start_time = time.monotonic()
        try:
            response = await self._client.post(
                self._webhook_url,
                json={"text": text},
                timeout=self._timeout_s,
            )
            response.raise_for_status()
        except _CONNECTION_ERROR_TYPES as e:
            log.warning(
                "alert_webhook_unreachable",
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except httpx.HTTPError as e:
            log.warning(
                "alert_webhook_rejected",
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        duration_ms = int((time.monotonic() - start_time) * 1000)
        log.info(
            "alert_sent",
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def create_alert_channel(settings: EngineSettings) -> AlertChannel:
    """按配置选择告警通道"""
    if settings.alert_webhook_url:
        log.info("alert_channel_initialized", mode="webhook", timeout_s=settings.alert_timeout_s)
        return WebhookAlertChannel(settings.alert_webhook_url, timeout_s=settings.alert_timeout_s)
    log.info("alert_channel_initialized", mode="null")
    return NullAlertChannel()
