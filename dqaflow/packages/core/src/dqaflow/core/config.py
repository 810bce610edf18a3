"""配置模块 -- 可通过环境变量覆盖

包含派生任务 ID 前缀、默认截止时长、告警通道等可配置项。
"""

import os

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()

# 派生任务的确定性 ID 前缀
COMPANION_TASK_PREFIX: str = "task-"
MANAGER_REVIEW_TASK_PREFIX: str = "task-mgr-"


def positive_int_env(env_var: str, fallback: int) -> int:
    """读取正整数环境变量；未设置时返回 fallback，无法解析或不为正数时告警后返回 fallback"""
    val = os.environ.get(env_var)
    if not val:
        return fallback
    try:
        parsed = int(val)
    except ValueError:
        parsed = 0
    if parsed >= 1:
        return parsed
    log.warning("invalid_int_config", env_var=env_var, value=val, fallback=fallback)
    return fallback


# 每个 viewer 通知队列与最近通知回放的容量
NOTIFICATION_QUEUE_MAXSIZE: int = positive_int_env("DQAFLOW_NOTIFICATION_QUEUE_MAXSIZE", 100)
NOTIFICATION_REPLAY_SIZE: int = positive_int_env("DQAFLOW_NOTIFICATION_REPLAY_SIZE", 20)


class EngineSettings(BaseModel):
    """引擎配置 -- 从环境变量加载

    环境变量:
        DQAFLOW_MANAGER_ID: 指定的 manager-review 任务负责人
        DQAFLOW_MANAGER_REVIEW_DUE_HOURS: manager-review 任务截止时长（小时，默认 24）
        DQAFLOW_COMPANION_DUE_DAYS: companion 任务默认截止天数（默认 3）
        DQAFLOW_ALERT_WEBHOOK_URL: 告警通道 webhook 地址
        DQAFLOW_ALERT_TIMEOUT_S: 告警请求超时（秒，默认 5）
    """

    manager_id: str | None = Field(
        default=None,
        description="manager-review 任务负责人；为空时取名册中第一个 MANAGER",
    )
    manager_review_due_hours: int = Field(
        default=24,
        ge=1,
        description="manager-review 任务截止时长（小时）",
    )
    companion_due_days: int = Field(
        default=3,
        ge=1,
        description="Invoice 未设置截止时间时 companion 任务的默认截止天数",
    )
    alert_webhook_url: str | None = Field(default=None, description="告警 webhook 地址")
    alert_timeout_s: float = Field(default=5.0, gt=0, description="告警请求超时（秒）")


_INT_ENV_VARS: dict[str, tuple[str, int]] = {
    "DQAFLOW_MANAGER_REVIEW_DUE_HOURS": ("manager_review_due_hours", 24),
    "DQAFLOW_COMPANION_DUE_DAYS": ("companion_due_days", 3),
}


def load_engine_settings() -> EngineSettings:
    """从环境变量加载引擎配置

    数值型变量无法解析或不为正数时记录告警并使用默认值，不阻塞启动。

    Returns:
        EngineSettings 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("DQAFLOW_MANAGER_ID"):
        kwargs["manager_id"] = val

    if val := os.environ.get("DQAFLOW_ALERT_WEBHOOK_URL"):
        kwargs["alert_webhook_url"] = val

    for env_var, (field_name, fallback) in _INT_ENV_VARS.items():
        if os.environ.get(env_var):
            kwargs[field_name] = positive_int_env(env_var, fallback)

    if val := os.environ.get("DQAFLOW_ALERT_TIMEOUT_S"):
        try:
            timeout = float(val)
        except ValueError:
            timeout = 0.0
        if timeout > 0:
            kwargs["alert_timeout_s"] = timeout
        else:
            log.warning(
                "invalid_timeout_config",
                env_var="DQAFLOW_ALERT_TIMEOUT_S",
                value=val,
                fallback=5.0,
            )

    return EngineSettings(**kwargs)
