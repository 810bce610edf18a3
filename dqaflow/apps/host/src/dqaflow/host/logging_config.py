"""宿主进程的 structlog 配置

DQAFLOW_LOG_FORMAT:
- "dev"（默认）: 终端彩色输出
- "json": 一行一个 JSON 对象，供日志采集

DQAFLOW_LOG_LEVEL: 标准 logging 级别名，无法识别时回退到 INFO。
日志统一写 stderr，stdout 留给 replay 的周期输出。
"""

import logging
import os

import structlog

# 告警 webhook 每次请求都会打 INFO，宿主只关心失败
_NOISY_LOGGERS = ("httpx", "httpcore")


def _resolve_level(name: str) -> tuple[int, bool]:
    level = logging.getLevelName(name.strip().upper())
    if isinstance(level, int):
        return level, True
    return logging.INFO, False


def setup_logging() -> None:
    """初始化 structlog + 标准库 logging，可重复调用"""
    log_format = os.environ.get("DQAFLOW_LOG_FORMAT", "dev").strip().lower()
    level_name = os.environ.get("DQAFLOW_LOG_LEVEL", "INFO")
    level, level_known = _resolve_level(level_name)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
        render_chain = [structlog.processors.format_exc_info, renderer]
    else:
        renderer = structlog.dev.ConsoleRenderer()
        render_chain = [renderer]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *render_chain,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if not level_known:
        structlog.get_logger().warning(
            "unknown_log_level",
            value=level_name,
            fallback="INFO",
        )
