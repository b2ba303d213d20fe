"""日志配置：彩色控制台、JSON 结构化输出与按天轮转的文件日志。

每条日志都带上两项上下文：HTTP 层的 ``request_id``，以及正在处理的上传请求键
``request_key``（状态卡句柄 ``channel/message``），便于把桥接事件与卡片流转串起来。
"""

import json
import logging
import logging.config
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Iterator, Optional

from .config import get_settings

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_request_key_ctx: ContextVar[Optional[str]] = ContextVar("request_key", default=None)

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_key)s] %(message)s"


class LogContextFilter(logging.Filter):
    """把上下文变量写入每条 LogRecord；缺省值为 ``-``，文本格式里不会出现 None。"""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = _request_id_ctx.get() or "-"
        record.request_key = _request_key_ctx.get() or "-"
        return True


class _TZFormatter(logging.Formatter):
    """按 Settings.timezone 渲染时间，未指定 datefmt 时使用带毫秒的 ISO-8601。"""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: D401
        dt = datetime.fromtimestamp(record.created, get_settings().timezone_info)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(sep=" ", timespec="milliseconds")


class ColorFormatter(_TZFormatter):
    RESET = "\033[0m"
    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: Optional[bool] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_colors = sys.stderr.isatty() if use_colors is None else use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelno) if self.use_colors else None
        return f"{color}{message}{self.RESET}" if color else message


class JsonFormatter(_TZFormatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "request_key": getattr(record, "request_key", "-"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging() -> None:
    """初始化日志系统：``app`` 与 uvicorn 共用控制台和文件两个处理器。"""
    settings = get_settings()
    settings.log_directory.mkdir(parents=True, exist_ok=True)

    json_enabled = bool(settings.log_json)
    level = settings.log_level

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"context": {"()": LogContextFilter}},
            "formatters": {
                "console": {"()": ColorFormatter, "fmt": _TEXT_FORMAT},
                "plain": {"()": _TZFormatter, "fmt": _TEXT_FORMAT},
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "level": level,
                    "filters": ["context"],
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_enabled else "console",
                },
                "file": {
                    "level": level,
                    "filters": ["context"],
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "formatter": "json" if json_enabled else "plain",
                    "filename": str(settings.log_file_path),
                    "when": "midnight",
                    "backupCount": 14,
                    "encoding": "utf-8",
                    "delay": True,
                },
            },
            "loggers": {
                name: {"handlers": ["default", "file"], "level": level, "propagate": False}
                for name in ("uvicorn", "app")
            },
            "root": {"handlers": ["default", "file"], "level": level},
        }
    )


logger = logging.getLogger("app")


def set_request_id(request_id: Optional[str]) -> None:
    _request_id_ctx.set(request_id)


@contextmanager
def request_key_context(key: Optional[str]) -> Iterator[None]:
    """在代码块内把日志归到某个上传请求名下，退出时恢复外层值。"""
    token = _request_key_ctx.set(key or None)
    try:
        yield
    finally:
        _request_key_ctx.reset(token)
