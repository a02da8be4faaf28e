"""活动日志模块。

LogSink 是核心组件唯一依赖的日志接口：只写不读，调用方不关心结果。
ActivityLog 把记录转发到标准 logging，并在内存中保留最近的条目，
供批量轮询时展示逐条处理结果。
"""

import logging
from collections import deque
from datetime import datetime
from typing import Any, Protocol

from ..config import LoggingDefaults
from .logging_helpers import get_logger


# "success" 没有对应的标准级别，按 INFO 输出
_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogSink(Protocol):
    """日志接收端协议"""

    def record(
        self, level: str, message: str, context: dict[str, Any] | None = None
    ) -> None: ...


class ActivityLog:
    """基于标准 logging 的 LogSink 实现"""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        max_recent: int = LoggingDefaults.RECENT_ENTRIES,
    ) -> None:
        self.logger = logger or get_logger("py_image_optimizer.activity")
        self._recent: deque[dict[str, Any]] = deque(maxlen=max_recent)

    def record(
        self, level: str, message: str, context: dict[str, Any] | None = None
    ) -> None:
        entry = {
            "time": datetime.now().isoformat(timespec="seconds"),
            "level": level,
            "message": message,
            "context": context or {},
        }
        self._recent.appendleft(entry)

        line = f"[{level.upper()}] {message}"
        if context:
            line += f" {context}"
        self.logger.log(_LEVELS.get(level, logging.INFO), line)

    def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        """最近的日志条目，最新的在前"""
        return list(self._recent)[:limit]
