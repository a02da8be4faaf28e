"""运行时守卫模块。

批量处理在每个资源开始前检查两个独立的守卫：
- 时间守卫：已用时间达到 max(30, 执行上限 - 10) 秒
- 内存守卫：进程内存达到内存上限的 85%（上限未知时不检查）

守卫触发只表示本次调用提前结束，不是错误。
"""

import sys
import time
from collections.abc import Callable
from pathlib import Path

from ..config import RuntimeDefaults
from ..utils.logging_helpers import get_logger


logger = get_logger()

_STATM = Path("/proc/self/statm")


def current_memory_usage() -> int:
    """当前进程的内存占用（字节）

    优先读取 /proc/self/statm 的常驻内存，其他平台退回到峰值常驻内存。
    """
    try:
        import resource
    except ImportError:
        return 0

    try:
        pages = int(_STATM.read_text().split()[1])
        return pages * resource.getpagesize()
    except (OSError, IndexError, ValueError):
        pass

    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS 以字节为单位，Linux 以 KB 为单位
    if sys.platform == "darwin":
        return int(max_rss)
    return int(max_rss) * 1024


class RuntimeGuard:
    """单次调用的时间与内存守卫

    Args:
        time_budget: 可用时间（秒）
        memory_limit: 内存上限（字节），0 表示不检查
        threshold_ratio: 内存守卫阈值比例
        clock: 单调时钟，测试时可注入
        memory_usage: 内存采样函数，测试时可注入
    """

    def __init__(
        self,
        time_budget: float,
        memory_limit: int = 0,
        threshold_ratio: float = RuntimeDefaults.MEMORY_THRESHOLD_RATIO,
        clock: Callable[[], float] = time.monotonic,
        memory_usage: Callable[[], int] = current_memory_usage,
    ) -> None:
        self.time_budget = time_budget
        self.memory_limit = memory_limit
        self.threshold_ratio = threshold_ratio
        self.clock = clock
        self.memory_usage = memory_usage
        self.started_at = clock()

    @classmethod
    def for_limits(
        cls,
        max_execution_seconds: int,
        memory_limit: int,
        runtime: RuntimeDefaults | None = None,
        **kwargs,
    ) -> "RuntimeGuard":
        """根据执行时间上限计算时间预算"""
        runtime = runtime or RuntimeDefaults()
        budget = max(
            runtime.MIN_TIME_BUDGET,
            max_execution_seconds - runtime.TIME_SAFETY_MARGIN,
        )
        return cls(
            time_budget=budget,
            memory_limit=memory_limit,
            threshold_ratio=runtime.MEMORY_THRESHOLD_RATIO,
            **kwargs,
        )

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def time_exceeded(self) -> bool:
        return self.elapsed() >= self.time_budget

    def memory_exceeded(self) -> bool:
        if self.memory_limit <= 0:
            return False
        usage = self.memory_usage()
        if usage >= self.memory_limit * self.threshold_ratio:
            logger.warning(
                f"内存占用接近上限，提前结束本批处理: {usage} / {self.memory_limit} 字节"
            )
            return True
        return False

    def check(self) -> str | None:
        """返回触发的守卫名称（"time" 或 "memory"），未触发时返回 None"""
        if self.time_exceeded():
            return "time"
        if self.memory_exceeded():
            return "memory"
        return None
