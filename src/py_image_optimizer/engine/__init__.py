"""批量处理引擎模块。

包含分块批量处理、运行时守卫、删除原图和配置构建等处理逻辑。
"""

from .batch import BatchProcessor
from .config import SettingsBuilder, build_settings
from .deletion import DeletionDecision, DeletionState, OriginalsRemover
from .guards import RuntimeGuard, current_memory_usage
from .scheduler import ScheduledRunner


__all__ = [
    "BatchProcessor",
    "DeletionDecision",
    "DeletionState",
    "OriginalsRemover",
    "RuntimeGuard",
    "ScheduledRunner",
    "SettingsBuilder",
    "build_settings",
    "current_memory_usage",
]
