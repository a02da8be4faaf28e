"""后台任务模块。

由外部定时触发：每次处理固定的一小批资源，并定期清理过期备份。
调度策略由调用方决定，这里只是 run_chunk 的普通调用者。
"""

from ..config import ProcessingDefaults
from ..models.conversion_result import ChunkResult
from ..models.settings import OptimizerSettings
from ..storage.backup import BackupStore
from ..utils.logging_helpers import get_logger
from .batch import BatchProcessor


logger = get_logger()


class ScheduledRunner:
    """后台批量处理与备份清理"""

    def __init__(
        self,
        processor: BatchProcessor,
        backups: BackupStore,
        settings: OptimizerSettings,
        batch_size: int = ProcessingDefaults.BACKGROUND_BATCH_SIZE,
    ):
        self.processor = processor
        self.backups = backups
        self.settings = settings
        self.batch_size = batch_size

    def tick(self) -> ChunkResult:
        """处理一小批资源"""
        result = self.processor.run_chunk(self.batch_size)
        logger.debug(
            f"后台处理 {result.processed_batch} 个资源，剩余 {result.remaining}"
        )
        return result

    def cleanup(self) -> int:
        """清理超过保留天数的备份"""
        return self.backups.expire(self.settings.backup_retention_days)
