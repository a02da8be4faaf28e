"""图像优化器接口。

ImageOptimizer 在进程内装配一次所有组件（能力探测 → 转换引擎 → 备份存储 →
批量处理器），并对外提供 status / run_chunk / optimize_single / restore_single，
以及新图片登记入口 ingest。
组件之间通过构造参数传递，不依赖全局查找。
"""

import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

from .config import AppConfig, get_config
from .core.capabilities import Capabilities, CapabilityProbe
from .core.codecs import Codec
from .core.conversion_engine import ConversionEngine
from .engine.batch import BatchProcessor
from .engine.config import SettingsBuilder
from .engine.deletion import OriginalsRemover
from .engine.guards import current_memory_usage
from .engine.scheduler import ScheduledRunner
from .models.constants import ImageFormats, MetadataKeys
from .models.conversion_result import BatchStatus, ChunkResult, ConversionResult
from .models.settings import OptimizerSettings
from .storage.backup import BackupStore
from .storage.repository import ImageRepository, SqliteImageRepository
from .utils.activity_log import ActivityLog
from .utils.file_helpers import file_size
from .utils.logging_helpers import get_logger


logger = get_logger()


class ImageOptimizer:
    """图像优化器

    组件由调用方显式传入；常规用法见 ImageOptimizer.create。
    """

    def __init__(
        self,
        repository: ImageRepository,
        probe: CapabilityProbe,
        engine: ConversionEngine,
        backups: BackupStore,
        processor: BatchProcessor,
        settings: OptimizerSettings,
        activity_log: ActivityLog,
    ):
        self.repository = repository
        self.probe = probe
        self.engine = engine
        self.backups = backups
        self.processor = processor
        self.settings = settings
        self.activity_log = activity_log
        self.scheduler = ScheduledRunner(processor, backups, settings)

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        storage_root: str | Path,
        settings: OptimizerSettings | None = None,
        backup_root: str | Path | None = None,
        codecs: Sequence[Codec] | None = None,
        app_config: AppConfig | None = None,
        activity_log: ActivityLog | None = None,
        clock: Callable[[], float] | None = None,
        memory_usage: Callable[[], int] = current_memory_usage,
    ) -> "ImageOptimizer":
        """装配所有组件

        Args:
            db_path: SQLite 数据库路径
            storage_root: 规范存储根目录
            settings: 优化配置，缺省时从全局默认值构建
            backup_root: 备份目录，缺省时位于 storage_root 旁边
            codecs: 编码后端，缺省为 libvips + Pillow
            app_config: 全局配置，缺省取 get_config()
            activity_log: 活动日志
            clock: 守卫使用的单调时钟
            memory_usage: 守卫使用的内存采样函数
        """
        app_config = app_config or get_config()
        settings = settings or SettingsBuilder.from_app_config(app_config)
        activity_log = activity_log or ActivityLog()

        repository = SqliteImageRepository(db_path, storage_root)
        probe = CapabilityProbe(codecs, app_config.runtime)
        engine = ConversionEngine(probe, repository, settings, activity_log)
        backups = BackupStore(repository, backup_root, activity_log)
        remover = OriginalsRemover(repository, backups, settings, activity_log)

        processor = BatchProcessor(
            repository,
            engine,
            backups,
            remover,
            probe,
            settings,
            activity_log,
            clock=clock or time.monotonic,
            memory_usage=memory_usage,
        )

        logger.debug(f"初始化图像优化器: storage_root={storage_root}")
        return cls(repository, probe, engine, backups, processor, settings, activity_log)

    # ------------------------------------------------------------------ 对外操作

    def status(self) -> BatchStatus:
        return self.processor.status()

    def run_chunk(self, batch_size: int | None = None) -> ChunkResult:
        return self.processor.run_chunk(batch_size)

    def optimize_single(self, asset_id: int) -> ConversionResult | None:
        """立即转换单个资源，返回持久化后的结果

        只做转换，不备份也不删除原图；删除原图只在批量处理中进行。
        原图已被删除的资源没有可转换的源文件，直接返回已有结果。
        资源不存在时返回 None。
        """
        if self.repository.get_mime(asset_id) is None:
            logger.warning(f"资源 #{asset_id} 不存在")
            return None

        if self.repository.get_metadata(asset_id, MetadataKeys.ORIGINALS_DELETED):
            logger.info(f"资源 #{asset_id} 的原图已删除，保留已有结果")
            return self.repository.get_result(asset_id)

        return self.engine.optimize_asset(asset_id)

    def ingest(
        self,
        path: str | Path,
        mime: str | None = None,
        variants: Mapping[str, str | Path] | None = None,
    ) -> tuple[int, ConversionResult | None]:
        """登记新上传的图片，开启 auto_optimize 时立即转换

        只有 JPEG / PNG / GIF 且不小于 min_size_kb 的文件会被立即转换，
        其余资源留给批量处理。

        Returns:
            (资源 ID, 本次转换结果；未转换时为 None)
        """
        asset_id = self.repository.add_asset(path, mime, variants)

        if not self.settings.auto_optimize:
            return asset_id, None

        if self.repository.get_mime(asset_id) not in ImageFormats.SOURCE_MIME_TYPES:
            return asset_id, None

        source = self.repository.get_source_path(asset_id)
        size = file_size(source) if source is not None else None
        if size is None or size < self.settings.min_size_bytes:
            return asset_id, None

        return asset_id, self.engine.optimize_asset(asset_id)

    def restore_single(self, asset_id: int) -> bool:
        """从备份恢复单个资源"""
        return self.backups.restore(asset_id)

    # ------------------------------------------------------------------ 管理操作

    def capabilities(self) -> Capabilities:
        return self.probe.detect()

    def expire_backups(self) -> int:
        """清理超过保留天数的备份"""
        return self.scheduler.cleanup()

    def backup_size(self) -> int:
        return self.backups.total_size()

    def recent_activity(self, limit: int = 20) -> list[dict[str, Any]]:
        return self.activity_log.recent(limit)

    def close(self) -> None:
        close = getattr(self.repository, "close", None)
        if close is not None:
            close()


def create_optimizer(
    db_path: str | Path,
    storage_root: str | Path,
    **settings: Any,
) -> ImageOptimizer:
    """便捷的装配函数，settings 为原始配置值

    Raises:
        ValidationError: 配置无效
    """
    return ImageOptimizer.create(
        db_path, storage_root, settings=SettingsBuilder().build(**settings)
    )
