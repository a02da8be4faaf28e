"""批量处理器模块。

分块处理存量图片：每次调用选取一批尚无终态结果的资源，依次执行
备份 → 转换 → 删除原图，并在每个资源开始前检查时间与内存守卫。
进度只保存在每个资源的持久化结果中，重复调用即可从中断处继续。
"""

import time
from collections.abc import Callable

from ..config import AppConfig
from ..core.capabilities import CapabilityProbe
from ..core.conversion_engine import ConversionEngine
from ..models.constants import MetadataKeys
from ..models.conversion_result import (
    AssetOutcome,
    BatchStatus,
    ChunkResult,
    ConversionResult,
)
from ..models.settings import OptimizerSettings
from ..storage.backup import BackupStore
from ..storage.repository import ImageRepository
from ..utils.activity_log import ActivityLog, LogSink
from ..utils.logging_helpers import get_logger
from .deletion import DeletionState, OriginalsRemover
from .guards import RuntimeGuard, current_memory_usage


logger = get_logger()


class BatchProcessor:
    """可恢复的分块批量处理器

    Args:
        repository: 资源仓库
        engine: 转换引擎
        backups: 备份存储
        remover: 原图删除器
        probe: 能力探测器，提供执行时间和内存上限
        settings: 优化配置
        activity_log: 活动日志
        clock: 单调时钟，测试时可注入
        memory_usage: 内存采样函数，测试时可注入
    """

    def __init__(
        self,
        repository: ImageRepository,
        engine: ConversionEngine,
        backups: BackupStore,
        remover: OriginalsRemover,
        probe: CapabilityProbe,
        settings: OptimizerSettings,
        activity_log: LogSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        memory_usage: Callable[[], int] = current_memory_usage,
    ):
        self.repository = repository
        self.engine = engine
        self.backups = backups
        self.remover = remover
        self.probe = probe
        self.settings = settings
        self.activity_log = activity_log or ActivityLog()
        self.clock = clock
        self.memory_usage = memory_usage

    def status(self) -> BatchStatus:
        """整体进度，只做聚合统计，可以频繁轮询"""
        total = self.repository.count_all()
        processed = 0
        succeeded = 0
        savings = 0
        original_total = 0

        for asset_id, data in self.repository.iter_metadata(MetadataKeys.OPTIMIZATION):
            processed += 1
            try:
                result = ConversionResult.from_metadata(data)
            except ValueError as e:
                logger.warning(f"资源 #{asset_id} 的转换结果无法解析: {e}")
                continue
            if result.success:
                succeeded += 1
            savings += result.savings
            original_total += result.original_size

        avg_percent = round(savings / original_total * 100, 1) if original_total else 0.0

        return BatchStatus(
            total=total,
            processed=processed,
            succeeded=succeeded,
            skipped=processed - succeeded,
            remaining=max(0, total - processed),
            savings_bytes=savings,
            avg_percent=avg_percent,
        )

    def run_chunk(self, batch_size: int | None = None) -> ChunkResult:
        """处理一批未处理的资源

        Args:
            batch_size: 覆盖配置中的批量大小，限制在 [1, 100]

        Returns:
            ChunkResult: 本批结果和整体进度
        """
        size = AppConfig.clamp_batch_size(
            batch_size if batch_size is not None else self.settings.batch_size
        )
        asset_ids = self.repository.list_unprocessed_ids(size)

        if not asset_ids:
            return self._chunk_result([], done=True, message="所有图片均已处理")

        capabilities = self.probe.detect()
        guard = RuntimeGuard.for_limits(
            capabilities.max_execution_seconds,
            capabilities.memory_limit,
            clock=self.clock,
            memory_usage=self.memory_usage,
        )

        outcomes: list[AssetOutcome] = []
        stopped_by: str | None = None

        for asset_id in asset_ids:
            stopped_by = guard.check()
            if stopped_by is not None:
                if stopped_by == "memory":
                    self.activity_log.record(
                        "warning",
                        "内存占用接近上限，本批提前结束",
                        {"processed": len(outcomes)},
                    )
                break
            outcomes.append(self.process_asset(asset_id))

        message = ""
        match stopped_by:
            case "time":
                message = "已达到时间预算，下次调用继续处理"
            case "memory":
                message = "已达到内存阈值，下次调用继续处理"

        return self._chunk_result(outcomes, stopped_by=stopped_by, message=message)

    def process_asset(self, asset_id: int) -> AssetOutcome:
        """对单个资源执行 备份 → 转换 → 删除原图"""
        delete_enabled = self.settings.delete_originals

        # 删除原图前必须先备份，无论转换结果如何
        backup_ok = False
        if delete_enabled and self.settings.keep_backups:
            backup_ok = self.backups.backup_asset(asset_id)

        result = self.engine.optimize_asset(asset_id)

        originals_deleted = False
        if delete_enabled:
            decision = self.remover.delete_if_allowed(asset_id, result, backup_ok)
            originals_deleted = decision.state == DeletionState.DELETED

        return AssetOutcome(
            id=asset_id,
            success=result.success,
            savings=result.savings,
            error=result.error,
            originals_deleted=originals_deleted,
        )

    def _chunk_result(
        self,
        outcomes: list[AssetOutcome],
        done: bool | None = None,
        stopped_by: str | None = None,
        message: str = "",
    ) -> ChunkResult:
        status = self.status()
        if done is None:
            done = status.remaining == 0
        if done and not message:
            message = "所有图片均已处理"

        return ChunkResult(
            done=done,
            results=outcomes,
            processed_batch=len(outcomes),
            total=status.total,
            processed_total=status.processed,
            succeeded_total=status.succeeded,
            skipped_total=status.skipped,
            remaining=status.remaining,
            stopped_by=stopped_by,
            message=message,
        )
