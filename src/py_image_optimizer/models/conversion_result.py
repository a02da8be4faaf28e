"""转换结果模型。

定义单个资源转换、批量分块处理以及整体进度的结果数据结构。
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from humanize import naturalsize
from pydantic import BaseModel, Field


class ConversionStatus(str, Enum):
    """转换状态，所有状态都是终态"""

    OPTIMIZED = "optimized"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    SKIPPED_SMALL = "skipped_small"
    SKIPPED_EXCLUDED = "skipped_excluded"
    SKIPPED_ANIMATED = "skipped_animated"
    MISSING = "missing"
    ERROR_NO_ENGINE = "error_no_engine"

    @property
    def is_success(self) -> bool:
        return self in (ConversionStatus.OPTIMIZED, ConversionStatus.PARTIAL)


class BaseResult(BaseModel):
    """结果基类，包含通用方法"""

    @staticmethod
    def format_size(size_bytes: int) -> str:
        """格式化文件大小为人类可读格式"""
        return naturalsize(size_bytes, binary=True)


class FileConversion(BaseResult):
    """单个文件、单个格式的转换结果"""

    source: Path = Field(description="源文件路径")
    format: str = Field(description="目标格式")
    success: bool = Field(description="是否保留了派生文件")
    output_path: Path | None = Field(None, description="派生文件路径")
    size: int = Field(0, description="派生文件大小（字节）")
    error: str = Field("", description="错误信息")


class ConversionResult(BaseResult):
    """单个资源的转换结果，每次尝试整体覆盖写入"""

    status: ConversionStatus = Field(description="转换状态")
    original_size: int = Field(0, description="主文件原始大小（字节）")
    optimized_size: int = Field(0, description="主文件最佳派生大小（字节）")
    savings: int = Field(0, ge=0, description="主文件和所有尺寸变体合计节省的字节数")
    formats_requested: list[str] = Field(default_factory=list, description="尝试的格式")
    formats_generated: list[str] = Field(
        default_factory=list, description="主文件成功生成的格式"
    )
    all_ok: bool = Field(False, description="所有尝试的转换都成功")
    timestamp: datetime = Field(default_factory=datetime.now, description="处理时间")
    error: str = Field("", description="错误信息")

    @property
    def success(self) -> bool:
        return self.status.is_success

    def get_savings_percent(self) -> float:
        """节省比例（百分比）"""
        if self.original_size == 0:
            return 0.0
        return (self.savings / self.original_size) * 100

    def get_summary(self) -> str:
        """结果摘要"""
        if not self.success:
            return f"{self.status.value}: {self.error}" if self.error else self.status.value

        return (
            f"{self.format_size(self.original_size)} → "
            f"{self.format_size(self.optimized_size)} "
            f"(节省 {self.format_size(self.savings)}, {self.get_savings_percent():.1f}%)"
        )

    def to_metadata(self) -> dict[str, Any]:
        """持久化用的 JSON 兼容字典"""
        return self.model_dump(mode="json")

    @classmethod
    def from_metadata(cls, data: dict[str, Any]) -> "ConversionResult":
        return cls.model_validate(data)


class AssetOutcome(BaseModel):
    """批量处理中单个资源的结果"""

    id: int = Field(description="资源 ID")
    success: bool = Field(description="是否生成了派生文件")
    savings: int = Field(0, description="节省的字节数")
    error: str = Field("", description="错误信息")
    originals_deleted: bool = Field(False, description="是否删除了原图")


class BatchStatus(BaseResult):
    """整体进度统计"""

    total: int = Field(description="资源总数")
    processed: int = Field(description="已有终态结果的资源数")
    succeeded: int = Field(description="optimized 或 partial 的资源数")
    skipped: int = Field(description="已处理但未成功的资源数")
    remaining: int = Field(description="待处理资源数")
    savings_bytes: int = Field(0, description="累计节省字节数")
    avg_percent: float = Field(0.0, description="平均节省比例")

    def get_summary(self) -> str:
        return (
            f"已处理 {self.processed}/{self.total}，成功 {self.succeeded}，"
            f"剩余 {self.remaining}，共节省 {self.format_size(self.savings_bytes)} "
            f"({self.avg_percent:.1f}%)"
        )


class ChunkResult(BaseModel):
    """一次分块处理的结果"""

    done: bool = Field(description="是否全部处理完成")
    results: list[AssetOutcome] = Field(default_factory=list, description="本批结果")
    processed_batch: int = Field(0, description="本批处理数量")
    total: int = Field(0, description="资源总数")
    processed_total: int = Field(0, description="已处理总数")
    succeeded_total: int = Field(0, description="成功总数")
    skipped_total: int = Field(0, description="跳过总数")
    remaining: int = Field(0, description="剩余数量")
    stopped_by: str | None = Field(None, description="提前结束的守卫: time | memory")
    message: str = Field("", description="提示信息")
