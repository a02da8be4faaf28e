"""数据模型包。

定义资源、配置与转换结果相关的数据结构。
"""

from .asset import ImageAsset, Variant
from .constants import (
    AnimatedGifPolicy,
    FormatSetting,
    ImageFormats,
    MetadataKeys,
    OutputFormat,
    ValidationLimits,
    get_format_alias,
    get_mime_type,
)
from .conversion_result import (
    AssetOutcome,
    BatchStatus,
    ChunkResult,
    ConversionResult,
    ConversionStatus,
    FileConversion,
)
from .settings import OptimizerSettings


__all__ = [
    "AnimatedGifPolicy",
    "AssetOutcome",
    "BatchStatus",
    "ChunkResult",
    "ConversionResult",
    "ConversionStatus",
    "FileConversion",
    "FormatSetting",
    "ImageAsset",
    "ImageFormats",
    "MetadataKeys",
    "OptimizerSettings",
    "OutputFormat",
    "ValidationLimits",
    "Variant",
    "get_format_alias",
    "get_mime_type",
]
