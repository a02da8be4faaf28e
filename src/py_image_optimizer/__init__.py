"""图像 WebP/AVIF 优化库。

把 JPEG / PNG / GIF 转换为更小的 WebP 和 AVIF 派生文件，支持分块可恢复的
存量处理，以及带备份保护的原图删除。
"""

__version__ = "0.1.0"
__author__ = "crper"
__description__ = "图像 WebP/AVIF 优化库，基于 Pillow 和 libvips"

# 核心功能导出
from .exceptions import OptimizerError, ValidationError
from .models.conversion_result import BatchStatus, ChunkResult, ConversionResult
from .models.settings import OptimizerSettings
from .optimizer import ImageOptimizer, create_optimizer
from .storage.repository import ImageRepository, SqliteImageRepository


__all__ = [
    "BatchStatus",
    "ChunkResult",
    "ConversionResult",
    "ImageOptimizer",
    "ImageRepository",
    "OptimizerError",
    "OptimizerSettings",
    "SqliteImageRepository",
    "ValidationError",
    "create_optimizer",
    "get_version",
]


def get_version() -> str:
    """获取版本号。"""
    return __version__
