"""图像处理相关常量定义。

输出格式、源格式、元数据键等在各模块间共享的常量。
"""

from enum import Enum
from typing import Final


class OutputFormat(str, Enum):
    """派生输出格式"""

    WEBP = "webp"
    AVIF = "avif"

    @property
    def pil_name(self) -> str:
        """Pillow 中的格式名"""
        return self.value.upper()


class FormatSetting(str, Enum):
    """目标格式配置"""

    WEBP = "webp"
    AVIF = "avif"
    BOTH = "both"

    def requested(self) -> list[OutputFormat]:
        """配置对应的输出格式，按固定顺序 webp → avif"""
        match self:
            case FormatSetting.WEBP:
                return [OutputFormat.WEBP]
            case FormatSetting.AVIF:
                return [OutputFormat.AVIF]
            case FormatSetting.BOTH:
                return [OutputFormat.WEBP, OutputFormat.AVIF]


class AnimatedGifPolicy(str, Enum):
    """动图处理策略"""

    SKIP = "skip"
    CONVERT = "convert"


class MetadataKeys:
    """资源元数据键"""

    OPTIMIZATION: Final[str] = "optimization"
    ORIGINALS_DELETED: Final[str] = "originals_deleted"


class ImageFormats:
    """源格式与输出格式管理"""

    ALIASES: Final[dict[str, str]] = {
        "JPG": "JPEG",
    }

    # 参与批量处理的源 MIME 类型
    SOURCE_MIME_TYPES: Final[tuple[str, ...]] = (
        "image/jpeg",
        "image/png",
        "image/gif",
    )

    SOURCE_EXTENSIONS: Final[set[str]] = {".jpg", ".jpeg", ".png", ".gif"}

    OUTPUT_FORMATS: Final[tuple[OutputFormat, ...]] = (
        OutputFormat.WEBP,
        OutputFormat.AVIF,
    )

    MIME_TYPES: Final[dict[str, str]] = {
        "JPEG": "image/jpeg",
        "PNG": "image/png",
        "GIF": "image/gif",
        "WEBP": "image/webp",
        "AVIF": "image/avif",
    }


class ValidationLimits:
    """验证相关限制"""

    MIN_QUALITY: Final[int] = 10
    MAX_QUALITY: Final[int] = 100

    # 错误列表最多保留的条目数
    MAX_ERRORS: Final[int] = 5


# 便捷访问函数
def get_format_alias(format_str: str) -> str:
    """获取格式的标准名称"""
    format_upper = format_str.upper()
    return ImageFormats.ALIASES.get(format_upper, format_upper)


def get_mime_type(format_str: str) -> str:
    """获取格式的MIME类型"""
    standard_format = get_format_alias(format_str)
    return ImageFormats.MIME_TYPES.get(standard_format, f"image/{standard_format.lower()}")
