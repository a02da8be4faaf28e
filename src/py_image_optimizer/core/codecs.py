"""编码后端模块。

两个可互换的编码后端：
- VipsCodec：基于 libvips（pyvips），功能完整，优先使用
- PillowCodec：基于 Pillow，轻量后备

每个后端按格式报告是否可用，并把单个源文件编码为 `<source>.<format>`。
"""

import importlib.util
import logging
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from types import ModuleType
from typing import Any

from PIL import Image, ImageOps

from ..config import ConversionDefaults
from ..exceptions import UnsupportedFormatError, handle_codec_errors
from ..models.constants import OutputFormat


logger = logging.getLogger(__name__)


class Codec(ABC):
    """编码后端基类"""

    name: str = "codec"

    @abstractmethod
    def available(self) -> bool:
        """后端库是否可加载"""

    @abstractmethod
    def supports(self, fmt: OutputFormat) -> bool:
        """后端是否能编码该格式"""

    @abstractmethod
    def encode(
        self,
        source: Path,
        dest: Path,
        fmt: OutputFormat,
        quality: int,
        animated: bool = False,
    ) -> bool:
        """把 source 编码为 dest，返回是否写出了文件。失败时抛出 OptimizerError。"""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class PillowCodec(Codec):
    """Pillow 编码后端"""

    name = "pillow"

    def __init__(self, defaults: ConversionDefaults | None = None) -> None:
        self.defaults = defaults or ConversionDefaults()
        self._support: dict[OutputFormat, bool] = {}

    def available(self) -> bool:
        return True

    def supports(self, fmt: OutputFormat) -> bool:
        if fmt not in self._support:
            self._support[fmt] = self._check_format_support(fmt.pil_name)
        return self._support[fmt]

    def _check_format_support(self, format_name: str) -> bool:
        """检查特定格式是否支持"""
        try:
            supported_formats = {
                f.upper() for f in Image.registered_extensions().values() if f
            }
            if format_name not in supported_formats:
                return False

            # 写入并重新打开一个 1x1 测试图像，确认编解码器都可用
            test_img = Image.new("RGB", (1, 1), color="red")
            buffer = BytesIO()
            test_img.save(buffer, format=format_name)
            buffer.seek(0)
            with Image.open(buffer) as reopened:
                reopened.load()
            return True
        except Exception as e:
            logger.debug(f"Pillow 不支持格式 {format_name}: {e}")
            return False

    @handle_codec_errors("Pillow 编码")
    def encode(
        self,
        source: Path,
        dest: Path,
        fmt: OutputFormat,
        quality: int,
        animated: bool = False,
    ) -> bool:
        if not self.supports(fmt):
            raise UnsupportedFormatError(f"Pillow 不支持 {fmt.value}", source)

        params = get_save_parameters(fmt, quality, self.defaults)

        with Image.open(source) as img:
            if animated and getattr(img, "n_frames", 1) > 1:
                # 动图保留所有帧
                img.save(dest, format=fmt.pil_name, save_all=True, **params)
            else:
                prepared = prepare_for_format(ImageOps.exif_transpose(img))
                prepared.save(dest, format=fmt.pil_name, **params)

        return dest.exists()


class VipsCodec(Codec):
    """libvips 编码后端

    pyvips 依赖系统安装的 libvips，加载失败时后端视为不可用。
    """

    name = "vips"

    def __init__(self) -> None:
        self._module: ModuleType | None = None
        self._loaded = False
        self._support: dict[OutputFormat, bool] = {}

    def _load(self) -> ModuleType | None:
        if not self._loaded:
            self._loaded = True
            if importlib.util.find_spec("pyvips") is None:
                logger.debug("未安装 pyvips，libvips 后端不可用")
                return None
            try:
                import pyvips  # type: ignore[import-untyped]

                self._module = pyvips
            except (ImportError, OSError) as e:
                logger.debug(f"加载 libvips 失败: {e}")
        return self._module

    def available(self) -> bool:
        return self._load() is not None

    def supports(self, fmt: OutputFormat) -> bool:
        if fmt not in self._support:
            self._support[fmt] = self._check_format_support(fmt)
        return self._support[fmt]

    def _check_format_support(self, fmt: OutputFormat) -> bool:
        pyvips = self._load()
        if pyvips is None:
            return False
        try:
            if f".{fmt.value}" not in pyvips.get_suffixes():
                return False
            pyvips.Image.black(1, 1).write_to_buffer(f".{fmt.value}")
            return True
        except Exception as e:
            logger.debug(f"libvips 不支持格式 {fmt.value}: {e}")
            return False

    @handle_codec_errors("libvips 编码")
    def encode(
        self,
        source: Path,
        dest: Path,
        fmt: OutputFormat,
        quality: int,
        animated: bool = False,
    ) -> bool:
        pyvips = self._load()
        if pyvips is None or not self.supports(fmt):
            raise UnsupportedFormatError(f"libvips 不支持 {fmt.value}", source)

        if animated:
            # n=-1 读取所有帧，仅 gif/webp 加载器支持
            image = pyvips.Image.new_from_file(str(source), n=-1)
        else:
            image = pyvips.Image.new_from_file(str(source)).autorot()

        image.write_to_file(str(dest), Q=quality, strip=True)
        return dest.exists()


def default_codecs() -> list[Codec]:
    """按优先级排列的默认后端：完整功能在前，轻量后备在后"""
    return [VipsCodec(), PillowCodec()]


def prepare_for_format(img: Image.Image) -> Image.Image:
    """为 WebP / AVIF 准备图片，两者都支持 RGB 和 RGBA"""
    if img.mode == "P":
        # 调色板模式，检查是否有透明度
        if "transparency" in img.info:
            return img.convert("RGBA")
        return img.convert("RGB")
    if img.mode in ("LA", "PA"):
        return img.convert("RGBA")
    if img.mode in ("L", "1", "CMYK", "I", "I;16", "F"):
        return img.convert("RGB")

    # RGB和RGBA保持不变
    return img


def get_save_parameters(
    fmt: OutputFormat, quality: int, defaults: ConversionDefaults
) -> dict[str, Any]:
    """获取 Pillow 保存参数"""
    match fmt:
        case OutputFormat.WEBP:
            return get_webp_params(quality, defaults)
        case OutputFormat.AVIF:
            return get_avif_params(quality, defaults)


def get_webp_params(quality: int, defaults: ConversionDefaults) -> dict[str, Any]:
    """获取WebP压缩参数

    - method：0=快速，6=最慢但最佳压缩
    - alpha_quality：透明通道质量，高质量时保持无损
    """
    params: dict[str, Any] = {
        "quality": quality,
        "method": defaults.WEBP_METHOD,
    }
    if quality >= 85:
        params["alpha_quality"] = 100
    return params


def get_avif_params(quality: int, defaults: ConversionDefaults) -> dict[str, Any]:
    """获取AVIF压缩参数

    speed：0=最慢最佳，10=最快
    """
    return {
        "quality": quality,
        "speed": defaults.AVIF_SPEED,
    }
