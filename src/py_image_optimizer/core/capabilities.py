"""服务器能力检测模块。

检测 libvips / Pillow 是否可用、各自支持的输出格式，以及进程的资源上限。
检测只做一次，之后的调用返回缓存结果。
"""

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from ..config import RuntimeDefaults
from ..models.constants import ImageFormats, OutputFormat
from ..utils.logging_helpers import get_logger
from .codecs import Codec, default_codecs


logger = get_logger()


class Capabilities(BaseModel):
    """能力检测结果"""

    backends: dict[str, bool] = Field(description="后端是否可加载")
    backend_formats: dict[str, dict[str, bool]] = Field(
        description="后端 → 格式 → 是否支持"
    )
    formats: dict[str, bool] = Field(description="格式是否至少有一个后端支持")
    memory_limit: int = Field(0, description="内存上限（字节），0 表示未知或不限")
    max_execution_seconds: int = Field(0, description="执行时间上限（秒）")

    def has(self, key: str) -> bool:
        """检查能力标志，如 'webp'、'vips'、'pillow_avif'"""
        if key in self.formats:
            return self.formats[key]
        if key in self.backends:
            return self.backends[key]
        backend, _, fmt = key.partition("_")
        return self.backend_formats.get(backend, {}).get(fmt, False)

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump()


def detect_memory_limit() -> int:
    """从 RLIMIT_AS 读取进程内存上限，未设置时返回 0"""
    try:
        import resource
    except ImportError:
        # 非 POSIX 平台没有 rlimit
        return 0

    soft, _hard = resource.getrlimit(resource.RLIMIT_AS)
    if soft == resource.RLIM_INFINITY or soft <= 0:
        return 0
    return int(soft)


class CapabilityProbe:
    """能力探测器

    Args:
        codecs: 按优先级排列的后端，默认 libvips 在前、Pillow 在后
        runtime: 运行时上限配置
    """

    def __init__(
        self,
        codecs: Sequence[Codec] | None = None,
        runtime: RuntimeDefaults | None = None,
    ) -> None:
        self.codecs: list[Codec] = (
            list(codecs) if codecs is not None else default_codecs()
        )
        self.runtime = runtime or RuntimeDefaults()
        self._capabilities: Capabilities | None = None

    def detect(self) -> Capabilities:
        """检测一次并缓存"""
        if self._capabilities is None:
            self._capabilities = self._detect()
        return self._capabilities

    def _detect(self) -> Capabilities:
        backends: dict[str, bool] = {}
        backend_formats: dict[str, dict[str, bool]] = {}

        for codec in self.codecs:
            available = codec.available()
            backends[codec.name] = available
            backend_formats[codec.name] = {
                fmt.value: available and codec.supports(fmt)
                for fmt in ImageFormats.OUTPUT_FORMATS
            }

        formats = {
            fmt.value: any(flags[fmt.value] for flags in backend_formats.values())
            for fmt in ImageFormats.OUTPUT_FORMATS
        }

        if self.runtime.MEMORY_LIMIT_MB > 0:
            memory_limit = self.runtime.MEMORY_LIMIT_MB * 1024 * 1024
        else:
            memory_limit = detect_memory_limit()

        capabilities = Capabilities(
            backends=backends,
            backend_formats=backend_formats,
            formats=formats,
            memory_limit=memory_limit,
            max_execution_seconds=self.runtime.MAX_EXECUTION_SECONDS,
        )
        logger.debug(f"能力检测结果: {capabilities.as_dict()}")
        return capabilities

    def engine_for(self, fmt: OutputFormat) -> Codec | None:
        """按优先级返回支持该格式的第一个后端"""
        capabilities = self.detect()
        for codec in self.codecs:
            if capabilities.backend_formats[codec.name][fmt.value]:
                return codec
        return None

    def has(self, key: str) -> bool:
        return self.detect().has(key)
