"""核心模块包。

编码后端、能力检测和单个资源的转换引擎。
"""

from .capabilities import Capabilities, CapabilityProbe, detect_memory_limit
from .codecs import Codec, PillowCodec, VipsCodec, default_codecs
from .conversion_engine import ConversionEngine


__all__ = [
    "Capabilities",
    "CapabilityProbe",
    "Codec",
    "ConversionEngine",
    "PillowCodec",
    "VipsCodec",
    "default_codecs",
    "detect_memory_limit",
]
