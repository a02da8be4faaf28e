"""转换引擎模块。

把一个资源（主文件和所有尺寸变体）转换为配置的派生格式。

每个资源无论结果如何都会写入一个终态 ConversionResult，
批量处理据此判断资源是否还需要处理。派生文件只有在严格小于源文件时才会保留。
"""

from fnmatch import fnmatchcase
from pathlib import Path

from PIL import Image

from ..exceptions import ErrorHandler
from ..models.asset import Variant
from ..models.constants import AnimatedGifPolicy, MetadataKeys, OutputFormat
from ..models.conversion_result import ConversionResult, ConversionStatus, FileConversion
from ..models.settings import OptimizerSettings
from ..storage.repository import ImageRepository
from ..utils.activity_log import ActivityLog, LogSink
from ..utils.file_helpers import derived_path, file_size, remove_file
from ..utils.logging_helpers import get_logger
from ..utils.message_formatter import MessageFormatter
from .capabilities import CapabilityProbe


logger = get_logger()


class ConversionEngine:
    """资源转换引擎

    Args:
        probe: 能力探测器，决定每个格式使用的后端
        repository: 资源仓库
        settings: 优化配置
        activity_log: 活动日志
    """

    def __init__(
        self,
        probe: CapabilityProbe,
        repository: ImageRepository,
        settings: OptimizerSettings,
        activity_log: LogSink | None = None,
    ) -> None:
        self.probe = probe
        self.repository = repository
        self.settings = settings
        self.activity_log = activity_log or ActivityLog()

    # ------------------------------------------------------------------ public

    def optimize_asset(
        self, asset_id: int, variants: list[Variant] | None = None
    ) -> ConversionResult:
        """优化单个资源的所有尺寸并持久化结果

        Args:
            asset_id: 资源 ID
            variants: 预先取得的尺寸变体，缺省时从仓库读取

        Returns:
            ConversionResult: 本次尝试的终态结果
        """
        result = self._optimize(asset_id, variants)
        self._mark_processed(asset_id, result)

        if result.success:
            self.activity_log.record(
                "success",
                MessageFormatter.savings(asset_id, result.savings),
                {"formats": result.formats_requested},
            )
        elif result.status == ConversionStatus.SKIPPED:
            self.activity_log.record(
                "info", f"跳过资源 #{asset_id}", {"reason": result.error}
            )
        return result

    def convert_file(
        self,
        source: Path,
        fmt: OutputFormat,
        quality: int,
        animated: bool = False,
    ) -> FileConversion:
        """把单个文件转换为一种格式，输出为 `<source>.<format>`

        派生文件不小于源文件时被删除，并视为该格式转换失败。
        """
        dest = derived_path(source, fmt.value)

        def failed(error: str) -> FileConversion:
            return FileConversion(
                source=source, format=fmt.value, success=False, error=error
            )

        codec = self.probe.engine_for(fmt)
        if codec is None:
            return failed(f"No engine for {fmt.value}")

        try:
            written = codec.encode(source, dest, fmt, quality, animated=animated)
            if not written or not dest.exists():
                return failed("转换没有产生输出")

            new_size = dest.stat().st_size
            original_size = source.stat().st_size
        except Exception as e:
            # 清理编码失败时可能残留的半成品
            remove_file(dest)
            logger.debug(MessageFormatter.format_error(f"{codec.name} 编码", source, e))
            return failed(str(e))

        if new_size >= original_size:
            remove_file(dest)
            return failed("派生文件不小于原文件，已丢弃")

        return FileConversion(
            source=source,
            format=fmt.value,
            success=True,
            output_path=dest,
            size=new_size,
        )

    def resolve_formats(self) -> list[OutputFormat]:
        """请求的格式与服务器支持的格式取交集；都不支持时退回 webp"""
        formats = [
            fmt for fmt in self.settings.requested_formats if self.probe.has(fmt.value)
        ]
        if not formats and self.probe.has(OutputFormat.WEBP.value):
            formats = [OutputFormat.WEBP]
        return formats

    def is_excluded(self, path: Path) -> bool:
        """路径包含排除目录子串，或文件名匹配排除通配符"""
        path_str = str(path)
        if any(folder in path_str for folder in self.settings.exclude_folders):
            return True
        return any(
            fnmatchcase(path.name, pattern) for pattern in self.settings.exclude_patterns
        )

    @staticmethod
    def is_animated_gif(path: Path) -> bool:
        try:
            with Image.open(path) as img:
                return bool(getattr(img, "is_animated", False))
        except Exception as e:
            logger.debug(MessageFormatter.operation_failed("读取 GIF 帧数", path, e))
            return False

    # ----------------------------------------------------------------- private

    def _optimize(
        self, asset_id: int, variants: list[Variant] | None
    ) -> ConversionResult:
        source = self.repository.get_source_path(asset_id)
        original_size = file_size(source) if source is not None else None

        if source is None or original_size is None or not source.is_file():
            self.activity_log.record("error", MessageFormatter.asset_file_not_found(asset_id))
            return ErrorHandler.create_terminal_result(
                ConversionStatus.MISSING, "File not found"
            )

        min_size = self.settings.min_size_bytes
        if min_size > 0 and original_size < min_size:
            self.activity_log.record("info", f"跳过小文件 (#{asset_id})")
            return ErrorHandler.create_terminal_result(
                ConversionStatus.SKIPPED_SMALL,
                "Skipped (under size threshold)",
                original_size,
                all_ok=True,
            )

        if self.is_excluded(source):
            self.activity_log.record("info", f"跳过已排除的资源 #{asset_id}")
            return ErrorHandler.create_terminal_result(
                ConversionStatus.SKIPPED_EXCLUDED, "Excluded", original_size, all_ok=True
            )

        animated = False
        if self.repository.get_mime(asset_id) == "image/gif":
            animated = self.is_animated_gif(source)
            if animated and self.settings.animated_gif_policy == AnimatedGifPolicy.SKIP:
                self.activity_log.record("info", f"跳过动图 #{asset_id}")
                return ErrorHandler.create_terminal_result(
                    ConversionStatus.SKIPPED_ANIMATED,
                    "Animated GIF skipped",
                    original_size,
                    all_ok=True,
                )

        formats = self.resolve_formats()
        if not formats:
            error = "No supported output format available on this server"
            self.activity_log.record("error", f"{error} (#{asset_id})")
            return ErrorHandler.create_terminal_result(
                ConversionStatus.ERROR_NO_ENGINE, error, original_size
            )

        if variants is None:
            variants = self.repository.list_variants(asset_id)

        return self._convert_all(source, original_size, variants, formats, animated)

    def _convert_all(
        self,
        source: Path,
        original_size: int,
        variants: list[Variant],
        formats: list[OutputFormat],
        animated: bool,
    ) -> ConversionResult:
        quality = self.settings.quality
        all_ok = True
        total_saved = 0
        errors: list[str] = []

        # 主文件
        generated: dict[str, int] = {}
        for fmt in formats:
            outcome = self.convert_file(source, fmt, quality, animated)
            if outcome.success:
                generated[fmt.value] = outcome.size
            else:
                all_ok = False
                errors.append(MessageFormatter.conversion_failed(fmt.value, outcome.error))
                self.activity_log.record(
                    "warning",
                    f"转换失败 ({fmt.value}): {source}",
                    {"error": outcome.error},
                )

        best_main = min(generated.values()) if generated else 0
        if 0 < best_main < original_size:
            total_saved += original_size - best_main
        any_generated = bool(generated)

        # 尺寸变体
        for variant in variants:
            variant_size = file_size(variant.path)
            if variant_size is None:
                continue

            variant_generated: dict[str, int] = {}
            for fmt in formats:
                outcome = self.convert_file(variant.path, fmt, quality, animated)
                if outcome.success:
                    variant_generated[fmt.value] = outcome.size
                else:
                    all_ok = False
                    errors.append(
                        MessageFormatter.conversion_failed(
                            fmt.value, outcome.error, variant.name
                        )
                    )

            if variant_generated:
                any_generated = True
                best_variant = min(variant_generated.values())
                if best_variant < variant_size:
                    total_saved += variant_size - best_variant

        if not any_generated:
            status = ConversionStatus.SKIPPED
        elif all_ok:
            status = ConversionStatus.OPTIMIZED
        else:
            status = ConversionStatus.PARTIAL

        return ConversionResult(
            status=status,
            error=ErrorHandler.join_errors(errors),
            original_size=original_size,
            optimized_size=best_main if best_main > 0 else original_size,
            savings=max(0, total_saved),
            formats_requested=[fmt.value for fmt in formats],
            formats_generated=list(generated),
            all_ok=all_ok,
        )

    def _mark_processed(self, asset_id: int, result: ConversionResult) -> None:
        """写入终态结果，批量处理不会再次选中该资源"""
        self.repository.set_metadata(
            asset_id, MetadataKeys.OPTIMIZATION, result.to_metadata()
        )
