"""转换引擎测试。

覆盖短路状态、按大小丢弃、排除规则、错误汇总和幂等性。
"""

from pathlib import Path

from py_image_optimizer.core.capabilities import CapabilityProbe
from py_image_optimizer.core.codecs import PillowCodec
from py_image_optimizer.core.conversion_engine import ConversionEngine
from py_image_optimizer.models.constants import MetadataKeys, OutputFormat
from py_image_optimizer.models.conversion_result import ConversionStatus
from py_image_optimizer.models.settings import OptimizerSettings
from py_image_optimizer.storage.repository import SqliteImageRepository
from tests.conftest import (
    FakeCodec,
    create_animated_gif,
    create_noisy_jpeg,
    write_sized_file,
)


def make_engine(
    repository: SqliteImageRepository,
    codec: FakeCodec | None = None,
    **settings,
) -> ConversionEngine:
    probe = CapabilityProbe([codec or FakeCodec()])
    return ConversionEngine(probe, repository, OptimizerSettings(**settings))


class TestScenarios:
    """典型场景"""

    def test_optimize_webp(self, repository: SqliteImageRepository, storage_root: Path):
        """40960 字节的 JPEG 转换为更小的 webp"""
        source = write_sized_file(storage_root / "2024/photo.jpg", 40960)
        asset_id = repository.add_asset(source, "image/jpeg")
        engine = make_engine(repository, format="webp", quality=82, min_size_kb=5)

        result = engine.optimize_asset(asset_id)

        derived = storage_root / "2024/photo.jpg.webp"
        assert result.status == ConversionStatus.OPTIMIZED
        assert result.all_ok
        assert derived.exists()
        assert derived.stat().st_size < 40960
        assert result.optimized_size == derived.stat().st_size
        assert result.savings == 40960 - result.optimized_size
        assert result.formats_generated == ["webp"]

    def test_skip_small(self, repository: SqliteImageRepository, storage_root: Path):
        """3072 字节的文件低于 5KB 阈值被跳过"""
        source = write_sized_file(storage_root / "tiny.jpg", 3072)
        asset_id = repository.add_asset(source, "image/jpeg")
        codec = FakeCodec()
        engine = make_engine(repository, codec, min_size_kb=5)

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.SKIPPED_SMALL
        assert result.all_ok
        assert not (storage_root / "tiny.jpg.webp").exists()
        assert codec.calls == []

    def test_real_pillow_conversion(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        """使用真实 Pillow 后端转换"""
        source = create_noisy_jpeg(storage_root / "noisy.jpg")
        asset_id = repository.add_asset(source)
        probe = CapabilityProbe([PillowCodec()])
        engine = ConversionEngine(probe, repository, OptimizerSettings(min_size_kb=0))

        result = engine.optimize_asset(asset_id)

        assert result.success
        assert (storage_root / "noisy.jpg.webp").exists()
        assert result.savings > 0


class TestShortCircuit:
    """短路终态"""

    def test_missing_source(self, repository: SqliteImageRepository, storage_root: Path):
        asset_id = repository.add_asset(storage_root / "gone.jpg", "image/jpeg")
        result = make_engine(repository).optimize_asset(asset_id)

        assert result.status == ConversionStatus.MISSING
        assert not result.all_ok
        assert repository.get_result(asset_id).status == ConversionStatus.MISSING

    def test_excluded_folder(self, repository: SqliteImageRepository, storage_root: Path):
        source = write_sized_file(storage_root / "private/a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")
        engine = make_engine(repository, exclude_folders="private\n\n  drafts ")

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.SKIPPED_EXCLUDED
        assert result.all_ok

    def test_excluded_pattern(self, repository: SqliteImageRepository, storage_root: Path):
        source = write_sized_file(storage_root / "logo-small.png", 20000)
        asset_id = repository.add_asset(source, "image/png")
        engine = make_engine(repository, exclude_patterns=["logo-*"])

        assert engine.optimize_asset(asset_id).status == ConversionStatus.SKIPPED_EXCLUDED

    def test_animated_gif_skipped(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        source = create_animated_gif(storage_root / "anim.gif")
        asset_id = repository.add_asset(source, "image/gif")
        engine = make_engine(repository, min_size_kb=0)

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.SKIPPED_ANIMATED
        assert result.all_ok

    def test_animated_gif_converted(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        source = create_animated_gif(storage_root / "anim.gif")
        asset_id = repository.add_asset(source, "image/gif")
        engine = make_engine(repository, min_size_kb=0, animated_gif_policy="convert")

        assert engine.optimize_asset(asset_id).status == ConversionStatus.OPTIMIZED

    def test_no_engine(self, repository: SqliteImageRepository, storage_root: Path):
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")
        engine = make_engine(repository, FakeCodec(formats=set()))

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.ERROR_NO_ENGINE
        assert not result.all_ok
        assert "No supported output format" in result.error


class TestConversion:
    """格式转换与结果汇总"""

    def test_discard_if_larger(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        """派生文件不小于原文件时被删除，并计为失败"""
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")
        codec = FakeCodec(ratios={OutputFormat.WEBP: 0.6, OutputFormat.AVIF: 1.2})
        engine = make_engine(repository, codec, format="both")

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.PARTIAL
        assert not result.all_ok
        assert result.formats_requested == ["webp", "avif"]
        assert result.formats_generated == ["webp"]
        assert not (storage_root / "a.jpg.avif").exists()
        assert (storage_root / "a.jpg.webp").exists()
        assert "avif" in result.error

    def test_nothing_generated_is_skipped(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")
        engine = make_engine(repository, FakeCodec(ratios={OutputFormat.WEBP: 1.0}))

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.SKIPPED
        assert result.optimized_size == result.original_size
        assert result.savings == 0

    def test_codec_failure_folded(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        """单个格式编码异常不影响其他格式，半成品被清理"""
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")
        codec = FakeCodec(fail={OutputFormat.AVIF})
        engine = make_engine(repository, codec, format="both")

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.PARTIAL
        assert not (storage_root / "a.jpg.avif").exists()
        assert result.error.startswith("avif:")

    def test_unsupported_format_falls_back_to_webp(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")
        engine = make_engine(
            repository, FakeCodec(formats={OutputFormat.WEBP}), format="avif"
        )

        result = engine.optimize_asset(asset_id)

        assert result.formats_requested == ["webp"]
        assert result.status == ConversionStatus.OPTIMIZED

    def test_variants_counted(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        """节省量包含所有尺寸变体，缺失的变体被忽略"""
        source = write_sized_file(storage_root / "a.jpg", 20000)
        thumb = write_sized_file(storage_root / "a-150x150.jpg", 8000)
        asset_id = repository.add_asset(
            source,
            "image/jpeg",
            variants={"thumbnail": thumb, "large": storage_root / "a-1024.jpg"},
        )
        engine = make_engine(repository, FakeCodec(ratios={OutputFormat.WEBP: 0.5}))

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.OPTIMIZED
        assert (storage_root / "a-150x150.jpg.webp").exists()
        assert result.savings == 10000 + 4000

    def test_error_list_truncated(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        source = write_sized_file(storage_root / "a.jpg", 20000)
        variants = {
            f"size{i}": write_sized_file(storage_root / f"a-{i}.jpg", 10000)
            for i in range(4)
        }
        asset_id = repository.add_asset(source, "image/jpeg", variants=variants)
        engine = make_engine(
            repository, FakeCodec(fail={OutputFormat.WEBP, OutputFormat.AVIF}), format="both"
        )

        result = engine.optimize_asset(asset_id)

        assert result.status == ConversionStatus.SKIPPED
        assert len(result.error.split(" | ")) == 5

    def test_result_persisted(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")

        result = make_engine(repository).optimize_asset(asset_id)

        stored = repository.get_metadata(asset_id, MetadataKeys.OPTIMIZATION)
        assert stored["status"] == "optimized"
        assert repository.get_result(asset_id).savings == result.savings
        assert repository.list_unprocessed_ids(10) == []

    def test_idempotent_savings(
        self, repository: SqliteImageRepository, storage_root: Path
    ):
        """重复优化不会减少已记录的节省量"""
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = repository.add_asset(source, "image/jpeg")
        engine = make_engine(repository)

        first = engine.optimize_asset(asset_id)
        second = engine.optimize_asset(asset_id)

        assert second.savings >= first.savings
        assert repository.get_result(asset_id).savings >= first.savings
