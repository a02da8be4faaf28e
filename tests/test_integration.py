"""集成测试。

测试端到端流程和 MCP 工具。
"""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from py_image_optimizer import ImageOptimizer, create_optimizer
from py_image_optimizer.core.codecs import PillowCodec
from py_image_optimizer.models.constants import MetadataKeys
from py_image_optimizer.models.conversion_result import ConversionStatus
from py_image_optimizer.models.settings import OptimizerSettings
from tests.conftest import create_noisy_jpeg, write_sized_file


class TestEndToEnd:
    """端到端核心测试"""

    def test_complete_workflow(self, make_optimizer, storage_root: Path, backup_root: Path):
        """真实 Pillow 后端：转换 → 删除原图 → 恢复"""
        optimizer = make_optimizer(
            OptimizerSettings(min_size_kb=0, delete_originals=True),
            codecs=[PillowCodec()],
        )
        source = create_noisy_jpeg(storage_root / "2024/photo.jpg")
        thumb = create_noisy_jpeg(storage_root / "2024/photo-150.jpg", 150, 110)
        original = source.read_bytes()
        asset_id = optimizer.repository.add_asset(source, variants={"thumbnail": thumb})

        chunk = optimizer.run_chunk()

        assert chunk.done
        assert chunk.results[0].success
        assert chunk.results[0].originals_deleted
        assert (storage_root / "2024/photo.jpg.webp").exists()
        assert not source.exists()
        assert (backup_root / "2024/photo.jpg").exists()

        assert optimizer.restore_single(asset_id)
        assert source.read_bytes() == original
        assert not (storage_root / "2024/photo.jpg.webp").exists()
        assert optimizer.status().remaining == 1

    def test_optimize_single_unknown_asset(self, make_optimizer):
        assert make_optimizer().optimize_single(42) is None

    def test_optimize_single(self, make_optimizer, storage_root: Path):
        optimizer = make_optimizer()
        asset_id = optimizer.repository.add_asset(
            write_sized_file(storage_root / "a.jpg", 20000), "image/jpeg"
        )

        result = optimizer.optimize_single(asset_id)

        assert result.status == ConversionStatus.OPTIMIZED
        assert optimizer.status().processed == 1
        assert optimizer.recent_activity(1)[0]["level"] == "success"

    def test_create_optimizer_validates(self, tmp_path: Path):
        from py_image_optimizer import ValidationError

        with pytest.raises(ValidationError):
            create_optimizer(tmp_path / "db.sqlite", tmp_path / "uploads", quality=0)

    def test_expire_backups(self, make_optimizer, storage_root: Path):
        optimizer = make_optimizer(OptimizerSettings(backup_retention_days=30))
        optimizer.backups.backup(write_sized_file(storage_root / "a.jpg", 6000))

        assert optimizer.expire_backups() == 0
        assert optimizer.backup_size() == 6000

    def test_optimize_single_never_deletes(
        self, make_optimizer, storage_root: Path, backup_root: Path
    ):
        optimizer = make_optimizer(
            OptimizerSettings(delete_originals=True, keep_backups=True)
        )
        source = write_sized_file(storage_root / "a.jpg", 20000)
        asset_id = optimizer.repository.add_asset(source, "image/jpeg")

        result = optimizer.optimize_single(asset_id)

        assert result.status == ConversionStatus.OPTIMIZED
        assert source.exists()
        assert (storage_root / "a.jpg.webp").exists()
        assert not (backup_root / "a.jpg").exists()
        assert not optimizer.repository.get_metadata(
            asset_id, MetadataKeys.ORIGINALS_DELETED
        )

    def test_status_from_another_thread(self, make_optimizer, storage_root: Path):
        optimizer = make_optimizer()
        for i in range(3):
            optimizer.repository.add_asset(
                write_sized_file(storage_root / f"{i}.jpg", 20000), "image/jpeg"
            )

        with ThreadPoolExecutor(max_workers=2) as pool:
            chunk = pool.submit(optimizer.run_chunk).result()
            statuses = list(pool.map(lambda _: optimizer.status(), range(4)))

        assert chunk.done
        assert all(status.succeeded == 3 for status in statuses)


class TestIngest:
    """新图片登记后自动优化"""

    def test_ingest_optimizes_immediately(self, make_optimizer, storage_root: Path):
        optimizer = make_optimizer()
        source = write_sized_file(storage_root / "2024/new.jpg", 20000)

        asset_id, result = optimizer.ingest(source)

        assert result.status == ConversionStatus.OPTIMIZED
        assert (storage_root / "2024/new.jpg.webp").exists()
        assert optimizer.repository.get_result(asset_id).savings == result.savings
        assert optimizer.status().remaining == 0

    def test_ingest_with_auto_optimize_off(self, make_optimizer, storage_root: Path):
        optimizer = make_optimizer(OptimizerSettings(auto_optimize=False))

        asset_id, result = optimizer.ingest(
            write_sized_file(storage_root / "a.jpg", 20000)
        )

        assert result is None
        assert optimizer.repository.list_unprocessed_ids(10) == [asset_id]

    @pytest.mark.parametrize(
        "name, size, mime",
        [
            ("small.jpg", 3000, "image/jpeg"),
            ("already.webp", 20000, "image/webp"),
        ],
    )
    def test_ingest_leaves_ineligible_files(
        self, make_optimizer, storage_root: Path, name: str, size: int, mime: str
    ):
        optimizer = make_optimizer()

        asset_id, result = optimizer.ingest(
            write_sized_file(storage_root / name, size), mime
        )

        assert result is None
        assert optimizer.repository.get_result(asset_id) is None
        assert not (storage_root / f"{name}.webp").exists()

    def test_ingest_converts_variants(self, make_optimizer, storage_root: Path):
        optimizer = make_optimizer()
        source = write_sized_file(storage_root / "a.jpg", 20000)
        thumb = write_sized_file(storage_root / "a-150.jpg", 8000)

        _, result = optimizer.ingest(source, "image/jpeg", {"thumbnail": thumb})

        assert result.savings == 10000 + 4000
        assert (storage_root / "a-150.jpg.webp").exists()


def call_tool(name: str, arguments: dict | None = None) -> dict:
    """通过 MCP 客户端调用工具，返回解析后的 JSON 结果"""
    from fastmcp import Client

    from py_image_optimizer.mcp_server import mcp

    async def run() -> dict:
        async with Client(mcp) as client:
            result = await client.call_tool(name, arguments or {})
            return json.loads(result.content[0].text)

    return asyncio.run(run())


class TestMCPServer:
    """MCP服务器功能测试"""

    @pytest.fixture
    def server(self, make_optimizer):
        from py_image_optimizer import mcp_server

        optimizer = make_optimizer()
        mcp_server.set_optimizer(optimizer)
        yield optimizer
        mcp_server.set_optimizer(None)

    def test_mcp_core_tools(self):
        """测试 MCP 工具注册"""
        from fastmcp import Client

        from py_image_optimizer.mcp_server import mcp

        async def list_names() -> set[str]:
            async with Client(mcp) as client:
                return {tool.name for tool in await client.list_tools()}

        names = asyncio.run(list_names())

        assert {
            "optimization_status",
            "run_chunk",
            "optimize_single",
            "restore_single",
            "server_capabilities",
            "validate_settings",
        } <= names

    def test_status_and_run_chunk(self, server, storage_root: Path):
        server.repository.add_asset(
            write_sized_file(storage_root / "a.jpg", 20000), "image/jpeg"
        )

        before = call_tool("optimization_status")
        chunk = call_tool("run_chunk", {"batch_size": 5})
        after = call_tool("optimization_status")

        assert before["success"]
        assert before["status"]["remaining"] == 1
        assert chunk["success"]
        assert chunk["done"]
        assert after["status"]["succeeded"] == 1

    def test_optimize_and_restore(self, server, storage_root: Path):
        asset_id = server.repository.add_asset(
            write_sized_file(storage_root / "a.jpg", 20000), "image/jpeg"
        )

        optimized = call_tool("optimize_single", {"asset_id": asset_id})
        restored = call_tool("restore_single", {"asset_id": asset_id})
        missing = call_tool("optimize_single", {"asset_id": 999})

        assert optimized["success"]
        assert optimized["result"]["status"] == "optimized"
        assert not optimized["originals_deleted"]
        # 没有删除原图也就没有备份
        assert not restored["success"]
        assert restored["error_type"] == "file"
        assert not missing["success"]
        assert server.repository.get_metadata(
            asset_id, MetadataKeys.OPTIMIZATION
        ) is not None

    def test_capabilities_and_settings(self, server):
        caps = call_tool("server_capabilities")
        invalid = call_tool("validate_settings", {"quality": 200})
        valid = call_tool("validate_settings", {"format": "both", "quality": 70})

        assert caps["capabilities"]["formats"]["webp"]
        assert invalid["error_type"] == "validation"
        assert valid["settings"]["format"] == "both"


def test_package_exports():
    import py_image_optimizer

    assert py_image_optimizer.get_version() == "0.1.0"
    assert py_image_optimizer.ImageOptimizer is ImageOptimizer
