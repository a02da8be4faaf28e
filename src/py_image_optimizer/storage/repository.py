"""图像资源仓库模块。

ImageRepository 定义核心组件使用的存储接口：主文件路径、尺寸变体、
按资源存放的元数据。SqliteImageRepository 是基于本地 SQLite 的实现，
文件路径以相对 storage_root 的形式保存。
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..models.asset import ImageAsset, Variant
from ..models.constants import ImageFormats, MetadataKeys, get_mime_type
from ..models.conversion_result import ConversionResult
from ..utils.file_helpers import find_image_files, get_image_mime_type
from ..utils.logging_helpers import get_logger


logger = get_logger()


class ImageRepository(ABC):
    """资源存储接口"""

    storage_root: Path

    @abstractmethod
    def get_source_path(self, asset_id: int) -> Path | None:
        """主文件的绝对路径，资源不存在时返回 None"""

    @abstractmethod
    def get_mime(self, asset_id: int) -> str | None: ...

    @abstractmethod
    def list_variants(self, asset_id: int) -> list[Variant]: ...

    @abstractmethod
    def list_unprocessed_ids(self, limit: int) -> list[int]:
        """没有终态结果的资源 ID，按 ID 升序"""

    @abstractmethod
    def get_metadata(self, asset_id: int, key: str) -> Any | None: ...

    @abstractmethod
    def set_metadata(self, asset_id: int, key: str, value: Any) -> None:
        """整体写入一个元数据键，单次写入是原子的"""

    @abstractmethod
    def delete_metadata(self, asset_id: int, key: str) -> None: ...

    @abstractmethod
    def iter_metadata(self, key: str) -> Iterator[tuple[int, Any]]:
        """遍历所有资源的某个元数据键"""

    @abstractmethod
    def count_all(self) -> int:
        """参与处理的资源总数"""

    @abstractmethod
    def add_asset(
        self,
        path: str | Path,
        mime: str | None = None,
        variants: Mapping[str, str | Path] | None = None,
    ) -> int:
        """登记一个新资源，返回其 ID"""

    def get_asset(self, asset_id: int) -> ImageAsset | None:
        source = self.get_source_path(asset_id)
        if source is None:
            return None
        return ImageAsset(
            id=asset_id,
            source_path=source,
            mime_type=self.get_mime(asset_id) or "",
            variants=self.list_variants(asset_id),
        )

    def get_result(self, asset_id: int) -> ConversionResult | None:
        """读取已持久化的转换结果"""
        data = self.get_metadata(asset_id, MetadataKeys.OPTIMIZATION)
        if data is None:
            return None
        try:
            return ConversionResult.from_metadata(data)
        except PydanticValidationError as e:
            logger.warning(f"资源 #{asset_id} 的转换结果无法解析: {e}")
            return None


_SCHEMA = """\
CREATE TABLE IF NOT EXISTS assets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    mime TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS variants (
    asset_id INTEGER NOT NULL REFERENCES assets(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    path TEXT NOT NULL,
    PRIMARY KEY (asset_id, name)
);
CREATE TABLE IF NOT EXISTS asset_meta (
    asset_id INTEGER NOT NULL REFERENCES assets(id) ON DELETE CASCADE,
    meta_key TEXT NOT NULL,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (asset_id, meta_key)
);
CREATE INDEX IF NOT EXISTS idx_asset_meta_key ON asset_meta(meta_key);
"""


class SqliteImageRepository(ImageRepository):
    """基于 SQLite（WAL 模式）的资源仓库

    连接可以跨线程使用（MCP 工具在工作线程中执行），所有语句经由同一把锁串行化。

    Args:
        db_path: 数据库文件路径，":memory:" 表示内存数据库
        storage_root: 规范存储根目录，所有资源文件都位于其下
    """

    def __init__(self, db_path: str | Path, storage_root: str | Path) -> None:
        self.storage_root = Path(storage_root)

        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = str(db_path)
        self._lock = threading.Lock()
        # 自动提交模式，每条元数据写入单独生效
        self._conn = sqlite3.connect(
            self.db_path, isolation_level=None, timeout=5, check_same_thread=False
        )
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA)

    # -- helpers ---------------------------------------------------------------

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> None:
        with self._lock:
            self._conn.execute(sql, params)

    def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> tuple[Any, ...] | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat()

    def _relative(self, path: str | Path) -> str:
        path = Path(path)
        if path.is_absolute():
            try:
                return path.relative_to(self.storage_root).as_posix()
            except ValueError:
                return path.as_posix()
        return path.as_posix()

    def _absolute(self, stored: str) -> Path:
        return self.storage_root / stored

    def _mime_placeholders(self) -> str:
        return ",".join("?" for _ in ImageFormats.SOURCE_MIME_TYPES)

    # -- ingestion -------------------------------------------------------------

    def add_asset(
        self,
        path: str | Path,
        mime: str | None = None,
        variants: Mapping[str, str | Path] | None = None,
    ) -> int:
        """登记一个资源，返回新 ID

        Args:
            path: 主文件路径（绝对路径或相对 storage_root）
            mime: MIME 类型，缺省时从文件内容或扩展名推断
            variants: 尺寸名 → 变体文件路径
        """
        relative = self._relative(path)
        absolute = self._absolute(relative)
        if mime is None:
            mime = get_image_mime_type(absolute) or get_mime_type(
                absolute.suffix.lstrip(".") or "jpeg"
            )

        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO assets (path, mime, created_at) VALUES (?, ?, ?)",
                (relative, mime, self._now_iso()),
            )
            asset_id = int(cursor.lastrowid)

            for name, variant_path in (variants or {}).items():
                self._conn.execute(
                    "INSERT INTO variants (asset_id, name, path) VALUES (?, ?, ?)",
                    (asset_id, name, self._relative(variant_path)),
                )
        return asset_id

    def import_directory(
        self,
        directory: str | Path | None = None,
        recursive: bool = True,
        exclude_dirs: list[str] | None = None,
    ) -> list[int]:
        """登记目录中尚未登记的源图片，返回新资源的 ID

        Args:
            directory: 扫描目录，默认为 storage_root
            recursive: 是否递归子目录
            exclude_dirs: 要排除的目录名列表
        """
        directory = Path(directory) if directory is not None else self.storage_root
        known = {row[0] for row in self._fetchall("SELECT path FROM assets")}

        added: list[int] = []
        for path in find_image_files(directory, recursive, exclude_dirs):
            relative = self._relative(path)
            if relative in known:
                continue
            added.append(self.add_asset(path))
            known.add(relative)

        logger.info(f"从 {directory} 登记了 {len(added)} 个资源")
        return added

    # -- ImageRepository -------------------------------------------------------

    def get_source_path(self, asset_id: int) -> Path | None:
        row = self._fetchone("SELECT path FROM assets WHERE id = ?", (asset_id,))
        return self._absolute(row[0]) if row else None

    def get_mime(self, asset_id: int) -> str | None:
        row = self._fetchone("SELECT mime FROM assets WHERE id = ?", (asset_id,))
        return row[0] if row else None

    def list_variants(self, asset_id: int) -> list[Variant]:
        rows = self._fetchall(
            "SELECT name, path FROM variants WHERE asset_id = ? ORDER BY name",
            (asset_id,),
        )
        return [Variant(name=name, path=self._absolute(path)) for name, path in rows]

    def list_unprocessed_ids(self, limit: int) -> list[int]:
        rows = self._fetchall(
            "SELECT a.id FROM assets a "
            "LEFT JOIN asset_meta m ON a.id = m.asset_id AND m.meta_key = ? "
            f"WHERE a.mime IN ({self._mime_placeholders()}) AND m.asset_id IS NULL "
            "ORDER BY a.id ASC LIMIT ?",
            (MetadataKeys.OPTIMIZATION, *ImageFormats.SOURCE_MIME_TYPES, limit),
        )
        return [int(row[0]) for row in rows]

    def get_metadata(self, asset_id: int, key: str) -> Any | None:
        row = self._fetchone(
            "SELECT value_json FROM asset_meta WHERE asset_id = ? AND meta_key = ?",
            (asset_id, key),
        )
        return json.loads(row[0]) if row else None

    def set_metadata(self, asset_id: int, key: str, value: Any) -> None:
        self._execute(
            "INSERT INTO asset_meta (asset_id, meta_key, value_json, updated_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(asset_id, meta_key) DO UPDATE SET "
            "value_json = excluded.value_json, updated_at = excluded.updated_at",
            (asset_id, key, json.dumps(value, ensure_ascii=False), self._now_iso()),
        )

    def delete_metadata(self, asset_id: int, key: str) -> None:
        self._execute(
            "DELETE FROM asset_meta WHERE asset_id = ? AND meta_key = ?",
            (asset_id, key),
        )

    def iter_metadata(self, key: str) -> Iterator[tuple[int, Any]]:
        rows = self._fetchall(
            "SELECT m.asset_id, m.value_json FROM asset_meta m "
            "JOIN assets a ON a.id = m.asset_id "
            f"WHERE m.meta_key = ? AND a.mime IN ({self._mime_placeholders()}) "
            "ORDER BY m.asset_id ASC",
            (key, *ImageFormats.SOURCE_MIME_TYPES),
        )
        for asset_id, value_json in rows:
            yield int(asset_id), json.loads(value_json)

    def count_all(self) -> int:
        row = self._fetchone(
            f"SELECT COUNT(*) FROM assets WHERE mime IN ({self._mime_placeholders()})",
            tuple(ImageFormats.SOURCE_MIME_TYPES),
        )
        return int(row[0]) if row else 0

    # -- lifecycle -------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SqliteImageRepository":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        del exc_type, exc_val, exc_tb
        self.close()
