"""备份（隔离区）模块。

把原图按其在规范存储中的相对路径镜像到隔离目录。备份存在与否
就是备份记录本身，没有额外的元数据。删除原图前必须先备份，
restore 把镜像拷回原位并撤销本次优化，expire 按文件修改时间清理过期备份。
"""

import shutil
import time
from pathlib import Path

from ..config import ProcessingDefaults
from ..exceptions import ErrorHandler
from ..models.constants import ImageFormats, MetadataKeys
from ..storage.repository import ImageRepository
from ..utils.activity_log import ActivityLog, LogSink
from ..utils.file_helpers import derived_paths, remove_file
from ..utils.logging_helpers import get_logger
from ..utils.message_formatter import MessageFormatter


logger = get_logger()

SECONDS_PER_DAY = 24 * 60 * 60


class BackupStore:
    """原图备份存储

    Args:
        repository: 资源仓库，提供 storage_root 和资源路径
        backup_root: 隔离目录，默认是 storage_root 旁边的 image-optimizer-backups
        activity_log: 活动日志
    """

    def __init__(
        self,
        repository: ImageRepository,
        backup_root: str | Path | None = None,
        activity_log: LogSink | None = None,
    ) -> None:
        self.repository = repository
        if backup_root is None:
            backup_root = (
                repository.storage_root.parent / ProcessingDefaults.BACKUP_DIR_NAME
            )
        self.backup_root = Path(backup_root)
        self.activity_log = activity_log or ActivityLog()

    def mirror_path(self, path: str | Path) -> Path | None:
        """文件在隔离目录中的镜像路径，文件不在存储根目录下时返回 None"""
        try:
            relative = Path(path).relative_to(self.repository.storage_root)
        except ValueError:
            return None
        return self.backup_root / relative

    def backup(self, path: str | Path) -> bool:
        """备份单个文件，已有备份时覆盖"""
        path = Path(path)
        if not path.is_file():
            logger.warning(MessageFormatter.file_not_found(path))
            return False

        target = self.mirror_path(path)
        if target is None:
            logger.warning(f"文件不在存储目录下，无法备份: {path}")
            return False

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # copyfile 不保留 mtime，过期清理以备份时间为准
            shutil.copyfile(path, target)
        except OSError as e:
            ErrorHandler._log_error("备份", path, e)
            return False
        return True

    def backup_asset(self, asset_id: int) -> bool:
        """备份主文件和所有存在的尺寸变体，全部成功才返回 True"""
        source = self.repository.get_source_path(asset_id)
        if source is None:
            return False

        all_ok = self.backup(source)
        for variant in self.repository.list_variants(asset_id):
            if variant.path.is_file() and not self.backup(variant.path):
                all_ok = False

        if not all_ok:
            self.activity_log.record("error", f"资源 #{asset_id} 备份不完整")
        return all_ok

    def has_backup(self, asset_id: int) -> bool:
        source = self.repository.get_source_path(asset_id)
        if source is None:
            return False
        target = self.mirror_path(source)
        return target is not None and target.is_file()

    def restore(self, asset_id: int) -> bool:
        """从备份恢复原图，删除派生文件并清除优化记录

        主文件没有备份或无法拷回时返回 False，不做任何其它改动。
        """
        source = self.repository.get_source_path(asset_id)
        if source is None:
            return False

        main_backup = self.mirror_path(source)
        if main_backup is None or not main_backup.is_file():
            self.activity_log.record("error", f"资源 #{asset_id} 没有可用的备份")
            return False

        try:
            source.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(main_backup, source)
        except OSError as e:
            ErrorHandler._log_error("恢复", source, e)
            return False

        restored = [main_backup]
        variants = self.repository.list_variants(asset_id)
        for variant in variants:
            variant_backup = self.mirror_path(variant.path)
            if variant_backup is None or not variant_backup.is_file():
                continue
            try:
                variant.path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(variant_backup, variant.path)
                restored.append(variant_backup)
            except OSError as e:
                logger.warning(MessageFormatter.operation_failed("恢复", variant.path, e))

        formats = ImageFormats.OUTPUT_FORMATS
        for path in [source, *(variant.path for variant in variants)]:
            for derived in derived_paths(path, (fmt.value for fmt in formats)):
                remove_file(derived)

        self.repository.delete_metadata(asset_id, MetadataKeys.OPTIMIZATION)
        self.repository.delete_metadata(asset_id, MetadataKeys.ORIGINALS_DELETED)

        # 恢复后备份记录作废
        for backup_file in restored:
            remove_file(backup_file)
        self._prune_empty_dirs()

        self.activity_log.record("success", f"资源 #{asset_id} 已从备份恢复")
        return True

    def expire(self, older_than_days: int, now: float | None = None) -> int:
        """删除早于指定天数的备份文件，返回删除的文件数"""
        if older_than_days < 1 or not self.backup_root.is_dir():
            return 0

        now = time.time() if now is None else now
        cutoff = now - older_than_days * SECONDS_PER_DAY

        removed = 0
        for path in list(self.backup_root.rglob("*")):
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(MessageFormatter.operation_failed("清理备份", path, e))

        self._prune_empty_dirs()
        if removed:
            self.activity_log.record("info", f"已清理 {removed} 个过期备份")
        return removed

    def total_size(self) -> int:
        """隔离目录占用的字节数"""
        if not self.backup_root.is_dir():
            return 0
        total = 0
        for path in self.backup_root.rglob("*"):
            try:
                if path.is_file():
                    total += path.stat().st_size
            except OSError:
                continue
        return total

    def _prune_empty_dirs(self) -> None:
        """自底向上删除空目录，保留隔离根目录"""
        if not self.backup_root.is_dir():
            return
        directories = sorted(
            (p for p in self.backup_root.rglob("*") if p.is_dir()),
            key=lambda p: len(p.parts),
            reverse=True,
        )
        for directory in directories:
            try:
                directory.rmdir()
            except OSError:
                # 非空目录
                continue
