"""删除原图模块。

删除原图是不可逆操作（只能通过备份恢复），只在以下条件全部满足时执行：
启用了删除、转换成功且所有格式都成功、（未启用备份，或本次备份成功且备份存在）、
主文件的派生文件确实存在。不满足条件时保留原图，这是正常终态而不是错误。
"""

from dataclasses import dataclass
from enum import Enum

from ..models.constants import ImageFormats, MetadataKeys
from ..models.conversion_result import ConversionResult
from ..models.settings import OptimizerSettings
from ..storage.backup import BackupStore
from ..storage.repository import ImageRepository
from ..utils.activity_log import ActivityLog, LogSink
from ..utils.file_helpers import derived_paths, remove_file
from ..utils.logging_helpers import get_logger


logger = get_logger()


class DeletionState(str, Enum):
    """删除流程状态"""

    NOT_ATTEMPTED = "not_attempted"
    DELETABLE = "deletable"
    NOT_DELETABLE = "not_deletable"
    DELETED = "deleted"


@dataclass(frozen=True)
class DeletionDecision:
    """删除判定结果"""

    state: DeletionState
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.state == DeletionState.DELETABLE


class OriginalsRemover:
    """原图删除器

    Args:
        repository: 资源仓库
        backups: 备份存储
        settings: 优化配置
        activity_log: 活动日志
    """

    def __init__(
        self,
        repository: ImageRepository,
        backups: BackupStore,
        settings: OptimizerSettings,
        activity_log: LogSink | None = None,
    ) -> None:
        self.repository = repository
        self.backups = backups
        self.settings = settings
        self.activity_log = activity_log or ActivityLog()

    def evaluate(
        self, asset_id: int, result: ConversionResult, backup_ok: bool
    ) -> DeletionDecision:
        """判断资源的原图是否可以删除

        Args:
            asset_id: 资源 ID
            result: 本次转换结果
            backup_ok: 本次尝试的备份步骤是否成功
        """
        if not self.settings.delete_originals:
            return DeletionDecision(DeletionState.NOT_ATTEMPTED, "未启用删除原图")

        if not (result.success and result.all_ok):
            return DeletionDecision(DeletionState.NOT_DELETABLE, "转换未完全成功")

        if self.settings.keep_backups:
            if not backup_ok:
                return DeletionDecision(DeletionState.NOT_DELETABLE, "备份失败")
            if not self.backups.has_backup(asset_id):
                return DeletionDecision(DeletionState.NOT_DELETABLE, "没有备份")

        source = self.repository.get_source_path(asset_id)
        if source is None or not source.is_file():
            return DeletionDecision(DeletionState.NOT_DELETABLE, "原图不存在")

        formats = (fmt.value for fmt in ImageFormats.OUTPUT_FORMATS)
        if not any(path.is_file() for path in derived_paths(source, formats)):
            return DeletionDecision(DeletionState.NOT_DELETABLE, "没有派生文件")

        return DeletionDecision(DeletionState.DELETABLE)

    def delete_if_allowed(
        self, asset_id: int, result: ConversionResult, backup_ok: bool
    ) -> DeletionDecision:
        """满足条件时删除主文件和所有尺寸变体，并记录 originals_deleted"""
        decision = self.evaluate(asset_id, result, backup_ok)
        if not decision.allowed:
            if decision.state == DeletionState.NOT_DELETABLE:
                logger.debug(f"保留资源 #{asset_id} 的原图: {decision.reason}")
            return decision

        asset = self.repository.get_asset(asset_id)
        files = asset.all_files() if asset is not None else []
        removed = sum(1 for path in files if remove_file(path))

        self.repository.set_metadata(asset_id, MetadataKeys.ORIGINALS_DELETED, True)
        self.activity_log.record(
            "info", f"已删除资源 #{asset_id} 的原图", {"files": removed}
        )
        return DeletionDecision(DeletionState.DELETED)
