"""优化配置模型。

定义转换、批量处理和删除原图相关的用户配置。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import AppConfig
from .constants import AnimatedGifPolicy, FormatSetting, OutputFormat, ValidationLimits


class OptimizerSettings(BaseModel):
    """优化器配置"""

    model_config = ConfigDict(frozen=True)

    # 转换设置
    format: FormatSetting = Field(FormatSetting.WEBP, description="目标格式")
    quality: int = Field(
        82,
        ge=ValidationLimits.MIN_QUALITY,
        le=ValidationLimits.MAX_QUALITY,
        description="压缩质量",
    )
    min_size_kb: int = Field(5, ge=0, description="跳过小于该大小（KB）的文件")

    # 排除规则
    exclude_folders: list[str] = Field(
        default_factory=list, description="路径中包含这些子串的文件被排除"
    )
    exclude_patterns: list[str] = Field(
        default_factory=list, description="文件名匹配这些通配符的文件被排除"
    )
    animated_gif_policy: AnimatedGifPolicy = Field(
        AnimatedGifPolicy.SKIP, description="动图策略"
    )

    # 登记新图片时立即转换
    auto_optimize: bool = Field(True, description="新图片登记后立即优化")

    # 批量处理，超出范围的值在使用时被限制到 [1, 100]
    batch_size: int = Field(20, description="每批处理数量")

    # 删除原图
    delete_originals: bool = Field(False, description="转换成功后删除原图")
    keep_backups: bool = Field(True, description="删除前备份原图")
    backup_retention_days: int = Field(30, ge=0, description="备份保留天数")

    @field_validator("exclude_folders", "exclude_patterns", mode="before")
    @classmethod
    def split_lines(cls, v: Any) -> Any:
        """接受换行分隔的字符串，去掉空行"""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.splitlines()
        if isinstance(v, list | tuple):
            return [item.strip() for item in v if isinstance(item, str) and item.strip()]
        return v

    @property
    def requested_formats(self) -> list[OutputFormat]:
        """配置请求的输出格式"""
        return self.format.requested()

    @property
    def effective_batch_size(self) -> int:
        """限制后的批量大小"""
        return AppConfig.clamp_batch_size(self.batch_size)

    @property
    def min_size_bytes(self) -> int:
        return self.min_size_kb * 1024

    @classmethod
    def from_app_config(cls, app_config: AppConfig) -> "OptimizerSettings":
        """从全局默认值（含环境变量覆盖）构建配置"""
        return cls(
            format=app_config.conversion.FORMAT,
            quality=app_config.conversion.QUALITY,
            min_size_kb=app_config.conversion.MIN_SIZE_KB,
            animated_gif_policy=app_config.conversion.ANIMATED_GIF_POLICY,
            auto_optimize=app_config.conversion.AUTO_OPTIMIZE,
            batch_size=app_config.processing.BATCH_SIZE,
            delete_originals=app_config.processing.DELETE_ORIGINALS,
            keep_backups=app_config.processing.KEEP_BACKUPS,
            backup_retention_days=app_config.processing.BACKUP_RETENTION_DAYS,
        )
