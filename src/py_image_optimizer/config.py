"""统一配置管理模块。

提供应用程序的全局默认配置，包括默认值、环境变量支持等。
组件本身不读取全局配置，由 ImageOptimizer 在装配时显式传入。
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConversionDefaults:
    """转换相关的默认配置"""

    # 输出格式: webp | avif | both
    FORMAT: str = "webp"
    QUALITY: int = 82

    # 小于该阈值（KB）的文件直接跳过
    MIN_SIZE_KB: int = 5

    # 新登记的图片立即优化
    AUTO_OPTIMIZE: bool = True

    # 动图策略: skip | convert
    ANIMATED_GIF_POLICY: str = "skip"

    # libvips / Pillow 编码参数
    WEBP_METHOD: int = 6
    AVIF_SPEED: int = 6


@dataclass(frozen=True)
class ProcessingDefaults:
    """批量处理相关的默认配置"""

    BATCH_SIZE: int = 20
    MIN_BATCH_SIZE: int = 1
    MAX_BATCH_SIZE: int = 100

    # 后台任务每次处理的固定数量
    BACKGROUND_BATCH_SIZE: int = 10

    # 删除原图相关
    DELETE_ORIGINALS: bool = False
    KEEP_BACKUPS: bool = True
    BACKUP_RETENTION_DAYS: int = 30
    BACKUP_DIR_NAME: str = "image-optimizer-backups"


@dataclass(frozen=True)
class RuntimeDefaults:
    """运行时资源上限"""

    # 单次调用的执行时间上限（秒），0 表示未知
    MAX_EXECUTION_SECONDS: int = 30
    # 时间守卫的安全余量和最小预算
    TIME_SAFETY_MARGIN: int = 10
    MIN_TIME_BUDGET: int = 30

    # 内存上限（MB），0 表示从 RLIMIT_AS 探测
    MEMORY_LIMIT_MB: int = 0
    MEMORY_THRESHOLD_RATIO: float = 0.85


@dataclass(frozen=True)
class LoggingDefaults:
    """日志相关的默认配置"""

    # 日志级别
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # 文件日志
    ENABLE_FILE_LOGGING: bool = False
    LOG_FILE_PATH: str = "py_image_optimizer.log"
    LOG_FILE_MAX_SIZE: int = 10 * 1024 * 1024  # 10MB
    LOG_FILE_BACKUP_COUNT: int = 5

    # 内存中保留的最近活动条数
    RECENT_ENTRIES: int = 200


def _env_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


class AppConfig:
    """应用程序配置管理器

    支持环境变量覆盖默认配置
    """

    def __init__(self):
        self.conversion = ConversionDefaults()
        self.processing = ProcessingDefaults()
        self.runtime = RuntimeDefaults()
        self.logging = LoggingDefaults()

        # 从环境变量加载配置
        self._load_from_env()

    def _load_from_env(self):
        """从环境变量加载配置"""
        # 转换配置
        if fmt := os.getenv("PIO_FORMAT"):
            object.__setattr__(self.conversion, "FORMAT", fmt.lower())

        if quality := os.getenv("PIO_QUALITY"):
            object.__setattr__(self.conversion, "QUALITY", int(quality))

        if min_size := os.getenv("PIO_MIN_SIZE_KB"):
            object.__setattr__(self.conversion, "MIN_SIZE_KB", int(min_size))

        if auto_optimize := os.getenv("PIO_AUTO_OPTIMIZE"):
            object.__setattr__(
                self.conversion, "AUTO_OPTIMIZE", _env_flag(auto_optimize)
            )

        # 批量处理配置
        if batch_size := os.getenv("PIO_BATCH_SIZE"):
            object.__setattr__(self.processing, "BATCH_SIZE", int(batch_size))

        if delete_originals := os.getenv("PIO_DELETE_ORIGINALS"):
            object.__setattr__(
                self.processing, "DELETE_ORIGINALS", _env_flag(delete_originals)
            )

        if keep_backups := os.getenv("PIO_KEEP_BACKUPS"):
            object.__setattr__(self.processing, "KEEP_BACKUPS", _env_flag(keep_backups))

        if retention := os.getenv("PIO_BACKUP_RETENTION_DAYS"):
            object.__setattr__(self.processing, "BACKUP_RETENTION_DAYS", int(retention))

        # 运行时上限
        if max_execution := os.getenv("PIO_MAX_EXECUTION_TIME"):
            object.__setattr__(self.runtime, "MAX_EXECUTION_SECONDS", int(max_execution))

        if memory_limit := os.getenv("PIO_MEMORY_LIMIT_MB"):
            object.__setattr__(self.runtime, "MEMORY_LIMIT_MB", int(memory_limit))

        # 日志配置
        if log_level := os.getenv("PIO_LOG_LEVEL"):
            object.__setattr__(self.logging, "LOG_LEVEL", log_level.upper())

        if enable_file_log := os.getenv("PIO_ENABLE_FILE_LOGGING"):
            object.__setattr__(
                self.logging, "ENABLE_FILE_LOGGING", _env_flag(enable_file_log)
            )

    @staticmethod
    def clamp_batch_size(batch_size: int) -> int:
        """将批量大小限制在允许范围内"""
        defaults = ProcessingDefaults()
        return max(defaults.MIN_BATCH_SIZE, min(batch_size, defaults.MAX_BATCH_SIZE))


# 全局配置实例
config = AppConfig()


def get_config() -> AppConfig:
    """获取全局配置实例"""
    return config


def reset_config():
    """重置配置（主要用于测试）"""
    global config
    config = AppConfig()
