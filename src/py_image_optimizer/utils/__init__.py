"""工具模块包。

提供纯工具函数，不包含业务逻辑。
"""

# 从活动日志模块导入
from .activity_log import ActivityLog, LogSink

# 从文件助手模块导入
from .file_helpers import (
    derived_path,
    derived_paths,
    file_size,
    find_image_files,
    get_image_mime_type,
    remove_file,
)

# 从日志工具模块导入
from .logging_helpers import get_logger, setup_logging

# 从消息格式化模块导入
from .message_formatter import (
    MessageFormatter,
    format_validation_error,
)


__all__ = [
    "ActivityLog",
    "LogSink",
    "MessageFormatter",
    "derived_path",
    "derived_paths",
    "file_size",
    "find_image_files",
    "format_validation_error",
    "get_image_mime_type",
    "get_logger",
    "remove_file",
    "setup_logging",
]
