"""消息格式化工具模块。

提供统一的错误消息、活动日志消息格式化功能。
"""

from pathlib import Path
from typing import Any

from humanize import naturalsize


class MessageFormatter:
    """统一的消息格式化器"""

    @staticmethod
    def file_not_found(file_path: str | Path) -> str:
        """文件不存在错误消息"""
        return f"文件不存在: {file_path}"

    @staticmethod
    def asset_file_not_found(asset_id: int) -> str:
        """资源主文件不存在"""
        return f"资源 #{asset_id} 的文件不存在"

    @staticmethod
    def operation_failed(
        operation: str, target: str | Path, error: Exception | None = None
    ) -> str:
        """操作失败消息"""
        msg = f"{operation}失败: {target}"
        if error:
            msg += f" - {error}"
        return msg

    @staticmethod
    def validation_error(field: str, value: Any, reason: str | None = None) -> str:
        """参数验证错误消息"""
        msg = f"参数验证失败 - {field}: {value}"
        if reason:
            msg += f" ({reason})"
        return msg

    @staticmethod
    def format_error(operation: str, path: str | Path, error: Exception) -> str:
        """格式化通用错误消息"""
        return f"{operation}失败 [{path}]: {error}"

    @staticmethod
    def conversion_failed(fmt: str, error: str, variant: str | None = None) -> str:
        """单个格式转换失败，用于汇总到结果的错误列表"""
        if variant:
            return f"{fmt} (variant {variant}): {error}"
        return f"{fmt}: {error}"

    @staticmethod
    def savings(asset_id: int, saved_bytes: int) -> str:
        """资源优化完成消息"""
        return f"资源 #{asset_id} 优化完成，节省 {naturalsize(saved_bytes, binary=True)}"


# 便捷函数
def format_validation_error(field: str, value: Any, expected: str | None = None) -> str:
    """格式化验证错误消息"""
    reason = f"期望: {expected}" if expected else None
    return MessageFormatter.validation_error(field, value, reason)
