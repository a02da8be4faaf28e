"""图像优化异常处理模块。

定义统一的异常类和错误处理机制，包含编码器异常处理装饰器。
"""

from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import TypeVar

from PIL.Image import DecompressionBombError, UnidentifiedImageError

from .models.constants import ValidationLimits
from .models.conversion_result import ConversionResult, ConversionStatus
from .utils.logging_helpers import get_logger
from .utils.message_formatter import MessageFormatter


logger = get_logger()
T = TypeVar("T")


# 统一的异常类型
class OptimizerError(Exception):
    """优化相关错误基类"""

    def __init__(self, message: str, input_path: Path | None = None):
        super().__init__(message)
        self.message = message
        self.input_path = input_path


class ValidationError(OptimizerError):
    """配置验证错误，唯一会抛给调用方的错误类型"""

    pass


class ProcessingError(OptimizerError):
    """处理过程错误"""

    pass


class UnsupportedFormatError(OptimizerError):
    """不支持的格式错误"""

    pass


# 编码器异常处理装饰器
def handle_codec_errors(operation_name: str = "图像编码"):
    """统一的编码器异常处理装饰器

    把编码库抛出的各种异常转换为 ProcessingError / UnsupportedFormatError，
    由转换引擎在单文件粒度上捕获。

    Args:
        operation_name: 操作名称，用于日志记录
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except OptimizerError:
                raise
            except UnidentifiedImageError as e:
                logger.debug(f"{operation_name} - 无法识别图像格式: {e}")
                raise UnsupportedFormatError(f"不支持的图像格式: {e}") from e
            except DecompressionBombError as e:
                logger.debug(f"{operation_name} - 图像过大: {e}")
                raise ProcessingError(f"图像文件过大，可能存在安全风险: {e}") from e
            except OSError as e:
                logger.debug(f"{operation_name} - 文件操作失败: {e}")
                raise ProcessingError(f"文件操作失败: {e}") from e
            except (ValueError, TypeError) as e:
                logger.debug(f"{operation_name} - 参数错误: {e}")
                raise ProcessingError(f"参数错误: {e}") from e
            except Exception as e:
                logger.debug(f"{operation_name} - 未知错误: {e}")
                raise ProcessingError(f"处理失败: {e}") from e

        return wrapper

    return decorator


class ErrorHandler:
    """统一错误处理器

    提供标准化的错误日志记录和终态结果构建。
    """

    @staticmethod
    def _log_error(
        operation: str, path: Path | str, error: Exception, level: str = "error"
    ) -> None:
        """标准化的错误日志记录

        Args:
            operation: 操作名称（如"备份"、"恢复"等）
            path: 相关文件路径
            error: 异常对象
            level: 日志级别 ("error", "warning", "debug")
        """
        log_msg = MessageFormatter.format_error(operation, path, error)
        getattr(logger, level, logger.error)(log_msg)

    @staticmethod
    def join_errors(errors: list[str]) -> str:
        """截断并拼接错误列表"""
        return " | ".join(errors[: ValidationLimits.MAX_ERRORS])

    @staticmethod
    def create_terminal_result(
        status: ConversionStatus,
        error: str,
        original_size: int = 0,
        all_ok: bool = False,
    ) -> ConversionResult:
        """创建短路终态结果（缺失、跳过、无引擎）

        Args:
            status: 终态状态
            error: 原因描述
            original_size: 主文件大小
            all_ok: 是否视为成功（跳过类状态为 True）
        """
        return ConversionResult(
            status=status,
            error=error,
            original_size=original_size,
            optimized_size=original_size,
            savings=0,
            formats_requested=[],
            formats_generated=[],
            all_ok=all_ok,
        )
