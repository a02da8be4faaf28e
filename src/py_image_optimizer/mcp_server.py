"""图像优化 MCP 服务器。

把 ImageOptimizer 的对外操作暴露为 MCP 工具，本身不包含业务逻辑。
数据库和存储目录通过 PIO_DB_PATH / PIO_STORAGE_ROOT 环境变量指定。
"""

import os
import threading
from typing import Any

from fastmcp import FastMCP

from .config import get_config
from .engine.config import SettingsBuilder
from .exceptions import ValidationError
from .models.constants import MetadataKeys
from .optimizer import ImageOptimizer
from .utils.logging_helpers import get_logger, setup_logging
from .utils.message_formatter import MessageFormatter


# MCP 服务器响应类型定义
MCPResponse = dict[str, Any]


class MCPResponseBuilder:
    """MCP 服务器响应构建器"""

    @staticmethod
    def error(
        message: str,
        error_type: str = "general",
        details: dict[str, Any] | None = None,
    ) -> MCPResponse:
        """构建错误结果。

        Args:
            message: 错误消息
            error_type: 错误类型
            details: 额外的错误详情

        Returns:
            dict: 标准化的错误响应
        """
        result: MCPResponse = {
            "success": False,
            "error": message,
            "error_type": error_type,
        }

        if details:
            result["details"] = details

        return result

    @staticmethod
    def validation_error(message: str, field: str | None = None) -> MCPResponse:
        details = {"field": field} if field else None
        return MCPResponseBuilder.error(
            message=message, error_type="validation", details=details
        )

    @staticmethod
    def processing_error(message: str, operation: str | None = None) -> MCPResponse:
        details = {"operation": operation} if operation else None
        return MCPResponseBuilder.error(
            message=message, error_type="processing", details=details
        )


logger = get_logger()

# 创建MCP应用
mcp: FastMCP[Any] = FastMCP("图像 WebP/AVIF 优化服务")

_optimizer: ImageOptimizer | None = None
_optimizer_lock = threading.Lock()


def get_optimizer() -> ImageOptimizer:
    """进程内只装配一次优化器"""
    global _optimizer
    with _optimizer_lock:
        if _optimizer is None:
            db_path = os.getenv("PIO_DB_PATH", "image-optimizer.db")
            storage_root = os.getenv("PIO_STORAGE_ROOT", "uploads")
            _optimizer = ImageOptimizer.create(db_path, storage_root)
        return _optimizer


def set_optimizer(optimizer: ImageOptimizer | None) -> None:
    """替换进程内的优化器实例（主要用于测试）"""
    global _optimizer
    with _optimizer_lock:
        _optimizer = optimizer


# ============================================================================
# 工具
# ============================================================================


@mcp.tool()
def optimization_status() -> MCPResponse:
    """查询整体优化进度：总数、已处理、成功、剩余、累计节省"""
    try:
        status = get_optimizer().status()
        return {
            "success": True,
            "status": status.model_dump(),
            "summary": status.get_summary(),
        }
    except Exception as e:
        logger.error(MessageFormatter.operation_failed("查询进度", "status", e))
        return MCPResponseBuilder.processing_error(str(e), "status")


@mcp.tool()
def run_chunk(batch_size: int | None = None) -> MCPResponse:
    """处理一批尚未优化的图片，重复调用直到 done 为 true

    Args:
        batch_size: 本批数量，限制在 1-100 之间，缺省使用配置值
    """
    try:
        result = get_optimizer().run_chunk(batch_size)
        return {"success": True, **result.model_dump()}
    except Exception as e:
        logger.error(MessageFormatter.operation_failed("批量处理", "run_chunk", e))
        return MCPResponseBuilder.processing_error(str(e), "run_chunk")


@mcp.tool()
def optimize_single(asset_id: int) -> MCPResponse:
    """立即优化单个资源

    Args:
        asset_id: 资源 ID
    """
    try:
        optimizer = get_optimizer()
        result = optimizer.optimize_single(asset_id)
        if result is None:
            return MCPResponseBuilder.error(
                f"资源 #{asset_id} 不存在", "file", {"asset_id": asset_id}
            )
        return {
            "success": result.success,
            "result": result.to_metadata(),
            "summary": result.get_summary(),
            "originals_deleted": bool(
                optimizer.repository.get_metadata(
                    asset_id, MetadataKeys.ORIGINALS_DELETED
                )
            ),
        }
    except Exception as e:
        logger.error(MessageFormatter.operation_failed("优化", f"#{asset_id}", e))
        return MCPResponseBuilder.processing_error(str(e), "optimize_single")


@mcp.tool()
def restore_single(asset_id: int) -> MCPResponse:
    """从备份恢复单个资源的原图，并删除派生文件

    Args:
        asset_id: 资源 ID
    """
    try:
        restored = get_optimizer().restore_single(asset_id)
        if not restored:
            return MCPResponseBuilder.error(
                f"资源 #{asset_id} 没有可用的备份", "file", {"asset_id": asset_id}
            )
        return {"success": True, "asset_id": asset_id}
    except Exception as e:
        logger.error(MessageFormatter.operation_failed("恢复", f"#{asset_id}", e))
        return MCPResponseBuilder.processing_error(str(e), "restore_single")


@mcp.tool()
def server_capabilities() -> MCPResponse:
    """查询可用的编码后端和输出格式"""
    optimizer = get_optimizer()
    return {
        "success": True,
        "capabilities": optimizer.capabilities().as_dict(),
        "backup_bytes": optimizer.backup_size(),
    }


@mcp.tool()
def validate_settings(
    format: str | None = None,
    quality: int | None = None,
    min_size_kb: int | None = None,
    batch_size: int | None = None,
) -> MCPResponse:
    """校验一组优化配置，返回规范化后的值

    Args:
        format: webp | avif | both
        quality: 10-100
        min_size_kb: 跳过小于该大小的文件
        batch_size: 每批数量
    """
    try:
        settings = SettingsBuilder().build(
            format=format,
            quality=quality,
            min_size_kb=min_size_kb,
            batch_size=batch_size,
        )
        return {"success": True, "settings": settings.model_dump(mode="json")}
    except ValidationError as e:
        return MCPResponseBuilder.validation_error(e.message)


# ============================================================================
# 应用入口
# ============================================================================


def main() -> None:
    """启动 MCP 服务器"""
    setup_logging(get_config().logging)
    logger.info("启动图像优化 MCP 服务器")
    mcp.run()


if __name__ == "__main__":
    main()
