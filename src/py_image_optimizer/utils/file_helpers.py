"""工具函数模块。

提供派生文件命名、文件扫描等实用工具函数。
"""

from collections.abc import Iterable, Iterator
from pathlib import Path

from PIL import Image

from ..models.constants import ImageFormats, get_mime_type
from .logging_helpers import get_logger
from .message_formatter import MessageFormatter


logger = get_logger()


def derived_path(source: str | Path, fmt: str) -> Path:
    """派生文件路径：在原文件名后追加 `.{format}`，例如 photo.jpg.webp"""
    return Path(f"{source}.{fmt.lower()}")


def derived_paths(source: str | Path, formats: Iterable[str]) -> list[Path]:
    """所有格式对应的派生文件路径"""
    return [derived_path(source, fmt) for fmt in formats]


def file_size(path: str | Path) -> int | None:
    """文件大小，文件不存在或不可读时返回 None"""
    try:
        return Path(path).stat().st_size
    except OSError:
        return None


def remove_file(path: str | Path) -> bool:
    """删除文件，返回是否确实删除了文件"""
    path = Path(path)
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(MessageFormatter.operation_failed("删除文件", path, e))
        return False


def find_image_files(
    directory: str | Path,
    recursive: bool = True,
    exclude_dirs: list[str] | None = None,
) -> Iterator[Path]:
    """查找目录中可作为转换源的图像文件。

    Args:
        directory: 搜索目录
        recursive: 是否递归搜索子目录
        exclude_dirs: 要排除的目录名列表

    Yields:
        Path: 图像文件路径，按路径排序
    """
    directory = Path(directory)
    exclude_dirs = exclude_dirs or []

    if not directory.is_dir():
        logger.warning(MessageFormatter.file_not_found(directory))
        return

    pattern = "**/*" if recursive else "*"
    source_extensions = ImageFormats.SOURCE_EXTENSIONS

    try:
        for file_path in sorted(directory.glob(pattern)):
            if (
                file_path.is_file()
                and file_path.suffix.lower() in source_extensions
                and not any(
                    exclude_dir in file_path.parts for exclude_dir in exclude_dirs
                )
            ):
                yield file_path
    except PermissionError as e:
        logger.error(MessageFormatter.operation_failed("访问目录", directory, e))


def get_image_mime_type(file_path: str | Path) -> str | None:
    """获取图片文件的 MIME 类型

    Args:
        file_path: 图片文件路径

    Returns:
        str | None: MIME 类型，如 'image/jpeg'，失败时返回 None
    """
    try:
        with Image.open(file_path) as img:
            if img.format:
                return get_mime_type(img.format)
            return None
    except Exception as e:
        logger.debug(MessageFormatter.operation_failed("获取 MIME 类型", file_path, e))
        return None
