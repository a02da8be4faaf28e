"""存储模块包。

资源仓库接口及其 SQLite 实现，以及原图备份存储。
"""

from .backup import BackupStore
from .repository import ImageRepository, SqliteImageRepository


__all__ = [
    "BackupStore",
    "ImageRepository",
    "SqliteImageRepository",
]
