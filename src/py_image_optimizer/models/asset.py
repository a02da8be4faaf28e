"""图像资源模型。"""

from pathlib import Path

from pydantic import BaseModel, Field


class Variant(BaseModel):
    """资源的一个预生成尺寸变体"""

    name: str = Field(description="尺寸名，如 thumbnail / medium")
    path: Path = Field(description="变体文件路径")


class ImageAsset(BaseModel):
    """一条图像资源记录：主文件加零个或多个尺寸变体"""

    id: int = Field(description="稳定的资源 ID")
    source_path: Path = Field(description="主文件路径")
    mime_type: str = Field(description="MIME 类型")
    variants: list[Variant] = Field(default_factory=list, description="尺寸变体")

    def all_files(self) -> list[Path]:
        """主文件和所有变体文件"""
        return [self.source_path, *(v.path for v in self.variants)]
