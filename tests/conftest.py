"""测试配置文件。

提供测试所需的fixtures：临时存储目录、SQLite 仓库、生成的测试图片和假编码后端。
"""

from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image, ImageDraw

from py_image_optimizer.config import RuntimeDefaults
from py_image_optimizer.core.capabilities import CapabilityProbe
from py_image_optimizer.core.codecs import Codec
from py_image_optimizer.exceptions import ProcessingError
from py_image_optimizer.models.constants import OutputFormat
from py_image_optimizer.models.settings import OptimizerSettings
from py_image_optimizer.optimizer import ImageOptimizer
from py_image_optimizer.storage.repository import SqliteImageRepository


class FakeCodec(Codec):
    """按比例写出固定大小文件的假编码后端

    Args:
        name: 后端名称
        formats: 支持的格式
        ratios: 格式 → 输出大小与源文件大小之比
        fail: 编码时抛出 ProcessingError 的格式
        available: 后端是否可加载
    """

    def __init__(
        self,
        name: str = "fake",
        formats: set[OutputFormat] | None = None,
        ratios: dict[OutputFormat, float] | None = None,
        fail: set[OutputFormat] | None = None,
        available: bool = True,
    ):
        self.name = name
        self.formats = formats if formats is not None else set(OutputFormat)
        self.ratios = ratios or {}
        self.fail = fail or set()
        self._available = available
        self.calls: list[tuple[Path, OutputFormat]] = []

    def available(self) -> bool:
        return self._available

    def supports(self, fmt: OutputFormat) -> bool:
        return fmt in self.formats

    def encode(self, source, dest, fmt, quality, animated=False) -> bool:
        self.calls.append((Path(source), fmt))
        if fmt in self.fail:
            # 模拟编码器中途失败，留下半成品
            Path(dest).write_bytes(b"partial")
            raise ProcessingError(f"{fmt.value} 编码失败", source)

        size = Path(source).stat().st_size
        ratio = self.ratios.get(fmt, 0.5)
        Path(dest).write_bytes(b"\0" * max(1, int(size * ratio)))
        return True


class FakeClock:
    """可手动推进的单调时钟"""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write_sized_file(path: Path, size: int) -> Path:
    """写出指定字节数的 JPEG 文件，不足部分以尾部填充补齐"""
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", (16, 16), color=(200, 120, 40))
    img.save(path, "JPEG", quality=90)
    current = path.stat().st_size
    if current < size:
        with path.open("ab") as f:
            f.write(b"\0" * (size - current))
    return path


def create_noisy_jpeg(path: Path, width: int = 320, height: int = 240) -> Path:
    """生成带噪点和渐变的高质量 JPEG，转换为 WebP 后会明显变小"""
    path.parent.mkdir(parents=True, exist_ok=True)
    base = Image.linear_gradient("L").resize((width, height))
    noise = Image.effect_noise((width, height), 40)
    radial = Image.radial_gradient("L").resize((width, height))
    img = Image.merge("RGB", (base, noise, radial))

    draw = ImageDraw.Draw(img)
    for i in range(12):
        x, y = (i * 37) % width, (i * 23) % height
        draw.rectangle([x, y, x + 30, y + 20], fill=(i * 20 % 256, 80, 200))

    img.save(path, "JPEG", quality=95)
    return path


def create_animated_gif(path: Path, frames: int = 3) -> Path:
    """生成多帧 GIF"""
    path.parent.mkdir(parents=True, exist_ok=True)
    images = [Image.new("RGB", (64, 64), color=(i * 80, 0, 0)) for i in range(frames)]
    images[0].save(
        path, "GIF", save_all=True, append_images=images[1:], duration=100, loop=0
    )
    return path


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """规范存储根目录"""
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def backup_root(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def repository(tmp_path: Path, storage_root: Path):
    """SQLite 资源仓库"""
    repo = SqliteImageRepository(tmp_path / "assets.db", storage_root)
    yield repo
    repo.close()


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def probe(fake_codec: FakeCodec) -> CapabilityProbe:
    return CapabilityProbe([fake_codec], RuntimeDefaults())


@pytest.fixture
def settings() -> OptimizerSettings:
    """默认配置：webp，质量 82，5KB 阈值"""
    return OptimizerSettings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_optimizer(
    tmp_path: Path, storage_root: Path, backup_root: Path, clock: FakeClock
) -> Callable[..., ImageOptimizer]:
    """按需装配优化器，默认使用假编码后端和固定时钟"""
    created: list[ImageOptimizer] = []

    def factory(
        settings: OptimizerSettings | None = None,
        codecs: list[Codec] | None = None,
        memory_usage: Callable[[], int] = lambda: 0,
        **kwargs,
    ) -> ImageOptimizer:
        optimizer = ImageOptimizer.create(
            tmp_path / "optimizer.db",
            storage_root,
            settings=settings or OptimizerSettings(),
            backup_root=kwargs.pop("backup_root", backup_root),
            codecs=codecs if codecs is not None else [FakeCodec()],
            clock=clock,
            memory_usage=memory_usage,
            **kwargs,
        )
        created.append(optimizer)
        return optimizer

    yield factory

    for optimizer in created:
        optimizer.close()
