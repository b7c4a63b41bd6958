"""图片加载与基础预处理实现。"""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from collage_automation.core.exceptions import CollageAutomationError

LOGGER = logging.getLogger(__name__)

_ALPHA_MODES = {"RGBA", "LA", "PA"}


class ImageLoadingError(CollageAutomationError):
    """图片加载失败。"""


def load_image(path: Path) -> Image.Image:
    """加载单张图片并执行 EXIF 旋转与模式归一化。

    带透明通道的图片统一为 RGBA（裁边需要 Alpha），其余统一为 RGB。
    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        with Image.open(path) as img:
            img.load()

            # EXIF Orientation 校正
            img = ImageOps.exif_transpose(img)
            return _normalize_mode(img).copy()
    except (UnidentifiedImageError, OSError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise ImageLoadingError(f"无法加载图像: {path}") from exc


def _normalize_mode(img: Image.Image) -> Image.Image:
    if img.mode in {"RGB", "RGBA"}:
        return img
    if img.mode in _ALPHA_MODES or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    # CMYK / L / P 等直接转换
    return img.convert("RGB")


def flatten_alpha(img: Image.Image, background: tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    """将 RGBA 图像与纯色背景混合为 RGB。"""

    if img.mode != "RGBA":
        return img if img.mode == "RGB" else img.convert("RGB")
    canvas = Image.new("RGB", img.size, background)
    canvas.paste(img, mask=img.split()[-1])
    return canvas
