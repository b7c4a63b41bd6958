"""9:16 全幅封面生成。"""

from __future__ import annotations

from PIL import Image, ImageOps

from collage_automation.processing.image_loader import flatten_alpha

COVER_SIZE = (2160, 3840)
COVER_BACKGROUND = (255, 255, 255)


def generate_cover(image: Image.Image, size: tuple[int, int] = COVER_SIZE) -> Image.Image:
    """以 cover 方式生成固定尺寸封面：居中裁剪，不留边。

    先铺白色背景兜底，再贴上 LANCZOS 缩放后的图像。
    """

    canvas = Image.new("RGB", size, COVER_BACKGROUND)
    source = flatten_alpha(image, COVER_BACKGROUND)
    fitted = ImageOps.fit(source, size, Image.LANCZOS, centering=(0.5, 0.5))
    canvas.paste(fitted, (0, 0))
    return canvas
