"""文字标签绘制：半透明圆角底 + 白色粗体文字。"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from collage_automation.core.config import LabelMode
from collage_automation.utils.colors import with_opacity

LOGGER = logging.getLogger(__name__)

REFERENCE_WIDTH = 1200
CELL_FONT_SIZE = 70
TITLE_FONT_SIZE = 100
PADDING = 20
MARGIN = 20
CORNER_RADIUS = 10
BACKGROUND_FILL = with_opacity((0, 0, 0), 0.6)
TEXT_FILL = (255, 255, 255, 255)

_BOLD_FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "arialbd.ttf",
    "C:/Windows/Fonts/arialbd.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "/Library/Fonts/Arial Bold.ttf",
)


@lru_cache(maxsize=16)
def load_bold_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """按候选列表加载粗体字体，均不可用时退回 Pillow 内置字体。"""

    for candidate in _BOLD_FONT_CANDIDATES:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    LOGGER.debug("未找到系统粗体字体，使用内置字体 (size=%d)", size)
    return ImageFont.load_default(size=size)

def draw_label(
    surface: Image.Image,
    rect: tuple[float, float, float, float],
    text: str,
    mode: LabelMode,
    *,
    is_title: bool = False,
    clip: Optional[tuple[int, int, int, int]] = None,
) -> None:
    """在 rect 内绘制标签，字号随画布宽度线性缩放（以 1200px 为基准）。

    corner 模式锚定在左下角（带边距），center 模式在 rect 内水平垂直居中。
    给出 ``clip`` (x, y, w, h) 时，超出该区域的部分不会落到画布上。
    空文本不绘制。
    """

    if not text:
        return

    scale = surface.width / REFERENCE_WIDTH
    font_size = max(1, round((TITLE_FONT_SIZE if is_title else CELL_FONT_SIZE) * scale))
    padding = PADDING * scale
    font = load_bold_font(font_size)

    if clip is None:
        target, origin_x, origin_y = surface, 0, 0
    else:
        origin_x, origin_y, clip_w, clip_h = clip
        target = surface.crop((origin_x, origin_y, origin_x + clip_w, origin_y + clip_h))

    draw = ImageDraw.Draw(target, "RGBA")
    text_width = draw.textlength(text, font=font)
    box_width = text_width + padding * 2

    x, y, w, h = rect
    x, y = x - origin_x, y - origin_y
    if mode is LabelMode.CENTER:
        label_x = x + (w - box_width) / 2
        baseline = y + h / 2 + font_size / 3
    else:
        label_x = x + MARGIN * scale
        baseline = y + h - MARGIN * scale - padding

    box_top = baseline - font_size
    draw.rounded_rectangle(
        (label_x, box_top, label_x + box_width, box_top + font_size + padding),
        radius=max(1, round(CORNER_RADIUS * scale)),
        fill=BACKGROUND_FILL,
    )
    draw.text((label_x + padding, baseline), text, font=font, fill=TEXT_FILL, anchor="ls")

    if target is not surface:
        surface.paste(target, (origin_x, origin_y))
