"""多图拼版合成。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from PIL import Image

from collage_automation.core.config import CompositionConfig, LabelMode
from collage_automation.core.exceptions import CollageAutomationError, CompositionError, ValidationError
from collage_automation.core.models import DefectBox, LayoutKind
from collage_automation.processing.healing import heal_region
from collage_automation.processing.labels import draw_label
from collage_automation.processing.layout import CellRect, compute_cells
from collage_automation.processing.trimming import trim_borders
from collage_automation.utils.colors import parse_hex_color

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CollageSource:
    """参与合成的一张源图及其修补/标签信息。"""

    bitmap: Image.Image
    defect: DefectBox = field(default_factory=DefectBox)
    caption: Optional[str] = None


def compose_collage(
    sources: Sequence[CollageSource],
    layout: LayoutKind,
    config: CompositionConfig,
    *,
    rng: Optional[np.random.Generator] = None,
) -> Image.Image:
    """按版式把源图合成到一张固定尺寸的画布上，返回 RGB 图像。

    源图数量少于版式要求时抛出 ValidationError，不做任何绘制。
    """

    required = layout.required_count
    if len(sources) < required:
        raise ValidationError(f"版式 {layout.value} 需要 {required} 张图，实际 {len(sources)} 张")

    config.validate()
    try:
        return _render(sources, layout, config, rng)
    except CollageAutomationError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise CompositionError(f"拼图绘制失败: {exc}") from exc


def _render(
    sources: Sequence[CollageSource],
    layout: LayoutKind,
    config: CompositionConfig,
    rng: Optional[np.random.Generator],
) -> Image.Image:
    background = parse_hex_color(config.background_color)
    surface = Image.new("RGB", (config.output_width, config.output_height), background)

    bitmaps = [source.bitmap for source in sources]
    if config.trim_borders:
        bitmaps = [trim_borders(bitmap) for bitmap in bitmaps]

    cells = compute_cells(layout, config.output_width, config.output_height, config.gap_px)
    per_cell_labels = config.label_mode is LabelMode.CORNER

    for index, cell in enumerate(cells):
        if index >= len(bitmaps):
            # 未分配源图的单元格保留背景色
            continue
        render_rect = draw_cover(surface, bitmaps[index], cell, background)
        source = sources[index]
        if config.heal_defects:
            heal_region(surface, source.defect, render_rect, clip=cell.as_tuple(), rng=rng)
        if per_cell_labels and source.caption:
            draw_label(surface, cell.as_tuple(), source.caption, LabelMode.CORNER, clip=cell.as_tuple())

    if config.label_mode is LabelMode.CENTER and config.global_label:
        draw_label(
            surface,
            (0, 0, surface.width, surface.height),
            config.global_label,
            LabelMode.CENTER,
            is_title=True,
        )

    LOGGER.debug("完成 %s 合成：%dx%d", layout.value, surface.width, surface.height)
    return surface


def draw_cover(
    surface: Image.Image,
    bitmap: Image.Image,
    cell: CellRect,
    background: tuple[int, int, int] = (255, 255, 255),
) -> tuple[int, int, int, int]:
    """以 cover 方式把 bitmap 铺满单元格，超出部分裁掉。

    返回源图在画布上的完整绘制矩形 (x, y, w, h)，可能超出单元格。
    """

    src_w, src_h = bitmap.size
    if cell.width * src_h > cell.height * src_w:
        render_w = cell.width
        render_h = max(cell.height, round(cell.width * src_h / src_w))
    else:
        render_h = cell.height
        render_w = max(cell.width, round(cell.height * src_w / src_h))

    resized = bitmap.resize((render_w, render_h), Image.LANCZOS)
    offset_x = (render_w - cell.width) // 2
    offset_y = (render_h - cell.height) // 2
    visible = resized.crop((offset_x, offset_y, offset_x + cell.width, offset_y + cell.height))

    if visible.mode == "RGBA":
        base = Image.new("RGB", visible.size, background)
        base.paste(visible, mask=visible.split()[-1])
        visible = base
    elif visible.mode != "RGB":
        visible = visible.convert("RGB")

    surface.paste(visible, (cell.x, cell.y))
    return cell.x - offset_x, cell.y - offset_y, render_w, render_h
