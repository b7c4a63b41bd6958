"""水印区域修补：边缘拉伸 + 模糊 + 噪点。

仅适用于背景较平整的小区域（例如角落水印），复杂内容上效果会较差。
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from collage_automation.core.models import PERMILLE, DefectBox

LOGGER = logging.getLogger(__name__)

HEAL_PADDING = 15
BLUR_SIGMA = 4.0
NOISE_AMPLITUDE = 7.5
EDGE_BLEND = 0.5

Rect = tuple[float, float, float, float]


def heal_region(
    surface: Image.Image,
    defect: DefectBox,
    render_rect: Rect,
    *,
    clip: Optional[Rect] = None,
    rng: Optional[np.random.Generator] = None,
) -> None:
    """在合成画布上原地修补 defect 指定的区域。

    ``render_rect`` 为源图在画布上的绘制矩形 (x, y, w, h)，用于把千分比坐标
    映射到画布像素；``clip`` 为所在单元格，修补范围不会越出单元格。
    """

    if not defect.is_usable:
        return

    bounds = _padded_bounds(surface.size, defect, render_rect, clip)
    if bounds is None:
        return
    tx, ty, tw, th = bounds
    left, top, right, bottom = _limit_rect(surface.size, render_rect, clip)

    # 只取补丁及外侧 1 像素环（仍在限制区域内）参与计算
    ring = (max(left, tx - 1), max(top, ty - 1), min(right, tx + tw + 1), min(bottom, ty + th + 1))
    canvas = np.asarray(surface.crop(ring).convert("RGB"), dtype=np.float32)
    local_limit = (0, 0, ring[2] - ring[0], ring[3] - ring[1])
    patch = _stretch_edges(canvas, tx - ring[0], ty - ring[1], tw, th, local_limit)
    patch = cv2.GaussianBlur(patch, (0, 0), sigmaX=BLUR_SIGMA, borderType=cv2.BORDER_REPLICATE)

    generator = rng if rng is not None else np.random.default_rng()
    noise = generator.uniform(-NOISE_AMPLITUDE, NOISE_AMPLITUDE, size=(th, tw, 1)).astype(np.float32)
    patch = np.clip(patch + noise, 0, 255).astype(np.uint8)

    healed = Image.fromarray(patch)
    if surface.mode != "RGB":
        healed = healed.convert(surface.mode)
    surface.paste(healed, (tx, ty))
    LOGGER.debug("修补区域: x=%d y=%d w=%d h=%d", tx, ty, tw, th)


def _limit_rect(size: tuple[int, int], render_rect: Rect, clip: Optional[Rect]) -> tuple[int, int, int, int]:
    """render_rect、clip 与画布三者的交集，返回 (left, top, right, bottom)。"""

    rx, ry, rw, rh = render_rect
    left, top, right, bottom = rx, ry, rx + rw, ry + rh
    if clip is not None:
        cx, cy, cw, ch = clip
        left, top = max(left, cx), max(top, cy)
        right, bottom = min(right, cx + cw), min(bottom, cy + ch)
    left, top = max(left, 0), max(top, 0)
    right, bottom = min(right, size[0]), min(bottom, size[1])
    return math.floor(left), math.floor(top), math.floor(right), math.floor(bottom)


def _padded_bounds(
    size: tuple[int, int], defect: DefectBox, render_rect: Rect, clip: Optional[Rect]
) -> Optional[tuple[int, int, int, int]]:
    rx, ry, rw, rh = render_rect
    x = rx + (defect.xmin / PERMILLE) * rw
    y = ry + (defect.ymin / PERMILLE) * rh
    w = ((defect.xmax - defect.xmin) / PERMILLE) * rw
    h = ((defect.ymax - defect.ymin) / PERMILLE) * rh

    left, top, right, bottom = _limit_rect(size, render_rect, clip)
    tx = max(left, math.floor(x - HEAL_PADDING))
    ty = max(top, math.floor(y - HEAL_PADDING))
    tw = min(right - tx, math.floor(w + HEAL_PADDING * 2))
    th = min(bottom - ty, math.floor(h + HEAL_PADDING * 2))
    if tw <= 0 or th <= 0:
        return None
    return tx, ty, tw, th


def _stretch_edges(
    canvas: np.ndarray, tx: int, ty: int, tw: int, th: int, limit: tuple[int, int, int, int]
) -> np.ndarray:
    """用补丁四周外侧 1 像素的行/列拉伸填充补丁，下/左/右三条以 50% 叠加。"""

    left, top, right, bottom = limit

    def row_at(y: int) -> np.ndarray:
        y = min(max(y, top), bottom - 1)
        return canvas[y, tx : tx + tw]

    def col_at(x: int) -> np.ndarray:
        x = min(max(x, left), right - 1)
        return canvas[ty : ty + th, x]

    patch = np.broadcast_to(row_at(ty - 1)[np.newaxis, :, :], (th, tw, 3)).copy()
    for strip in (
        np.broadcast_to(row_at(ty + th)[np.newaxis, :, :], (th, tw, 3)),
        np.broadcast_to(col_at(tx - 1)[:, np.newaxis, :], (th, tw, 3)),
        np.broadcast_to(col_at(tx + tw)[:, np.newaxis, :], (th, tw, 3)),
    ):
        patch = patch * (1.0 - EDGE_BLEND) + strip * EDGE_BLEND
    return patch.astype(np.float32)
