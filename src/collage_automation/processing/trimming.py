"""自动裁边：检测内容包围盒并裁掉纯白/透明边框。"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from PIL import Image

LOGGER = logging.getLogger(__name__)

ALPHA_THRESHOLD = 50
WHITE_THRESHOLD = 230
MIN_CROP_SIZE = 10


def content_mask(image: Image.Image) -> np.ndarray:
    """返回布尔矩阵：True 表示内容像素（不透明且非近白色）。"""

    rgba = np.asarray(image.convert("RGBA"))
    rgb = rgba[..., :3]
    opaque = rgba[..., 3] >= ALPHA_THRESHOLD
    near_white = np.all(rgb > WHITE_THRESHOLD, axis=-1)
    return opaque & ~near_white


def find_content_box(image: Image.Image) -> Optional[tuple[int, int, int, int]]:
    """计算内容包围盒 (left, top, right, bottom)，右/下为开区间。

    先确定上下边界，再在 [top, bottom) 行带内确定左右边界。
    没有任何内容时返回 None。
    """

    mask = content_mask(image)
    rows = mask.any(axis=1)
    if not rows.any():
        return None

    height, width = mask.shape
    top = int(np.argmax(rows))
    bottom = height - int(np.argmax(rows[::-1]))

    cols = mask[top:bottom].any(axis=0)
    if not cols.any():
        return None
    left = int(np.argmax(cols))
    right = width - int(np.argmax(cols[::-1]))
    return left, top, right, bottom


def trim_borders(image: Image.Image) -> Image.Image:
    """裁掉白色/透明边框。

    以下情况原样返回输入图像：无内容、包围盒退化、小于 10x10、或包围盒即整图。
    裁剪为纯像素拷贝，不做重采样，因此对结果再次调用结果不变。
    """

    box = find_content_box(image)
    if box is None:
        return image

    left, top, right, bottom = box
    if right <= left or bottom <= top:
        return image

    trim_w = right - left
    trim_h = bottom - top
    if trim_w < MIN_CROP_SIZE or trim_h < MIN_CROP_SIZE:
        LOGGER.debug("内容区域过小 (%dx%d)，保留原图", trim_w, trim_h)
        return image

    if trim_w == image.width and trim_h == image.height:
        return image

    LOGGER.debug("裁边: %dx%d -> %dx%d", image.width, image.height, trim_w, trim_h)
    cropped = image.crop(box)
    cropped.load()
    return cropped
