"""环节三：测试水印区域修补。"""

from __future__ import annotations

import numpy as np
from PIL import Image, ImageDraw

from collage_automation.core.models import DefectBox
from collage_automation.processing.healing import HEAL_PADDING, heal_region


def make_surface() -> Image.Image:
    surface = Image.new("RGB", (200, 200), (128, 128, 128))
    # 水印：位于 (80, 80) - (100, 100)
    ImageDraw.Draw(surface).rectangle((80, 80, 99, 99), fill=(0, 0, 0))
    return surface


WATERMARK = DefectBox.from_bounds(True, 400, 400, 500, 500)
FULL_RECT = (0, 0, 200, 200)


def test_absent_defect_is_noop() -> None:
    surface = make_surface()
    before = surface.tobytes()

    heal_region(surface, DefectBox.absent(), FULL_RECT)
    heal_region(surface, DefectBox.from_bounds(True, 300, 300, 300, 500), FULL_RECT)

    assert surface.tobytes() == before


def test_heal_only_touches_padded_region() -> None:
    surface = make_surface()
    before = np.asarray(surface).copy()

    heal_region(surface, WATERMARK, FULL_RECT, rng=np.random.default_rng(0))

    after = np.asarray(surface)
    lo, hi = 80 - HEAL_PADDING, 100 + HEAL_PADDING
    outside = np.ones(after.shape[:2], dtype=bool)
    outside[lo:hi, lo:hi] = False
    assert np.array_equal(after[outside], before[outside])
    assert not np.array_equal(after[lo:hi, lo:hi], before[lo:hi, lo:hi])


def test_heal_replaces_watermark_with_surrounding_tone() -> None:
    surface = make_surface()

    heal_region(surface, WATERMARK, FULL_RECT, rng=np.random.default_rng(1))

    patch = np.asarray(surface)[80:100, 80:100].astype(np.int16)
    assert np.abs(patch - 128).max() <= 8


def test_heal_is_deterministic_with_seeded_rng() -> None:
    first = make_surface()
    second = make_surface()

    heal_region(first, WATERMARK, FULL_RECT, rng=np.random.default_rng(42))
    heal_region(second, WATERMARK, FULL_RECT, rng=np.random.default_rng(42))

    assert first.tobytes() == second.tobytes()


def test_heal_never_leaves_clip_rect() -> None:
    surface = Image.new("RGB", (200, 100), (200, 200, 200))
    ImageDraw.Draw(surface).rectangle((100, 0, 199, 99), fill=(10, 200, 10))
    before = np.asarray(surface).copy()

    # 源图绘制在左半格，水印贴近右边缘
    defect = DefectBox.from_bounds(True, 900, 400, 1000, 600)
    heal_region(surface, defect, (0, 0, 100, 100), clip=(0, 0, 100, 100), rng=np.random.default_rng(3))

    after = np.asarray(surface)
    assert np.array_equal(after[:, 100:], before[:, 100:])


def test_heal_depends_only_on_pixels_around_patch() -> None:
    near = make_surface()
    far = make_surface()
    # 远离补丁 (65-115) 的区域内容不同
    ImageDraw.Draw(far).rectangle((150, 150, 199, 199), fill=(250, 10, 10))
    ImageDraw.Draw(far).rectangle((0, 0, 40, 199), fill=(10, 10, 250))

    heal_region(near, WATERMARK, FULL_RECT, rng=np.random.default_rng(5))
    heal_region(far, WATERMARK, FULL_RECT, rng=np.random.default_rng(5))

    lo, hi = 80 - HEAL_PADDING, 100 + HEAL_PADDING
    assert np.array_equal(np.asarray(near)[lo:hi, lo:hi], np.asarray(far)[lo:hi, lo:hi])
