"""环节五：测试 9:16 封面生成。"""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from collage_automation.processing.cover import COVER_SIZE, generate_cover


@pytest.mark.parametrize("source_size", [(400, 300), (90, 160), (50, 400), (1000, 1000)])
def test_cover_has_fixed_size_and_no_border(source_size: tuple[int, int]) -> None:
    image = Image.new("RGB", source_size, (10, 90, 200))

    cover = generate_cover(image, size=(216, 384))

    assert cover.size == (216, 384)
    assert cover.mode == "RGB"
    pixels = np.asarray(cover)
    assert not np.all(pixels == 255, axis=-1).any()


def test_cover_default_size_is_portrait_4k() -> None:
    assert COVER_SIZE == (2160, 3840)
    cover = generate_cover(Image.new("RGB", (20, 20), "black"))
    assert cover.size == COVER_SIZE


def test_cover_crops_centered() -> None:
    # 左右两侧红色，中间蓝色；竖版封面只保留中间部分
    image = Image.new("RGB", (300, 100), "red")
    image.paste(Image.new("RGB", (100, 100), "blue"), (100, 0))

    cover = generate_cover(image, size=(90, 160))

    assert cover.getpixel((45, 80)) == (0, 0, 255)
    assert cover.getpixel((0, 0))[2] > 200


def test_cover_flattens_transparency_on_white() -> None:
    image = Image.new("RGBA", (40, 40), (0, 0, 0, 0))

    cover = generate_cover(image, size=(90, 160))

    assert cover.getpixel((45, 80)) == (255, 255, 255)
