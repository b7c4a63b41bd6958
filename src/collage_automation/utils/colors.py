"""颜色工具函数：HEX 解析与半透明填充色。"""

from __future__ import annotations

import re
from typing import Tuple

from collage_automation.core.exceptions import InvalidConfigurationError

HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    """将 ``#RGB`` / ``#RRGGBB`` 解析为 RGB 三元组，拼图背景色使用。"""

    if not value:
        raise InvalidConfigurationError("颜色值不能为空")

    match = HEX_COLOR_RE.match(value.strip())
    if not match:
        raise InvalidConfigurationError(f"无法解析颜色值: {value}")

    hex_value = match.group(1)
    if len(hex_value) == 3:
        hex_value = "".join(ch * 2 for ch in hex_value)

    return tuple(int(hex_value[i : i + 2], 16) for i in (0, 2, 4))  # type: ignore[return-value]


def with_opacity(rgb: Tuple[int, int, int], opacity: float) -> Tuple[int, int, int, int]:
    """附加不透明度 (0-1)，返回可直接用于 ImageDraw 的 RGBA 元组。"""

    if not 0.0 <= opacity <= 1.0:
        raise InvalidConfigurationError(f"不透明度必须在 0 到 1 之间: {opacity}")
    return rgb[0], rgb[1], rgb[2], round(opacity * 255)
