"""版式网格计算。"""

from __future__ import annotations

from dataclasses import dataclass

from collage_automation.core.exceptions import InvalidConfigurationError
from collage_automation.core.models import LayoutKind


@dataclass(slots=True, frozen=True)
class CellRect:
    x: int
    y: int
    width: int
    height: int

    def as_tuple(self) -> tuple[int, int, int, int]:
        return self.x, self.y, self.width, self.height


def _split_axis(length: int, count: int, gap: int) -> list[tuple[int, int]]:
    """沿一个轴切分 count 个单元，返回 (起点, 长度)。

    单元长度为 (length - gap*(count+1)) // count，除不尽的余数并入最后一个单元，
    保证单元与间隙恰好铺满整个轴。
    """

    usable = length - gap * (count + 1)
    if usable < count:
        raise InvalidConfigurationError(f"画布 {length}px 放不下 {count} 个单元（间距 {gap}px）")

    size = usable // count
    remainder = usable - size * count
    spans = []
    for index in range(count):
        start = gap + index * (size + gap)
        extent = size + remainder if index == count - 1 else size
        spans.append((start, extent))
    return spans


def compute_cells(kind: LayoutKind, width: int, height: int, gap: int) -> list[CellRect]:
    """按行优先顺序返回版式的所有单元格矩形。"""

    cols, rows = kind.grid
    col_spans = _split_axis(width, cols, gap)
    row_spans = _split_axis(height, rows, gap)
    return [CellRect(x, y, w, h) for (y, h) in row_spans for (x, w) in col_spans]
