"""Compact a cell set into non-overlapping rectangles.

The visited set can hold millions of cells; rendering and storing it as
rectangles is far cheaper. The compaction is a greedy row scan:

1. Cells are visited in (y, x) order.
2. From every unclaimed cell a rectangle grows right across present,
   unclaimed cells, then down while the whole next row of the same width is
   present and unclaimed.
3. Rectangles with the same x-extent that touch vertically are merged.

The result is lossless and non-overlapping but not guaranteed minimal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple

from ..models import CellSet, Rectangle
from .projection import cell_bounds, parse_cell_key

_Cell = Tuple[int, int]

__all__ = [
    "GridStats",
    "compact",
    "rectangle_to_cells",
    "rectangles_to_cells",
    "point_in_rectangles",
    "compute_grid_stats",
]


def compact(cells: Iterable[str]) -> List[Rectangle]:
    """Return rectangles covering exactly ``cells``, pairwise disjoint."""

    present: Set[_Cell] = set()
    for key in cells:
        coord = parse_cell_key(key)
        present.add((coord.x, coord.y))
    if not present:
        return []

    claimed: Set[_Cell] = set()
    rectangles: List[Rectangle] = []
    for x, y in sorted(present, key=lambda cell: (cell[1], cell[0])):
        if (x, y) in claimed:
            continue
        rectangles.append(_grow_rectangle(x, y, present, claimed))
    return _merge_vertical(rectangles)


def _free(cell: _Cell, present: Set[_Cell], claimed: Set[_Cell]) -> bool:
    return cell in present and cell not in claimed


def _grow_rectangle(
    x: int, y: int, present: Set[_Cell], claimed: Set[_Cell]
) -> Rectangle:
    width = 1
    while _free((x + width, y), present, claimed):
        width += 1

    height = 1
    while all(
        _free((x + dx, y + height), present, claimed) for dx in range(width)
    ):
        height += 1

    for dy in range(height):
        for dx in range(width):
            claimed.add((x + dx, y + dy))
    return Rectangle(x, y, x + width - 1, y + height - 1)


def _merge_vertical(rectangles: List[Rectangle]) -> List[Rectangle]:
    """Merge vertically adjacent rectangles that share their x-extent."""

    if not rectangles:
        return []
    ordered = sorted(rectangles, key=lambda r: (r.min_x, r.max_x, r.min_y))
    merged: List[Rectangle] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if (
            nxt.min_x == current.min_x
            and nxt.max_x == current.max_x
            and current.max_y + 1 == nxt.min_y
        ):
            current = Rectangle(current.min_x, current.min_y, current.max_x, nxt.max_y)
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def rectangle_to_cells(rect: Rectangle) -> CellSet:
    return {
        f"{x},{y}"
        for y in range(rect.min_y, rect.max_y + 1)
        for x in range(rect.min_x, rect.max_x + 1)
    }


def rectangles_to_cells(rectangles: Iterable[Rectangle]) -> CellSet:
    cells: CellSet = set()
    for rect in rectangles:
        cells |= rectangle_to_cells(rect)
    return cells


def point_in_rectangles(x: int, y: int, rectangles: Iterable[Rectangle]) -> bool:
    return any(rect.contains(x, y) for rect in rectangles)


@dataclass(slots=True)
class GridStats:
    """Summary of how well a cell set compacted."""

    total_cells: int
    rectangle_count: int
    average_rectangle_size: float
    compression_ratio: float
    bounds: Optional[Rectangle]


def compute_grid_stats(cells: CellSet, rectangles: List[Rectangle]) -> GridStats:
    return GridStats(
        total_cells=len(cells),
        rectangle_count=len(rectangles),
        average_rectangle_size=len(cells) / max(len(rectangles), 1),
        compression_ratio=len(rectangles) / max(len(cells), 1),
        bounds=cell_bounds(cells),
    )
