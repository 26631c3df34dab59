"""Fuzzy coverage statistics between a target cell set and visited cells.

A target cell counts as visited when it, or any of its eight neighbours, is
in the visited set. Only the target is dilated; this absorbs the usual GPS
drift between recorded tracks and map-sourced road geometry.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .config import CITY_STATS_TOP_N
from .geo.projection import cell_of, parse_cell_key, to_planar
from .models import BBox, CellSet, City, CityStats, GeoPoint

_LOGGER = logging.getLogger(__name__)

_NEIGHBOUR_OFFSETS = tuple(
    (dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)
)

__all__ = [
    "visited_count",
    "visited_percentage",
    "compute_city_stats",
    "top_cities",
    "viewport_cell_count",
]


def _is_visited(key: str, visited: CellSet) -> bool:
    if key in visited:
        return True
    cell = parse_cell_key(key)
    return any(
        f"{cell.x + dx},{cell.y + dy}" in visited for dx, dy in _NEIGHBOUR_OFFSETS
    )


def visited_count(target: Iterable[str], visited: CellSet) -> int:
    """Count target cells matched directly or through a neighbour."""

    return sum(1 for key in target if _is_visited(key, visited))


def visited_percentage(target: CellSet, visited: CellSet) -> float:
    """Percentage (0-100) of ``target`` covered by ``visited``; 0 when empty."""

    if not target:
        return 0.0
    return 100.0 * visited_count(target, visited) / len(target)


def compute_city_stats(cities: Iterable[City], visited: CellSet) -> List[CityStats]:
    """Return coverage per city, highest percentage first.

    Cities whose road cells were computed are measured against their roads
    (an empty road set yields 0%); the rest fall back to the interior cells.
    """

    stats: List[CityStats] = []
    for city in cities:
        if city.road_cells is not None:
            target, basis = city.road_cells, "roads"
        else:
            target, basis = city.interior_cells, "area"
        count = visited_count(target, visited)
        percentage = 100.0 * count / len(target) if target else 0.0
        stats.append(
            CityStats(
                city_id=city.id,
                display_name=city.id,
                total_cells=len(target),
                visited_count=count,
                percentage=percentage,
                basis=basis,
            )
        )
    stats.sort(key=lambda item: item.percentage, reverse=True)
    _LOGGER.debug("Computed coverage for %d cities", len(stats))
    return stats


def top_cities(stats: List[CityStats], n: Optional[int] = None) -> List[CityStats]:
    """Return the ``n`` best covered cities (``CITY_STATS_TOP_N`` by default)."""

    limit = CITY_STATS_TOP_N if n is None else n
    if limit <= 0:
        return []
    ranked = sorted(stats, key=lambda item: item.percentage, reverse=True)
    return ranked[:limit]


def viewport_cell_count(bbox: BBox, cell_size: float) -> int:
    """Approximate number of cells spanned by ``bbox``."""

    sw = cell_of(to_planar(GeoPoint(bbox.min_lat, bbox.min_lng)), cell_size)
    ne = cell_of(to_planar(GeoPoint(bbox.max_lat, bbox.max_lng)), cell_size)
    return abs((ne.x - sw.x) * (ne.y - sw.y))
