"""Projection, rasterization and rectangle compaction for the cell grid."""

from .projection import (
    cell_bounds,
    cell_key,
    cell_of,
    center_of,
    great_circle_distance,
    parse_cell_key,
    resample,
    to_geo,
    to_planar,
    trim_ends,
)
from .rasterize import (
    rasterize_line,
    rasterize_planar_segment,
    rasterize_polygon,
    rasterize_segment,
)
from .rectangles import compact, compute_grid_stats, rectangles_to_cells

__all__ = [
    "cell_bounds",
    "cell_key",
    "cell_of",
    "center_of",
    "great_circle_distance",
    "parse_cell_key",
    "resample",
    "to_geo",
    "to_planar",
    "trim_ends",
    "rasterize_line",
    "rasterize_planar_segment",
    "rasterize_polygon",
    "rasterize_segment",
    "compact",
    "compute_grid_stats",
    "rectangles_to_cells",
]
