"""Convert line and polygon geometry into grid cells."""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Sequence, Union

import numpy as np
import shapely
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from ..errors import MalformedInputError, NonFiniteCoordinateError
from ..models import CellCoord, CellSet, GeoPoint, PlanarPoint
from .projection import cell_key, cell_of, planar_arrays, to_planar

PolygonLike = Union[Mapping[str, Any], Polygon, MultiPolygon]

__all__ = [
    "rasterize_planar_segment",
    "rasterize_segment",
    "rasterize_line",
    "rasterize_polygon",
    "cells_of_points",
]


def _require_finite(*values: float) -> None:
    for value in values:
        if not math.isfinite(value):
            raise NonFiniteCoordinateError(f"Non-finite coordinate: {value!r}")


def rasterize_planar_segment(
    start: PlanarPoint, end: PlanarPoint, cell_size: float
) -> CellSet:
    """Return the cells touched by a straight planar segment.

    Samples are spaced at most half a cell apart so a diagonal run cannot
    slip between two filled cells. Both endpoints are always sampled.
    """

    _require_finite(start.x, start.y, end.x, end.y)
    dx = end.x - start.x
    dy = end.y - start.y
    steps = math.ceil(math.hypot(dx, dy) / (cell_size / 2.0))
    cells: CellSet = set()
    for step in range(steps + 1):
        t = 0.0 if steps == 0 else step / steps
        point = PlanarPoint(start.x + dx * t, start.y + dy * t)
        cells.add(cell_key(cell_of(point, cell_size)))
    return cells


def rasterize_segment(start: GeoPoint, end: GeoPoint, cell_size: float) -> CellSet:
    """Return the cells touched by the segment between two geographic points."""

    _require_finite(start.lat, start.lng, end.lat, end.lng)
    return rasterize_planar_segment(to_planar(start), to_planar(end), cell_size)


def rasterize_line(points: Sequence[GeoPoint], cell_size: float) -> CellSet:
    """Union of :func:`rasterize_segment` over consecutive polyline vertices."""

    cells: CellSet = set()
    if len(points) == 1:
        return rasterize_segment(points[0], points[0], cell_size)
    for start, end in zip(points, points[1:]):
        cells |= rasterize_segment(start, end, cell_size)
    return cells


def _planar_coords(coords: np.ndarray) -> np.ndarray:
    xs, ys = planar_arrays(coords[:, 0], coords[:, 1])
    return np.column_stack((xs, ys))


def _as_geometry(polygon: PolygonLike) -> BaseGeometry:
    if isinstance(polygon, BaseGeometry):
        geometry = polygon
    else:
        payload: Mapping[str, Any] = polygon
        if payload.get("type") == "Feature":
            payload = payload.get("geometry") or {}
        try:
            geometry = shape(payload)
        except (AttributeError, KeyError, TypeError, ValueError, ShapelyError) as exc:
            raise MalformedInputError(
                f"Unreadable polygon geometry: {exc}"
            ) from exc
    if not isinstance(geometry, (Polygon, MultiPolygon)):
        raise MalformedInputError(
            f"Expected Polygon or MultiPolygon, got {geometry.geom_type}"
        )
    return geometry


def rasterize_polygon(polygon: PolygonLike, cell_size: float) -> CellSet:
    """Return every cell whose centre lies strictly inside ``polygon``.

    Accepts a GeoJSON Polygon/MultiPolygon (or Feature wrapping one) in
    lng/lat order, or a shapely geometry in the same order. Every cell of
    the projected bounding box is tested, so this is meant for city-sized
    areas, not countries at fine resolution.
    """

    geometry = _as_geometry(polygon)
    coords = shapely.get_coordinates(geometry)
    if not np.all(np.isfinite(coords)):
        raise NonFiniteCoordinateError("Polygon contains non-finite coordinates")
    cells: CellSet = set()
    if geometry.is_empty:
        return cells
    planar = shapely.transform(geometry, _planar_coords)
    shapely.prepare(planar)
    min_x, min_y, max_x, max_y = planar.bounds
    first = cell_of(PlanarPoint(min_x, min_y), cell_size)
    last = cell_of(PlanarPoint(max_x, max_y), cell_size)
    cell_xs = np.arange(first.x, last.x + 1)
    centers_x = cell_xs * cell_size + cell_size / 2.0
    for cell_y in range(first.y, last.y + 1):
        center_y = cell_y * cell_size + cell_size / 2.0
        centers_y = np.full_like(centers_x, center_y)
        inside = shapely.contains_xy(planar, centers_x, centers_y)
        cells.update(
            cell_key(CellCoord(int(cell_x), cell_y)) for cell_x in cell_xs[inside]
        )
    return cells


def cells_of_points(points: Iterable[PlanarPoint], cell_size: float) -> CellSet:
    """Map planar samples to their cells."""

    return {cell_key(cell_of(point, cell_size)) for point in points}
