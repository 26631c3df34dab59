"""Spherical Web Mercator projection and the square metric grid built on it.

Geographic coordinates are projected to metres (EPSG:3857 on a sphere of
radius ``EARTH_RADIUS_M``) and the plane is cut into square cells of a
configurable size. Cells are identified by canonical ``"x,y"`` keys.

Latitudes of exactly +/-90 degrees are outside the projection domain; GPS
tracks never reach the poles so this is not checked at runtime.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, List, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from ..errors import MalformedKeyError
from ..models import CellCoord, GeoPoint, PlanarPoint, Rectangle

EARTH_RADIUS_M = 6378137.0
ORIGIN_SHIFT = math.pi * EARTH_RADIUS_M

_CELL_KEY_RE = re.compile(r"^(-?\d+),(-?\d+)$")

__all__ = [
    "EARTH_RADIUS_M",
    "ORIGIN_SHIFT",
    "to_planar",
    "to_geo",
    "planar_arrays",
    "cell_of",
    "center_of",
    "cell_key",
    "parse_cell_key",
    "cell_bounds",
    "great_circle_distance",
    "resample",
    "trim_ends",
]


def to_planar(point: GeoPoint) -> PlanarPoint:
    """Project a WGS84 point to Web Mercator metres."""

    x = point.lng * ORIGIN_SHIFT / 180.0
    lat_rad = math.radians(point.lat)
    y = EARTH_RADIUS_M * math.log(math.tan(math.pi / 4.0 + lat_rad / 2.0))
    return PlanarPoint(x, y)


def to_geo(point: PlanarPoint) -> GeoPoint:
    """Inverse of :func:`to_planar`."""

    lng = point.x / ORIGIN_SHIFT * 180.0
    lat_rad = 2.0 * math.atan(math.exp(point.y / EARTH_RADIUS_M)) - math.pi / 2.0
    lat = math.degrees(lat_rad)
    return GeoPoint(lat, lng)


def planar_arrays(
    lngs: ArrayLike, lats: ArrayLike
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Vectorised :func:`to_planar` taking longitude/latitude arrays."""

    lng_arr = np.asarray(lngs, dtype=float)
    lat_arr = np.asarray(lats, dtype=float)
    xs = lng_arr * ORIGIN_SHIFT / 180.0
    ys = EARTH_RADIUS_M * np.log(np.tan(np.pi / 4.0 + np.radians(lat_arr) / 2.0))
    return xs, ys


def cell_of(point: PlanarPoint, cell_size: float) -> CellCoord:
    """Return the cell containing ``point`` (floor division on both axes)."""

    return CellCoord(
        int(math.floor(point.x / cell_size)), int(math.floor(point.y / cell_size))
    )


def center_of(cell: CellCoord, cell_size: float) -> PlanarPoint:
    return PlanarPoint(
        cell.x * cell_size + cell_size / 2.0, cell.y * cell_size + cell_size / 2.0
    )


def cell_key(cell: CellCoord) -> str:
    return f"{cell.x},{cell.y}"


def parse_cell_key(key: str) -> CellCoord:
    """Parse a canonical cell key.

    Raises:
        MalformedKeyError: When ``key`` is not two comma separated integers.
    """

    if not isinstance(key, str):
        raise MalformedKeyError(f"Cell key must be a string, got {type(key).__name__}")
    match = _CELL_KEY_RE.match(key)
    if match is None:
        raise MalformedKeyError(f"Malformed cell key: {key!r}")
    return CellCoord(int(match.group(1)), int(match.group(2)))


def cell_bounds(cells: Iterable[str]) -> Optional[Rectangle]:
    """Return the bounding rectangle of a cell set, or ``None`` when empty."""

    min_x = min_y = math.inf
    max_x = max_y = -math.inf
    seen = False
    for key in cells:
        cell = parse_cell_key(key)
        seen = True
        min_x = min(min_x, cell.x)
        min_y = min(min_y, cell.y)
        max_x = max(max_x, cell.x)
        max_y = max(max_y, cell.y)
    if not seen:
        return None
    return Rectangle(int(min_x), int(min_y), int(max_x), int(max_y))


def great_circle_distance(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance in metres."""

    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(math.radians(a.lat))
        * math.cos(math.radians(b.lat))
        * math.sin(d_lng / 2.0) ** 2
    )
    return EARTH_RADIUS_M * 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))


def _haversine_arrays(
    lats: NDArray[np.float64], lngs: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Return the haversine length of every consecutive pair of points."""

    lat_rad = np.radians(lats)
    d_lat = np.diff(lat_rad)
    d_lng = np.radians(np.diff(lngs))
    h = (
        np.sin(d_lat / 2.0) ** 2
        + np.cos(lat_rad[:-1]) * np.cos(lat_rad[1:]) * np.sin(d_lng / 2.0) ** 2
    )
    h = np.clip(h, 0.0, 1.0)
    return EARTH_RADIUS_M * 2.0 * np.arctan2(np.sqrt(h), np.sqrt(1.0 - h))


def _cumulative_lengths(
    points: Sequence[GeoPoint],
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    lats = np.asarray([p.lat for p in points], dtype=float)
    lngs = np.asarray([p.lng for p in points], dtype=float)
    cumulative = np.concatenate(([0.0], np.cumsum(_haversine_arrays(lats, lngs))))
    return lats, lngs, cumulative


def _point_at(
    distance: float,
    lats: NDArray[np.float64],
    lngs: NDArray[np.float64],
    cumulative: NDArray[np.float64],
) -> GeoPoint:
    """Interpolate lat/lng linearly inside the segment bracketing ``distance``."""

    index = int(np.searchsorted(cumulative, distance, side="right"))
    index = min(max(index, 1), len(cumulative) - 1)
    start, end = cumulative[index - 1], cumulative[index]
    span = end - start
    ratio = 0.0 if span <= 0 else (distance - start) / span
    lat = lats[index - 1] + (lats[index] - lats[index - 1]) * ratio
    lng = lngs[index - 1] + (lngs[index] - lngs[index - 1]) * ratio
    return GeoPoint(float(lat), float(lng))


def resample(polyline: Sequence[GeoPoint], step_m: float) -> List[PlanarPoint]:
    """Sample a polyline every ``step_m`` metres of travelled arc length.

    The first and last input points are always emitted, once each.
    Intermediate samples interpolate latitude/longitude linearly between the
    two vertices that bracket the step boundary.
    """

    if step_m <= 0:
        raise ValueError("step_m must be greater than zero")
    if not polyline:
        return []
    first, last = polyline[0], polyline[-1]
    if len(polyline) == 1:
        return [to_planar(first)]
    lats, lngs, cumulative = _cumulative_lengths(polyline)
    total = float(cumulative[-1])
    targets = np.arange(step_m, total, step_m)
    # The end point is appended below; drop a target that lands on it.
    targets = targets[targets < total - step_m * 1e-6]
    sample_lats = np.interp(targets, cumulative, lats)
    sample_lngs = np.interp(targets, cumulative, lngs)
    samples = [to_planar(first)]
    samples.extend(
        to_planar(GeoPoint(float(lat), float(lng)))
        for lat, lng in zip(sample_lats, sample_lngs)
    )
    samples.append(to_planar(last))
    return samples


def trim_ends(polyline: Sequence[GeoPoint], distance_m: float) -> List[GeoPoint]:
    """Remove ``distance_m`` of arc length from both ends of a polyline.

    Used to hide where an activity starts and finishes. When the polyline is
    not longer than ``2 * distance_m`` nothing is left and an empty list is
    returned.
    """

    if distance_m <= 0:
        return list(polyline)
    if len(polyline) < 2:
        return []
    lats, lngs, cumulative = _cumulative_lengths(polyline)
    total = float(cumulative[-1])
    start_at = distance_m
    end_at = total - distance_m
    if end_at <= start_at:
        return []
    result = [_point_at(start_at, lats, lngs, cumulative)]
    for index in range(len(polyline)):
        if start_at < cumulative[index] < end_at:
            result.append(polyline[index])
    result.append(_point_at(end_at, lats, lngs, cumulative))
    return result
