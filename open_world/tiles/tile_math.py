"""XYZ tile index math on the Web Mercator pyramid.

Tile (0, 0) is the north-west corner; x grows eastward and y southward.
"""

from __future__ import annotations

import math
from typing import List, Tuple

from ..geo.projection import to_planar
from ..models import BBox, GeoPoint, TileAddress


def geo_to_tile(point: GeoPoint, zoom: int) -> Tuple[int, int]:
    """Return the (x, y) index of the tile containing ``point``."""

    n = 2**zoom
    lat_rad = math.radians(point.lat)
    x = math.floor((point.lng + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    # Clamp to valid range
    x = max(0, min(n - 1, x))
    y = max(0, min(n - 1, y))
    return x, y


def cover_tiles(bbox: BBox, zoom: int) -> List[TileAddress]:
    """Return every tile in the index range spanned by the bbox corners."""

    x1, y1 = geo_to_tile(GeoPoint(bbox.min_lat, bbox.min_lng), zoom)
    x2, y2 = geo_to_tile(GeoPoint(bbox.max_lat, bbox.max_lng), zoom)
    return [
        TileAddress(zoom, x, y)
        for x in range(min(x1, x2), max(x1, x2) + 1)
        for y in range(min(y1, y2), max(y1, y2) + 1)
    ]


def tile_point_to_geo(
    address: TileAddress, px: float, py: float, extent: int = 4096
) -> GeoPoint:
    """Convert tile-local coordinates (y pointing down) to a geographic point."""

    n = 2**address.z
    fx = (address.x + px / extent) / n
    fy = (address.y + py / extent) / n
    lng = fx * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1.0 - 2.0 * fy))))
    return GeoPoint(lat, lng)


def planar_bounds(bbox: BBox) -> Tuple[float, float, float, float]:
    """Return ``(min_x, min_y, max_x, max_y)`` of the bbox in metres."""

    sw = to_planar(GeoPoint(bbox.min_lat, bbox.min_lng))
    ne = to_planar(GeoPoint(bbox.max_lat, bbox.max_lng))
    return min(sw.x, ne.x), min(sw.y, ne.y), max(sw.x, ne.x), max(sw.y, ne.y)
