"""Decode Mapbox vector tiles and rasterize their road lines into cells."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import mapbox_vector_tile

from ..errors import TileDecodeError
from ..geo.rasterize import rasterize_segment
from ..models import CellSet, GeoPoint, TileAddress
from .tile_math import tile_point_to_geo

_LOGGER = logging.getLogger(__name__)

ROAD_LAYER_PATTERN = re.compile(r"road|transportation", re.IGNORECASE)
DEFAULT_EXTENT = 4096

__all__ = ["ROAD_LAYER_PATTERN", "find_road_layer", "decode_road_cells"]


def find_road_layer(layer_names: Iterable[str]) -> Optional[str]:
    """Return the first layer name that looks like a road network."""

    for name in layer_names:
        if ROAD_LAYER_PATTERN.search(name):
            return name
    return None


def _line_strings(geometry: Mapping[str, Any]) -> List[Sequence[Sequence[float]]]:
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if geom_type == "LineString":
        return [coords]
    if geom_type == "MultiLineString":
        return list(coords)
    return []


def decode_road_cells(data: bytes, address: TileAddress, cell_size: float) -> CellSet:
    """Return the cells covered by the road lines of one vector tile.

    A tile without a road-like layer yields an empty set.

    Raises:
        TileDecodeError: When ``data`` is not a decodable vector tile.
    """

    try:
        layers = mapbox_vector_tile.decode(
            data, default_options={"y_coord_down": True}
        )
    except Exception as exc:  # noqa: BLE001 - protobuf raises assorted errors
        raise TileDecodeError(f"Failed to decode vector tile {address}: {exc}") from exc

    cells: CellSet = set()
    layer_name = find_road_layer(layers.keys())
    if layer_name is None:
        _LOGGER.debug("Tile %s has no road layer (layers=%s)", address, list(layers))
        return cells

    layer = layers[layer_name]
    extent = int(layer.get("extent") or DEFAULT_EXTENT)
    for feature in layer.get("features", []):
        for line in _line_strings(feature.get("geometry") or {}):
            points: List[GeoPoint] = [
                tile_point_to_geo(address, float(px), float(py), extent)
                for px, py in line
            ]
            for start, end in zip(points, points[1:]):
                cells |= rasterize_segment(start, end, cell_size)
    _LOGGER.debug(
        "Decoded tile %s layer=%s cells=%d", address, layer_name, len(cells)
    )
    return cells
