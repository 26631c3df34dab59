"""Global pytest fixtures & helpers.

Adds project root to path and provides fake tile sources and encoded vector
tiles so tile cache tests never touch the network.
"""
from __future__ import annotations

import gzip
import os
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import mapbox_vector_tile
from pmtiles.tile import Compression, TileType, zxy_to_tileid
from pmtiles.writer import Writer
from shapely.geometry import LineString

from open_world.errors import TileFetchError
from open_world.models import BBox, GeoPoint, TileAddress
from open_world.tiles.tile_math import geo_to_tile, tile_point_to_geo

# Zoom 14 tile over Monaco.
MONACO_LAT = 43.7384
MONACO_LNG = 7.4246


# --- Factory helpers -------------------------------------------------
def monaco_tile(zoom: int = 14) -> TileAddress:
    x, y = geo_to_tile(GeoPoint(MONACO_LAT, MONACO_LNG), zoom)
    return TileAddress(zoom, x, y)


def tile_bbox(address: TileAddress, inset: float = 64.0, extent: int = 4096) -> BBox:
    """Return a bbox strictly inside one tile (``inset`` in tile units)."""

    nw = tile_point_to_geo(address, inset, inset, extent)
    se = tile_point_to_geo(address, extent - inset, extent - inset, extent)
    return BBox(min_lat=se.lat, max_lat=nw.lat, min_lng=nw.lng, max_lng=se.lng)


def encode_tile(
    lines: Sequence[Sequence[Tuple[float, float]]],
    layer_name: str = "roads",
) -> bytes:
    """Encode line strings (tile coordinates, y down) as one vector tile."""

    features = [
        {"geometry": LineString(line), "properties": {"kind": "street"}}
        for line in lines
    ]
    return mapbox_vector_tile.encode(
        [{"name": layer_name, "features": features}],
        default_options={"y_coord_down": True},
    )


class FakeTileSource:
    """In-memory tile source that records every fetch."""

    def __init__(
        self,
        tiles: Optional[Dict[TileAddress, bytes]] = None,
        default: Optional[bytes] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.tiles = dict(tiles or {})
        self.default = default
        self.error = error
        self.calls: List[TileAddress] = []
        self._lock = threading.Lock()

    def fetch(self, address: TileAddress) -> Optional[bytes]:
        with self._lock:
            self.calls.append(address)
        if self.error is not None:
            raise self.error
        return self.tiles.get(address, self.default)


def failing_source() -> FakeTileSource:
    return FakeTileSource(error=TileFetchError("connection refused"))


def write_archive(path: Path, tiles: Dict[TileAddress, bytes]) -> None:
    """Write a gzip MVT PMTiles archive holding ``tiles``."""

    with path.open("wb") as handle:
        writer = Writer(handle)
        for address in sorted(tiles, key=lambda a: zxy_to_tileid(a.z, a.x, a.y)):
            writer.write_tile(
                zxy_to_tileid(address.z, address.x, address.y),
                gzip.compress(tiles[address]),
            )
        writer.finalize(
            {
                "tile_type": TileType.MVT,
                "tile_compression": Compression.GZIP,
                "min_zoom": 14,
                "max_zoom": 14,
                "min_lon_e7": int(7.0 * 10000000),
                "min_lat_e7": int(43.0 * 10000000),
                "max_lon_e7": int(8.0 * 10000000),
                "max_lat_e7": int(44.0 * 10000000),
                "center_zoom": 14,
                "center_lon_e7": int(7.42 * 10000000),
                "center_lat_e7": int(43.73 * 10000000),
            },
            {"name": "roads"},
        )


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def road_tile() -> TileAddress:
    return monaco_tile()


@pytest.fixture
def road_tile_bytes() -> bytes:
    # A horizontal and a vertical street crossing mid tile.
    return encode_tile([[(512, 2048), (3584, 2048)], [(2048, 512), (2048, 3584)]])
