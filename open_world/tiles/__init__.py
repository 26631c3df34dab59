"""Road tiles: archive access, vector tile decoding and the cell cache."""

from .circuit_breaker import CircuitBreaker
from .client import RoadQueryResult, TileCacheClient, TileResult, TileStatus
from .regions import has_road_coverage, tile_source_filename, tile_source_url
from .source import PMTilesSource, TileSource, create_tile_session
from .store import FileTileCellStore, MemoryTileCellStore, TileCellStore
from .tile_math import cover_tiles, geo_to_tile

__all__ = [
    "CircuitBreaker",
    "RoadQueryResult",
    "TileCacheClient",
    "TileResult",
    "TileStatus",
    "has_road_coverage",
    "tile_source_filename",
    "tile_source_url",
    "PMTilesSource",
    "TileSource",
    "create_tile_session",
    "FileTileCellStore",
    "MemoryTileCellStore",
    "TileCellStore",
    "cover_tiles",
    "geo_to_tile",
]
