"""Dataclasses shared by the grid, tile and statistics layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

# Canonical "x,y" cell keys.
CellSet = Set[str]
LatLng = Tuple[float, float]


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """WGS84 coordinate in degrees."""

    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class PlanarPoint:
    """Spherical Web Mercator coordinate in metres."""

    x: float
    y: float


@dataclass(frozen=True, slots=True)
class CellCoord:
    """Integer grid cell index."""

    x: int
    y: int


@dataclass(frozen=True, slots=True)
class Rectangle:
    """Axis-aligned block of cells, bounds inclusive."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def area(self) -> int:
        return self.width * self.height

    def contains(self, x: int, y: int) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def to_dict(self) -> Dict[str, int]:
        return {
            "minX": self.min_x,
            "minY": self.min_y,
            "maxX": self.max_x,
            "maxY": self.max_y,
        }


@dataclass(frozen=True, slots=True)
class BBox:
    """Geographic query box in degrees."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(
            (self.min_lat + self.max_lat) / 2.0, (self.min_lng + self.max_lng) / 2.0
        )


@dataclass(frozen=True, slots=True)
class TileAddress:
    """Vector tile index at a single zoom level."""

    z: int
    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


@dataclass(slots=True)
class TileCacheEntry:
    """Rasterized road cells for one tile at one cell size."""

    address: TileAddress
    cell_size: float
    cells: CellSet
    timestamp: Optional[datetime] = None


@dataclass(slots=True)
class ProcessingConfig:
    """Settings that shape how activities become visited cells."""

    cell_size: float = 25.0
    sampling_step: float = 12.5
    privacy_distance: float = 100.0
    skip_private: bool = False


@dataclass(slots=True)
class Activity:
    """Minimal activity record: identity, privacy flag and encoded track."""

    id: int
    polyline: Optional[str] = None
    private: bool = False
    name: str = ""
    start_latlng: Optional[LatLng] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Activity":
        """Build an activity from a Strava-style summary payload."""

        map_block = payload.get("map") or {}
        encoded = map_block.get("summary_polyline") or map_block.get("polyline")
        start = payload.get("start_latlng")
        start_latlng: Optional[LatLng] = None
        if start and len(start) >= 2:
            start_latlng = (float(start[0]), float(start[1]))
        private = bool(payload.get("private")) or (
            payload.get("visibility") == "only_me"
        )
        return cls(
            id=int(payload["id"]),
            polyline=encoded or None,
            private=private,
            name=str(payload.get("name") or ""),
            start_latlng=start_latlng,
        )


@dataclass(slots=True)
class City:
    """A discovered city with its rasterized interior and road network.

    ``road_cells`` stays ``None`` until road tiles were processed for the
    city (or when no tile source covers it); an empty set means the roads
    were computed and none were found.
    """

    id: str
    name: str
    country: str
    boundary: Dict[str, Any]
    interior_cells: CellSet
    region: Optional[str] = None
    road_cells: Optional[CellSet] = None
    center: Optional[GeoPoint] = None


@dataclass(slots=True)
class CityStats:
    city_id: str
    display_name: str
    total_cells: int
    visited_count: int
    percentage: float
    basis: str = "area"


@dataclass(slots=True)
class ProcessingResult:
    """Outcome of one processing run over a batch of activities."""

    cells_added: int
    total_cells: int
    rectangles: List[Rectangle] = field(default_factory=list)
    processed_activities: int = 0
