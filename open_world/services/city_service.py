"""City coverage service.

Keeps the known cities, resolves their road networks through the regional
tile archives and ranks them by how much of that network was visited.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional

from ..config import (
    CELL_SIZE_M,
    ROAD_TILE_ZOOM,
    TILES_BASE_URL,
    VIEWPORT_MAX_CELLS,
)
from ..geo.projection import cell_bounds, center_of, to_geo
from ..geo.rasterize import rasterize_polygon
from ..models import BBox, CellCoord, CellSet, City, CityStats, GeoPoint
from ..stats import (
    compute_city_stats,
    top_cities,
    viewport_cell_count,
    visited_percentage,
)
from ..tiles.client import RoadQueryResult, TileCacheClient
from ..tiles.regions import tile_source_filename, tile_source_url
from ..tiles.store import MemoryTileCellStore, TileCellStore

ClientFactory = Callable[[str, TileCellStore], TileCacheClient]


def _default_client_factory(url: str, store: TileCellStore) -> TileCacheClient:
    return TileCacheClient(url, store=store)


def cells_bbox(cells: Iterable[str], cell_size: float) -> Optional[BBox]:
    """Return the geographic box spanned by the centres of ``cells``."""

    bounds = cell_bounds(cells)
    if bounds is None:
        return None
    sw = to_geo(center_of(CellCoord(bounds.min_x, bounds.min_y), cell_size))
    ne = to_geo(center_of(CellCoord(bounds.max_x, bounds.max_y), cell_size))
    return BBox(
        min_lat=min(sw.lat, ne.lat),
        max_lat=max(sw.lat, ne.lat),
        min_lng=min(sw.lng, ne.lng),
        max_lng=max(sw.lng, ne.lng),
    )


class CityService:
    """Cities, their road cells and their coverage statistics."""

    def __init__(
        self,
        cell_size: float = CELL_SIZE_M,
        *,
        store: TileCellStore | None = None,
        client_factory: ClientFactory | None = None,
        base_url: str = TILES_BASE_URL,
        zoom: int = ROAD_TILE_ZOOM,
    ) -> None:
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self.cell_size = cell_size
        self.base_url = base_url
        self.zoom = zoom
        self._store: TileCellStore = (
            store if store is not None else MemoryTileCellStore()
        )
        self._client_factory = client_factory or _default_client_factory
        self._log = logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()
        self._cities: Dict[str, City] = {}
        self._road_queue: Deque[str] = deque()
        self._clients: Dict[str, TileCacheClient] = {}

    @property
    def cities(self) -> List[City]:
        with self._lock:
            return list(self._cities.values())

    @property
    def pending_road_cities(self) -> int:
        with self._lock:
            return len(self._road_queue)

    def get_city(self, city_id: str) -> Optional[City]:
        with self._lock:
            return self._cities.get(city_id)

    def add_city(
        self,
        name: str,
        country: str,
        boundary: Mapping[str, Any],
        region: str | None = None,
    ) -> Optional[City]:
        """Register a city from its boundary polygon and queue its roads.

        Returns the new city, or ``None`` when a city with the same id
        (``"<name>, <country>"``) is already known.

        Raises:
            MalformedInputError: When ``boundary`` is not a usable polygon.
        """

        city_id = f"{name}, {country}"
        with self._lock:
            if city_id in self._cities:
                self._log.debug("City %s already known; skipping", city_id)
                return None
        interior = rasterize_polygon(boundary, self.cell_size)
        area = cells_bbox(interior, self.cell_size)
        city = City(
            id=city_id,
            name=name,
            country=country,
            boundary=dict(boundary),
            interior_cells=interior,
            region=region,
            center=area.center if area else None,
        )
        with self._lock:
            if city_id in self._cities:
                return None
            self._cities[city_id] = city
            self._road_queue.append(city_id)
        self._log.info("Added city %s with %d interior cells", city_id, len(interior))
        return city

    def client_for(
        self, country: str, region: str | None = None
    ) -> Optional[TileCacheClient]:
        """Return the tile client for a location, or ``None`` if uncovered."""

        filename = tile_source_filename(country, region)
        if filename is None:
            return None
        url = tile_source_url(filename, self.base_url)
        with self._lock:
            client = self._clients.get(url)
            if client is None:
                client = self._client_factory(url, self._store)
                self._clients[url] = client
            return client

    def compute_road_cells(self, city: City) -> Optional[RoadQueryResult]:
        """Query and attach the road cells of ``city``.

        ``city.road_cells`` stays ``None`` when no archive covers the city or
        no tile could be resolved; incomplete queries requeue the city.
        """

        client = self.client_for(city.country, city.region)
        if client is None:
            self._log.warning(
                "No road tiles available for %s - %s", city.country, city.region
            )
            return None
        area = cells_bbox(city.interior_cells, self.cell_size)
        if area is None:
            return None
        result = client.query_road_cells(area, self.cell_size, self.zoom)
        if any(tile.ok for tile in result.tiles):
            city.road_cells = result.cells
        if not result.complete:
            self._log.warning(
                "Road cells for %s are incomplete: %s; queued for retry",
                city.id,
                result.status_counts,
            )
            with self._lock:
                if city.id not in self._road_queue:
                    self._road_queue.append(city.id)
        return result

    def process_road_queue(
        self,
        progress: Callable[[int, int], None] | None = None,
    ) -> int:
        """Compute road cells for every queued city; returns how many ran."""

        with self._lock:
            queued = list(self._road_queue)
            self._road_queue.clear()
        total = len(queued)
        for done, city_id in enumerate(queued, start=1):
            city = self.get_city(city_id)
            if city is not None:
                self.compute_road_cells(city)
            if progress is not None:
                try:
                    progress(done, total)
                except Exception:
                    self._log.debug("Progress callback failed", exc_info=True)
        return total

    def find_closest_city(self, point: GeoPoint) -> Optional[City]:
        closest: Optional[City] = None
        best = float("inf")
        for city in self.cities:
            if city.center is None:
                continue
            d_lat = city.center.lat - point.lat
            d_lng = city.center.lng - point.lng
            dist = d_lat * d_lat + d_lng * d_lng
            if dist < best:
                best = dist
                closest = city
        return closest

    def city_stats(self, visited: CellSet, top_n: int | None = None) -> List[CityStats]:
        return top_cities(compute_city_stats(self.cities, visited), top_n)

    def viewport_stats(
        self,
        bbox: BBox,
        visited: CellSet,
        cell_size: float | None = None,
    ) -> Optional[float]:
        """Return the visited percentage of road cells inside ``bbox``.

        The archive is picked from the closest known city. Unknown locations
        and uncovered regions give ``0.0``; viewports above the cell guard
        give ``None``.
        """

        size = cell_size or self.cell_size
        cell_count = viewport_cell_count(bbox, size)
        if cell_count > VIEWPORT_MAX_CELLS:
            self._log.info(
                "Viewport too large for stats (%d cells > %d)",
                cell_count,
                VIEWPORT_MAX_CELLS,
            )
            return None
        closest = self.find_closest_city(bbox.center)
        if closest is None:
            return 0.0
        client = self.client_for(closest.country, closest.region)
        if client is None:
            return 0.0
        road_cells = client.get_road_cells(bbox, size, self.zoom)
        return visited_percentage(road_cells, visited)
