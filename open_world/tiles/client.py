"""Tiled road-cell cache backed by a remote vector tile archive.

For a bbox query every covering tile is resolved independently:

1. the local store is consulted first, keyed by ``(z, x, y, cell_size)``;
2. on a miss, and while the circuit breaker is closed, the tile is fetched,
   decoded and rasterized, then persisted;
3. failures are counted by the breaker and contribute no cells.

Tiles are processed on a bounded thread pool. Concurrent requests for the
same tile share one in-flight fetch. The union of all tiles is finally cut
down to the exact bbox because tiles over-cover at their edges.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..config import (
    ROAD_TILE_ZOOM,
    TILE_CIRCUIT_BREAKER_THRESHOLD,
    TILE_FETCH_CONCURRENCY,
)
from ..errors import MalformedInputError, TileFetchError
from ..geo.projection import parse_cell_key
from ..models import BBox, CellSet, TileAddress, TileCacheEntry
from .circuit_breaker import CircuitBreaker
from .decode import decode_road_cells
from .source import PMTilesSource, TileSource
from .store import MemoryTileCellStore, TileCellStore, tile_cache_key
from .tile_math import cover_tiles, planar_bounds

_LOGGER = logging.getLogger(__name__)

SourceFactory = Callable[[str], TileSource]
ProgressCallback = Callable[[int, int], None]

__all__ = ["TileStatus", "TileResult", "RoadQueryResult", "TileCacheClient"]


class TileStatus(str, Enum):
    CACHE = "cache"
    REMOTE = "remote"
    EMPTY = "empty"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class TileResult:
    """Outcome for one tile: either cells or the error that prevented them."""

    address: TileAddress
    status: TileStatus
    cells: CellSet = field(default_factory=set)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status not in (TileStatus.SKIPPED, TileStatus.FAILED)


@dataclass(slots=True)
class RoadQueryResult:
    """Road cells for a bbox plus the per-tile outcomes behind them."""

    cells: CellSet
    tiles: List[TileResult]
    circuit_open: bool = False

    @property
    def status_counts(self) -> Dict[str, int]:
        counts = Counter(result.status.value for result in self.tiles)
        return dict(counts)

    @property
    def complete(self) -> bool:
        """True when every tile was resolved (cached, fetched or known empty)."""

        return all(result.ok for result in self.tiles)


class TileCacheClient:
    """Road cells for bboxes, read from one configured tile archive.

    One instance per tile source URL; :meth:`configure` switches the URL and
    resets the circuit breaker so failures of an old source never leak.
    """

    def __init__(
        self,
        source_url: Optional[str] = None,
        *,
        store: Optional[TileCellStore] = None,
        source_factory: SourceFactory = PMTilesSource,
        max_concurrency: int = TILE_FETCH_CONCURRENCY,
        breaker_threshold: int = TILE_CIRCUIT_BREAKER_THRESHOLD,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")
        self._store: TileCellStore = (
            store if store is not None else MemoryTileCellStore()
        )
        self._source_factory = source_factory
        self._max_concurrency = max_concurrency
        self._breaker = CircuitBreaker(breaker_threshold)
        self._lock = threading.RLock()
        self._in_flight: Dict[Tuple[str, str], Future] = {}
        self._source_url: Optional[str] = None
        self._source: Optional[TileSource] = None
        self.configure(source_url)

    @property
    def source_url(self) -> Optional[str]:
        with self._lock:
            return self._source_url

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def store(self) -> TileCellStore:
        return self._store

    def configure(self, source_url: Optional[str]) -> None:
        """Point the client at a (new) archive; a changed URL resets the breaker."""

        url = source_url or None
        with self._lock:
            if url == self._source_url and (url is None or self._source is not None):
                return
            self._source_url = url
            self._source = self._source_factory(url) if url else None
            self._breaker.reset()
        _LOGGER.info("Road tile source configured url=%s", url)

    def clear_cache(self) -> None:
        self._store.clear()

    def get_road_cells(
        self,
        bbox: BBox,
        cell_size: float,
        zoom: int = ROAD_TILE_ZOOM,
    ) -> CellSet:
        """Return road cells whose centres lie inside ``bbox``."""

        return self.query_road_cells(bbox, cell_size, zoom).cells

    def query_road_cells(
        self,
        bbox: BBox,
        cell_size: float,
        zoom: int = ROAD_TILE_ZOOM,
        progress: Optional[ProgressCallback] = None,
    ) -> RoadQueryResult:
        """Resolve every covering tile and return cells plus tile outcomes."""

        tiles = cover_tiles(bbox, zoom)
        total = len(tiles)
        if self.source_url is None:
            _LOGGER.warning("Road tile source not configured; only cached tiles used")
        results: List[TileResult] = []
        if tiles:
            workers = min(total, self._max_concurrency)
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="road-tiles"
            ) as executor:
                future_to_tile = {
                    executor.submit(self.load_tile, address, cell_size): address
                    for address in tiles
                }
                for fut in as_completed(future_to_tile):
                    address = future_to_tile[fut]
                    try:
                        results.append(fut.result())
                    except Exception as exc:  # noqa: BLE001
                        _LOGGER.warning("Tile %s failed unexpectedly: %s", address, exc)
                        results.append(TileResult(address, TileStatus.FAILED, error=exc))
                    self._notify_progress(progress, len(results), total)

        union: CellSet = set()
        for result in results:
            union |= result.cells
        cells = _filter_to_bbox(union, bbox, cell_size)
        query = RoadQueryResult(
            cells=cells, tiles=results, circuit_open=self._breaker.is_open
        )
        _LOGGER.debug(
            "Road query tiles=%d cells=%d outcomes=%s",
            total,
            len(cells),
            query.status_counts,
        )
        return query

    def load_tile(self, address: TileAddress, cell_size: float) -> TileResult:
        """Return the road cells of one tile, coalescing concurrent requests."""

        cached = self._cached(address, cell_size)
        if cached is not None:
            return cached

        key = (str(self.source_url), tile_cache_key(address, cell_size))
        with self._lock:
            pending = self._in_flight.get(key)
            owner = pending is None
            if owner:
                pending = Future()
                self._in_flight[key] = pending
        if not owner:
            return pending.result()

        try:
            # Another thread may have finished this tile since the first lookup.
            result = self._cached(address, cell_size) or self._fetch_tile(
                address, cell_size
            )
        except BaseException as exc:
            pending.set_exception(exc)
            raise
        else:
            pending.set_result(result)
            return result
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    def _cached(self, address: TileAddress, cell_size: float) -> Optional[TileResult]:
        try:
            entry = self._store.get(address, cell_size)
        except OSError as exc:
            _LOGGER.warning("Failed to read tile %s from cache: %s", address, exc)
            return None
        if entry is None:
            return None
        _LOGGER.debug("Cache hit for tile %s cell_size=%s", address, cell_size)
        return TileResult(address, TileStatus.CACHE, cells=entry.cells)

    def _fetch_tile(self, address: TileAddress, cell_size: float) -> TileResult:
        with self._lock:
            source = self._source
        if source is None:
            return TileResult(address, TileStatus.SKIPPED)
        if self._breaker.is_open:
            return TileResult(address, TileStatus.SKIPPED)

        try:
            data = source.fetch(address)
        except TileFetchError as exc:
            _LOGGER.warning("Tile fetch failed for %s: %s", address, exc)
            self._breaker.record_failure()
            return TileResult(address, TileStatus.FAILED, error=exc)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Unexpected error fetching tile %s: %s", address, exc)
            self._breaker.record_failure()
            return TileResult(address, TileStatus.FAILED, error=exc)
        if not data:
            self._breaker.record_success()
            return TileResult(address, TileStatus.EMPTY)

        try:
            cells = decode_road_cells(data, address, cell_size)
        except (TileFetchError, MalformedInputError) as exc:
            _LOGGER.warning("Failed to decode vector tile %s: %s", address, exc)
            self._breaker.record_failure()
            return TileResult(address, TileStatus.FAILED, error=exc)
        self._breaker.record_success()

        entry = TileCacheEntry(
            address=address,
            cell_size=cell_size,
            cells=cells,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            self._store.put(entry)
        except OSError as exc:
            _LOGGER.warning("Failed to cache tile cells for %s: %s", address, exc)
        return TileResult(address, TileStatus.REMOTE, cells=cells)

    def _notify_progress(
        self, progress: Optional[ProgressCallback], done: int, total: int
    ) -> None:
        if progress is None:
            return
        try:
            progress(done, total)
        except Exception:
            _LOGGER.debug("Progress callback failed", exc_info=True)


def _filter_to_bbox(cells: CellSet, bbox: BBox, cell_size: float) -> CellSet:
    """Keep cells whose centre lies inside the planar bbox (inclusive)."""

    min_x, min_y, max_x, max_y = planar_bounds(bbox)
    kept: CellSet = set()
    for key in cells:
        cell = parse_cell_key(key)
        cx = cell.x * cell_size + cell_size / 2.0
        cy = cell.y * cell_size + cell_size / 2.0
        if min_x <= cx <= max_x and min_y <= cy <= max_y:
            kept.add(key)
    return kept
