"""Persistent stores for rasterized road cells, keyed by tile and cell size.

Entries never expire; the only way to drop them is :meth:`clear`. The same
tile rasterizes differently per cell size, so the size is part of the key.
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Tuple, Union

from ..models import TileAddress, TileCacheEntry

_LOGGER = logging.getLogger(__name__)

_StoreKey = Tuple[int, int, int, str]

__all__ = [
    "TileCellStore",
    "MemoryTileCellStore",
    "FileTileCellStore",
    "tile_cache_key",
]


def _size_label(cell_size: float) -> str:
    return f"{float(cell_size):g}"


def tile_cache_key(address: TileAddress, cell_size: float) -> str:
    """Return the canonical ``z/x/y/cellSize`` key."""

    return f"{address.z}/{address.x}/{address.y}/{_size_label(cell_size)}"


class TileCellStore(Protocol):
    """Get/put interface consumed by :class:`TileCacheClient`."""

    def get(self, address: TileAddress, cell_size: float) -> Optional[TileCacheEntry]:
        ...

    def put(self, entry: TileCacheEntry) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryTileCellStore:
    """Thread-safe in-process store, mostly for tests and short sessions."""

    def __init__(self) -> None:
        self._data: Dict[_StoreKey, TileCacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(address: TileAddress, cell_size: float) -> _StoreKey:
        return (address.z, address.x, address.y, _size_label(cell_size))

    def get(self, address: TileAddress, cell_size: float) -> Optional[TileCacheEntry]:
        with self._lock:
            entry = self._data.get(self._key(address, cell_size))
        if entry is None:
            return None
        return TileCacheEntry(
            address=entry.address,
            cell_size=entry.cell_size,
            cells=set(entry.cells),
            timestamp=entry.timestamp,
        )

    def put(self, entry: TileCacheEntry) -> None:
        stored = TileCacheEntry(
            address=entry.address,
            cell_size=entry.cell_size,
            cells=set(entry.cells),
            timestamp=entry.timestamp or datetime.now(timezone.utc),
        )
        with self._lock:
            self._data[self._key(entry.address, entry.cell_size)] = stored

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class FileTileCellStore:
    """JSON-file store laid out as ``<base>/<z>/<x>/<y>_<cellSize>.json``."""

    def __init__(self, base_dir: Union[str, Path]) -> None:
        base = Path(base_dir)
        self._base_dir = base if base.is_absolute() else Path.cwd() / base
        self._lock = threading.Lock()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        _LOGGER.info("Tile cell store initialised dir=%s", self._base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _file_path(self, address: TileAddress, cell_size: float) -> Path:
        return (
            self._base_dir
            / str(address.z)
            / str(address.x)
            / f"{address.y}_{_size_label(cell_size)}.json"
        )

    def _read_file(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            _LOGGER.warning("Failed reading tile cells from %s: %s", path, exc)
            return None

    def _write_file(self, path: Path, payload: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=True)
        temp_path.replace(path)

    def get(self, address: TileAddress, cell_size: float) -> Optional[TileCacheEntry]:
        payload = self._read_file(self._file_path(address, cell_size))
        if payload is None:
            return None
        cells = payload.get("cells")
        if not isinstance(cells, list):
            _LOGGER.warning(
                "Tile cache payload type mismatch for %s type=%s",
                tile_cache_key(address, cell_size),
                type(cells).__name__,
            )
            return None
        timestamp = payload.get("timestamp")
        try:
            captured = (
                datetime.fromisoformat(timestamp) if isinstance(timestamp, str) else None
            )
        except ValueError:
            captured = None
        return TileCacheEntry(
            address=address,
            cell_size=cell_size,
            cells={str(cell) for cell in cells},
            timestamp=captured,
        )

    def put(self, entry: TileCacheEntry) -> None:
        path = self._file_path(entry.address, entry.cell_size)
        timestamp = entry.timestamp or datetime.now(timezone.utc)
        payload = {
            "key": tile_cache_key(entry.address, entry.cell_size),
            "timestamp": timestamp.isoformat(),
            "cells": sorted(entry.cells),
        }
        with self._lock:
            self._write_file(path, payload)
        _LOGGER.debug("Cached %d road cells at %s", len(entry.cells), path)

    def clear(self) -> None:
        with self._lock:
            if self._base_dir.exists():
                shutil.rmtree(self._base_dir)
            self._base_dir.mkdir(parents=True, exist_ok=True)
        _LOGGER.info("Cleared tile cell store %s", self._base_dir)
