"""Read single vector tiles out of a PMTiles archive.

Archives are addressed by URL and read with HTTP range requests; a plain
filesystem path (or ``file://`` URL) is read directly. The header and
directory ranges are small and requested for every tile, so they are kept in
an LRU cache.
"""

from __future__ import annotations

import gzip
import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Protocol
from urllib.parse import urlparse

import requests
from cachetools import LRUCache
from pmtiles.reader import Reader
from pmtiles.tile import Compression
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import (
    HTTP_POOL_CONNECTIONS,
    HTTP_POOL_MAXSIZE,
    PMTILES_DIRECTORY_CACHE_SIZE,
    REQUEST_TIMEOUT,
)
from ..errors import TileFetchError
from ..models import TileAddress

_LOGGER = logging.getLogger(__name__)

ByteRangeReader = Callable[[int, int], bytes]

__all__ = [
    "TileSource",
    "PMTilesSource",
    "create_tile_session",
    "http_range_reader",
    "file_range_reader",
]


class TileSource(Protocol):
    """Anything that returns raw (decompressed) tile bytes for an address."""

    def fetch(self, address: TileAddress) -> Optional[bytes]:
        ...


def _build_retry() -> Retry:
    return Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"],
    )


def create_tile_session() -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"Accept-Encoding": "identity"})
    return session


def http_range_reader(
    url: str, session: Session, timeout: float = REQUEST_TIMEOUT
) -> ByteRangeReader:
    """Return a ``(offset, length) -> bytes`` reader backed by HTTP ranges."""

    def read(offset: int, length: int) -> bytes:
        headers = {"Range": f"bytes={offset}-{offset + length - 1}"}
        _LOGGER.debug("GET %s range=%s", url, headers["Range"])
        try:
            response = session.get(url, headers=headers, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TileFetchError(f"Range request failed for {url}: {exc}") from exc
        if response.status_code == 206:
            return response.content
        # Server ignored the range header and sent the whole archive.
        return response.content[offset : offset + length]

    return read


def file_range_reader(path: Path) -> ByteRangeReader:
    """Return a ``(offset, length) -> bytes`` reader over a local archive."""

    def read(offset: int, length: int) -> bytes:
        try:
            with path.open("rb") as handle:
                handle.seek(offset)
                return handle.read(length)
        except OSError as exc:
            raise TileFetchError(f"Failed reading {path}: {exc}") from exc

    return read


class PMTilesSource:
    """Fetch tiles from one PMTiles archive."""

    def __init__(
        self,
        url: str,
        *,
        session: Optional[Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        directory_cache_size: int = PMTILES_DIRECTORY_CACHE_SIZE,
    ) -> None:
        if not url:
            raise ValueError("PMTiles url must be provided")
        self.url = url
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            self._read = http_range_reader(
                url, session or create_tile_session(), timeout
            )
        elif parsed.scheme == "file":
            self._read = file_range_reader(Path(parsed.path))
        else:
            self._read = file_range_reader(Path(url))
        self._ranges: LRUCache[tuple[int, int], bytes] = LRUCache(
            maxsize=max(1, directory_cache_size)
        )
        self._ranges_lock = threading.RLock()
        self._tile_data_offset: Optional[int] = None
        self._reader = Reader(self._get_bytes)

    def _get_bytes(self, offset: int, length: int) -> bytes:
        # Tile payloads are cached by the cell store, not here.
        if self._tile_data_offset is not None and offset >= self._tile_data_offset:
            return self._read(offset, length)
        key = (offset, length)
        with self._ranges_lock:
            cached = self._ranges.get(key)
        if cached is not None:
            return cached
        data = self._read(offset, length)
        with self._ranges_lock:
            self._ranges[key] = data
        return data

    def fetch(self, address: TileAddress) -> Optional[bytes]:
        """Return the decompressed tile or ``None`` when the archive has none.

        Raises:
            TileFetchError: On network/IO errors or an unreadable archive.
        """

        try:
            header = self._reader.header()
            self._tile_data_offset = header["tile_data_offset"]
            data = self._reader.get(address.z, address.x, address.y)
        except TileFetchError:
            raise
        except Exception as exc:  # noqa: BLE001 - pmtiles raises bare errors
            raise TileFetchError(
                f"Unreadable PMTiles archive {self.url} at {address}: {exc}"
            ) from exc
        if not data:
            return None
        if header["tile_compression"] == Compression.GZIP:
            try:
                data = gzip.decompress(data)
            except OSError as exc:
                raise TileFetchError(f"Corrupt gzip tile {address}: {exc}") from exc
        return data
