"""PMTiles archive access, vector tile decoding and the cell stores."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import requests

from conftest import encode_tile, write_archive
from open_world.errors import TileDecodeError, TileFetchError
from open_world.models import TileAddress, TileCacheEntry
from open_world.tiles.decode import decode_road_cells, find_road_layer
from open_world.tiles.source import PMTilesSource, http_range_reader
from open_world.tiles.store import (
    FileTileCellStore,
    MemoryTileCellStore,
    tile_cache_key,
)


def test_pmtiles_source_reads_local_archive(tmp_path, road_tile, road_tile_bytes) -> None:
    archive = tmp_path / "monaco.pmtiles"
    write_archive(archive, {road_tile: road_tile_bytes})

    source = PMTilesSource(str(archive))
    assert source.fetch(road_tile) == road_tile_bytes
    missing = TileAddress(road_tile.z, road_tile.x + 5, road_tile.y)
    assert source.fetch(missing) is None

    by_url = PMTilesSource(archive.as_uri())
    assert by_url.fetch(road_tile) == road_tile_bytes


def test_pmtiles_source_missing_file_raises_fetch_error(tmp_path, road_tile) -> None:
    source = PMTilesSource(str(tmp_path / "absent.pmtiles"))
    with pytest.raises(TileFetchError):
        source.fetch(road_tile)


def test_pmtiles_source_requires_url() -> None:
    with pytest.raises(ValueError):
        PMTilesSource("")


class _FakeResponse:
    def __init__(self, status_code: int, content: bytes) -> None:
        self.status_code = status_code
        self.content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class _FakeSession:
    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def test_http_range_reader_sends_range_header() -> None:
    session = _FakeSession(_FakeResponse(206, b"abcd"))
    read = http_range_reader("https://tiles.test/a.pmtiles", session, timeout=3.0)
    assert read(10, 4) == b"abcd"
    assert session.calls == [
        ("https://tiles.test/a.pmtiles", {"Range": "bytes=10-13"}, 3.0)
    ]


def test_http_range_reader_slices_full_responses() -> None:
    session = _FakeSession(_FakeResponse(200, b"0123456789"))
    read = http_range_reader("https://tiles.test/a.pmtiles", session)
    assert read(2, 3) == b"234"


@pytest.mark.parametrize(
    "session",
    [
        _FakeSession(_FakeResponse(404, b"")),
        _FakeSession(error=requests.Timeout("slow")),
        _FakeSession(error=requests.ConnectionError("refused")),
    ],
)
def test_http_range_reader_wraps_errors(session) -> None:
    read = http_range_reader("https://tiles.test/a.pmtiles", session)
    with pytest.raises(TileFetchError):
        read(0, 127)


def test_find_road_layer() -> None:
    assert find_road_layer(["water", "roads", "transportation"]) == "roads"
    assert find_road_layer(["Transportation_name"]) == "Transportation_name"
    assert find_road_layer(["water", "buildings"]) is None


def test_decode_road_cells_rasterizes_lines(road_tile) -> None:
    data = encode_tile([[(0, 2048), (4096, 2048)]])
    cells = decode_road_cells(data, road_tile, 25)
    assert cells
    ys = {int(key.split(",")[1]) for key in cells}
    # A horizontal line stays within one or two cell rows.
    assert len(ys) <= 2


def test_decode_road_cells_rejects_garbage(road_tile) -> None:
    with pytest.raises(TileDecodeError):
        decode_road_cells(b"not a vector tile", road_tile, 25)


def test_tile_cache_key(road_tile) -> None:
    assert tile_cache_key(road_tile, 25) == f"14/{road_tile.x}/{road_tile.y}/25"
    assert tile_cache_key(road_tile, 12.5).endswith("/12.5")


def test_memory_store_copies_entries(road_tile) -> None:
    store = MemoryTileCellStore()
    cells = {"1,1"}
    store.put(TileCacheEntry(road_tile, 25, cells))
    cells.add("2,2")

    entry = store.get(road_tile, 25)
    assert entry is not None
    assert entry.cells == {"1,1"}
    assert entry.timestamp is not None
    assert store.get(road_tile, 50) is None
    store.clear()
    assert store.get(road_tile, 25) is None


def test_file_store_round_trip_and_corruption(tmp_path, road_tile) -> None:
    store = FileTileCellStore(tmp_path / "cache")
    stamp = datetime(2024, 5, 1, tzinfo=timezone.utc)
    store.put(TileCacheEntry(road_tile, 25, {"3,4", "1,2"}, stamp))

    entry = store.get(road_tile, 25)
    assert entry is not None
    assert entry.cells == {"1,2", "3,4"}
    assert entry.timestamp == stamp

    path = tmp_path / "cache" / "14" / str(road_tile.x) / f"{road_tile.y}_25.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["cells"] == ["1,2", "3,4"]
    assert payload["key"] == tile_cache_key(road_tile, 25)

    path.write_text("{not json", encoding="utf-8")
    assert store.get(road_tile, 25) is None
