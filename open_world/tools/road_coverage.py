"""Report how much of the road network inside a bbox was visited.

Usage:
    python -m open_world.tools.road_coverage \
        --bbox 43.72 43.75 7.40 7.44 --country Monaco --visited exploration.json
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from ..config import CELL_SIZE_M, ROAD_TILE_ZOOM, TILE_CACHE_DIR
from ..models import BBox, CellSet
from ..stats import visited_count, visited_percentage
from ..tiles.client import TileCacheClient
from ..tiles.regions import tile_source_filename, tile_source_url
from ..tiles.store import FileTileCellStore, MemoryTileCellStore, TileCellStore


def _build_parser() -> argparse.ArgumentParser:
    """Return the CLI argument parser for the road coverage tool."""

    parser = argparse.ArgumentParser(
        description="Compute visited road coverage for a bounding box."
    )
    parser.add_argument(
        "--bbox",
        type=float,
        nargs=4,
        required=True,
        metavar=("MIN_LAT", "MAX_LAT", "MIN_LNG", "MAX_LNG"),
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--url", help="PMTiles archive URL or local path")
    source.add_argument("--country", help="Resolve the archive from the region map")
    parser.add_argument("--region")
    parser.add_argument(
        "--visited",
        type=Path,
        required=True,
        help="JSON list of cell keys or an exploration output file",
    )
    parser.add_argument("--cell-size", type=float, default=CELL_SIZE_M)
    parser.add_argument("--zoom", type=int, default=ROAD_TILE_ZOOM)
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=Path(TILE_CACHE_DIR),
        help=f"Road cell cache directory (default: {TILE_CACHE_DIR})",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Keep road cells in memory only",
    )
    return parser


def load_visited(path: Path) -> CellSet:
    with path.open("r", encoding="utf-8") as handle:
        payload: Any = json.load(handle)
    if isinstance(payload, dict):
        payload = payload.get("visitedCells")
    if not isinstance(payload, list):
        raise ValueError(f"{path} holds no visited cell list")
    return {str(key) for key in payload}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point used via ``python -m open_world.tools.road_coverage``."""

    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )

    url = args.url
    if url is None:
        filename = tile_source_filename(args.country, args.region)
        if filename is None:
            logging.error(
                "No road tiles available for %s - %s", args.country, args.region
            )
            return 1
        url = tile_source_url(filename)

    min_lat, max_lat, min_lng, max_lng = args.bbox
    if min_lat > max_lat or min_lng > max_lng:
        logging.error("Bounding box minimums must not exceed maximums")
        return 2
    bbox = BBox(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)

    try:
        visited = load_visited(args.visited)
    except (OSError, ValueError) as exc:
        logging.error("Failed to load visited cells: %s", exc)
        return 1

    store: TileCellStore = (
        MemoryTileCellStore() if args.no_cache else FileTileCellStore(args.cache_dir)
    )
    client = TileCacheClient(url, store=store)

    def progress(done: int, total: int) -> None:
        logging.debug("Resolved %d/%d tiles", done, total)

    result = client.query_road_cells(bbox, args.cell_size, args.zoom, progress)
    percentage = visited_percentage(result.cells, visited)
    logging.info("Tile outcomes: %s", result.status_counts)
    if result.circuit_open:
        logging.warning("Circuit breaker opened; coverage is partial")
    print(
        f"{visited_count(result.cells, visited)}/{len(result.cells)} road cells "
        f"visited ({percentage:.2f}%)"
    )
    return 0 if result.complete else 3


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
