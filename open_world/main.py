"""Command line entry point: turn activity exports into explored cells.

Usage:
    python -m open_world activities.json --output exploration.json

The input is a JSON list of Strava-style activity payloads (each with an
``id`` and a ``map.summary_polyline``). Passing ``--state`` with a previous
output resumes from it, so only new activities are rasterized.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import (
    CELL_SIZE_M,
    PRIVACY_DISTANCE_M,
    SAMPLING_STEP_M,
    SKIP_PRIVATE_ACTIVITIES,
)
from .errors import MalformedInputError
from .geo.rectangles import compute_grid_stats
from .models import ProcessingConfig, ProcessingResult
from .services import ExplorationProcessor

DEFAULT_OUTPUT = Path("exploration.json")


def _setup_logging() -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="open_world",
        description="Rasterize activity tracks into explored grid cells.",
    )
    parser.add_argument("activities", type=Path, help="JSON list of activities")
    parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT,
        help=f"Where to write cells and rectangles (default: {DEFAULT_OUTPUT})",
    )
    parser.add_argument(
        "--state",
        type=Path,
        help="Previous output to resume from",
    )
    parser.add_argument("--cell-size", type=float, default=CELL_SIZE_M)
    parser.add_argument("--sampling-step", type=float, default=SAMPLING_STEP_M)
    parser.add_argument("--privacy-distance", type=float, default=PRIVACY_DISTANCE_M)
    parser.add_argument(
        "--skip-private",
        action="store_true",
        default=SKIP_PRIVATE_ACTIVITIES,
        help="Ignore activities flagged private",
    )
    return parser


def load_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def load_activities(path: Path) -> List[Dict[str, Any]]:
    """Read activity payloads; a ``{"activities": [...]}`` wrapper is accepted."""

    payload = load_json(path)
    if isinstance(payload, dict):
        payload = payload.get("activities")
    if not isinstance(payload, list):
        raise MalformedInputError(f"{path} does not contain a list of activities")
    return [item for item in payload if isinstance(item, dict) and "id" in item]


def build_output(
    processor: ExplorationProcessor, result: ProcessingResult
) -> Dict[str, Any]:
    cells = processor.visited_cells
    grid = compute_grid_stats(cells, result.rectangles)
    config = processor.config
    return {
        "config": {
            "cellSize": config.cell_size,
            "samplingStep": config.sampling_step,
            "privacyDistance": config.privacy_distance,
            "skipPrivate": config.skip_private,
        },
        "totalCells": result.total_cells,
        "cellsAdded": result.cells_added,
        "rectangleCount": grid.rectangle_count,
        "compressionRatio": grid.compression_ratio,
        "rectangles": [rect.to_dict() for rect in result.rectangles],
        "visitedCells": sorted(cells),
        "processedActivityIds": sorted(processor.processed_ids),
    }


def _restore(processor: ExplorationProcessor, state_path: Path) -> None:
    state = load_json(state_path)
    if not isinstance(state, dict):
        raise MalformedInputError(f"{state_path} is not an exploration state file")
    saved = state.get("config") or {}
    if saved.get("cellSize") != processor.config.cell_size:
        logging.warning(
            "State %s was built with cell size %s; starting fresh",
            state_path,
            saved.get("cellSize"),
        )
        return
    processor.initialize(
        visited_cells=state.get("visitedCells") or [],
        processed_ids=state.get("processedActivityIds") or [],
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point used via ``python -m open_world``."""

    args = _build_parser().parse_args(argv)
    _setup_logging()

    try:
        config = ProcessingConfig(
            cell_size=args.cell_size,
            sampling_step=args.sampling_step,
            privacy_distance=args.privacy_distance,
            skip_private=args.skip_private,
        )
        processor = ExplorationProcessor(config)
    except ValueError as exc:
        logging.error("Invalid settings: %s", exc)
        return 2

    try:
        activities = load_activities(args.activities)
        if args.state and args.state.exists():
            _restore(processor, args.state)
    except (OSError, ValueError) as exc:
        logging.error("Failed to load input: %s", exc)
        return 1

    logging.info("Processing %d activities from %s", len(activities), args.activities)

    def progress(done: int, total: int, _result: ProcessingResult) -> None:
        logging.info("Processed %d/%d activities", done, total)

    result = processor.process(activities, progress=progress)
    output = build_output(processor, result)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    with args.output.open("w", encoding="utf-8") as handle:
        json.dump(output, handle, indent=2)
    logging.info(
        "Wrote %d cells (%d rectangles) to %s",
        output["totalCells"],
        output["rectangleCount"],
        args.output,
    )
    return 0
