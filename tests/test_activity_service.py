"""ExplorationProcessor: activities to visited cells."""

from __future__ import annotations

import math
import threading
from typing import List, Tuple

import polyline
import pytest

from open_world.geo.projection import EARTH_RADIUS_M, cell_key, cell_of, to_planar
from open_world.geo.rectangles import rectangles_to_cells
from open_world.models import Activity, GeoPoint, ProcessingConfig
from open_world.services.activity_service import ExplorationProcessor, activity_cells

DEG_PER_M = 180.0 / (math.pi * EARTH_RADIUS_M)


def _track(
    length_m: float, lat: float = 43.70, lng: float = 7.40
) -> List[Tuple[float, float]]:
    """A track running north for ``length_m`` metres."""

    return [(lat + length_m * DEG_PER_M * i / 10, lng) for i in range(11)]


def _payload(activity_id: int, coords=None, private: bool = False) -> dict:
    payload = {
        "id": activity_id,
        "name": f"Run {activity_id}",
        "private": private,
        "map": {},
    }
    if coords is not None:
        payload["map"]["summary_polyline"] = polyline.encode(coords)
    return payload


def _config(**overrides) -> ProcessingConfig:
    values = dict(
        cell_size=25.0, sampling_step=12.5, privacy_distance=0.0, skip_private=False
    )
    values.update(overrides)
    return ProcessingConfig(**values)


def test_process_marks_cells_along_track() -> None:
    processor = ExplorationProcessor(_config(), max_workers=2)
    result = processor.process([_payload(1, _track(1000.0))])

    visited = processor.visited_cells
    assert processor.processed_ids == {1}
    # 1000 m of ground is about 1383 planar metres at this latitude.
    assert 54 <= len(visited) <= 58
    assert result.total_cells == len(visited)
    assert result.cells_added == len(visited)
    assert result.processed_activities == 1
    assert rectangles_to_cells(result.rectangles) == visited


def test_privacy_distance_trims_track_ends() -> None:
    coords = _track(1000.0)
    start_cell = cell_key(cell_of(to_planar(GeoPoint(*coords[0])), 25.0))
    full = activity_cells(polyline.encode(coords), _config())
    trimmed = activity_cells(polyline.encode(coords), _config(privacy_distance=100.0))

    assert start_cell in full
    assert start_cell not in trimmed
    assert trimmed < full
    assert len(full) - len(trimmed) >= 6


def test_short_track_is_hidden_entirely() -> None:
    processor = ExplorationProcessor(_config(privacy_distance=100.0))
    processor.process([_payload(1, _track(150.0))])
    assert processor.visited_cells == set()
    assert processor.processed_ids == {1}


def test_already_processed_activities_are_skipped() -> None:
    processor = ExplorationProcessor(_config())
    processor.process([_payload(1, _track(500.0))])
    again = processor.process([_payload(1, _track(500.0, lng=7.5))])

    assert again.cells_added == 0
    assert again.processed_activities == 0


def test_activity_without_polyline_is_marked_processed() -> None:
    processor = ExplorationProcessor(_config())
    result = processor.process([_payload(7)])
    assert processor.processed_ids == {7}
    assert result.total_cells == 0


def test_undecodable_polyline_is_logged_and_skipped(caplog) -> None:
    processor = ExplorationProcessor(_config())
    broken = Activity(id=3, polyline="_p~iF")
    processor.process([broken, _payload(4, _track(300.0))])

    assert processor.processed_ids == {3, 4}
    assert processor.visited_cells
    assert "Failed to process activity 3" in caplog.text


def test_private_activities_skipped_until_setting_changes() -> None:
    processor = ExplorationProcessor(_config(skip_private=True))
    processor.process([_payload(1, _track(500.0), private=True)])
    assert processor.visited_cells == set()
    assert processor.processed_ids == set()
    assert processor.stored_activity_count == 1

    result = processor.update_config(skip_private=False)
    assert result is not None
    assert processor.visited_cells
    assert processor.processed_ids == {1}


def test_only_me_visibility_counts_as_private() -> None:
    payload = _payload(1, _track(500.0))
    payload["visibility"] = "only_me"
    assert Activity.from_payload(payload).private


def test_cell_size_change_rebuilds_from_stored_activities() -> None:
    processor = ExplorationProcessor(_config())
    processor.process([_payload(1, _track(1000.0)), _payload(2, _track(1000.0, lng=7.45))])
    small = processor.visited_cells

    result = processor.update_config(cell_size=50.0)

    assert result is not None
    assert processor.config.cell_size == 50.0
    assert processor.processed_ids == {1, 2}
    assert 0 < len(processor.visited_cells) < len(small)
    assert result.total_cells == len(processor.visited_cells)


def test_update_config_without_change_does_nothing() -> None:
    processor = ExplorationProcessor(_config())
    processor.process([_payload(1, _track(500.0))])
    assert processor.update_config(cell_size=25.0) is None
    assert processor.update_config(force_reprocess=True) is not None
    assert processor.processed_ids == {1}


def test_update_config_rejects_unknown_and_invalid_settings() -> None:
    processor = ExplorationProcessor(_config())
    with pytest.raises(ValueError):
        processor.update_config(snap_to_grid=True)
    with pytest.raises(ValueError):
        processor.update_config(cell_size=0)
    assert processor.config.cell_size == 25.0


def test_initialize_restores_state() -> None:
    processor = ExplorationProcessor(_config())
    processor.initialize(visited_cells=["1,1", "2,2"], processed_ids=[5])
    result = processor.process([_payload(5, _track(500.0))])

    assert processor.visited_cells == {"1,1", "2,2"}
    assert result.cells_added == 0
    assert processor.stored_activity_count == 1


def test_progress_reported_per_batch() -> None:
    processor = ExplorationProcessor(_config())
    seen = []
    activities = [_payload(i, _track(200.0, lng=7.40 + i * 0.01)) for i in range(5)]

    processor.process(
        activities,
        batch_size=2,
        progress=lambda done, total, result: seen.append((done, total, result.total_cells)),
    )

    assert [(done, total) for done, total, _ in seen] == [(2, 5), (4, 5), (5, 5)]
    totals = [cells for _, _, cells in seen]
    assert totals == sorted(totals)


def test_cancel_event_stops_processing() -> None:
    processor = ExplorationProcessor(_config())
    cancel = threading.Event()
    cancel.set()
    result = processor.process([_payload(1, _track(500.0))], cancel_event=cancel)
    assert result.processed_activities == 0
    assert processor.processed_ids == set()


def test_clear_drops_everything() -> None:
    processor = ExplorationProcessor(_config())
    processor.process([_payload(1, _track(500.0))])
    processor.clear()
    assert processor.visited_cells == set()
    assert processor.processed_ids == set()
    assert processor.stored_activity_count == 0
    assert processor.update_config(force_reprocess=True) is None
