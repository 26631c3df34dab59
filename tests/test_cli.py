from __future__ import annotations

import json
import math

import polyline

from conftest import tile_bbox, write_archive
from open_world.geo.projection import EARTH_RADIUS_M
from open_world.main import main
from open_world.tools import road_coverage

DEG_PER_M = 180.0 / (math.pi * EARTH_RADIUS_M)


def _activities(path, ids=(1,)) -> None:
    payload = []
    for activity_id in ids:
        coords = [
            (43.73 + 800 * DEG_PER_M * i / 8, 7.41 + activity_id * 0.01)
            for i in range(9)
        ]
        payload.append(
            {"id": activity_id, "map": {"summary_polyline": polyline.encode(coords)}}
        )
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_main_writes_exploration_output(tmp_path) -> None:
    activities = tmp_path / "activities.json"
    output = tmp_path / "out" / "exploration.json"
    _activities(activities, ids=(1, 2))

    code = main([str(activities), "--output", str(output), "--privacy-distance", "0"])

    assert code == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["processedActivityIds"] == [1, 2]
    assert data["totalCells"] == len(data["visitedCells"]) > 0
    assert data["cellsAdded"] == data["totalCells"]
    assert data["rectangleCount"] == len(data["rectangles"])
    assert data["config"]["cellSize"] == 25.0


def test_main_resumes_from_state(tmp_path) -> None:
    activities = tmp_path / "activities.json"
    output = tmp_path / "exploration.json"
    _activities(activities)
    assert main([str(activities), "--output", str(output)]) == 0
    first = json.loads(output.read_text(encoding="utf-8"))

    assert main([str(activities), "--output", str(output), "--state", str(output)]) == 0
    second = json.loads(output.read_text(encoding="utf-8"))

    assert second["cellsAdded"] == 0
    assert second["visitedCells"] == first["visitedCells"]


def test_main_accepts_wrapped_activity_list(tmp_path) -> None:
    activities = tmp_path / "activities.json"
    _activities(activities)
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(
        json.dumps({"activities": json.loads(activities.read_text("utf-8"))}),
        encoding="utf-8",
    )
    output = tmp_path / "exploration.json"
    assert main([str(wrapped), "--output", str(output)]) == 0


def test_main_rejects_bad_input(tmp_path) -> None:
    output = tmp_path / "exploration.json"
    assert main([str(tmp_path / "missing.json"), "--output", str(output)]) == 1

    not_a_list = tmp_path / "object.json"
    not_a_list.write_text('{"id": 1}', encoding="utf-8")
    assert main([str(not_a_list), "--output", str(output)]) == 1
    assert not output.exists()


def test_main_rejects_invalid_settings(tmp_path) -> None:
    activities = tmp_path / "activities.json"
    _activities(activities)
    assert main([str(activities), "--cell-size", "0"]) == 2


def _bbox_args(bbox) -> list:
    return [
        "--bbox",
        str(bbox.min_lat),
        str(bbox.max_lat),
        str(bbox.min_lng),
        str(bbox.max_lng),
    ]


def test_road_coverage_reports_visited_share(
    tmp_path, capsys, road_tile, road_tile_bytes
) -> None:
    archive = tmp_path / "monaco.pmtiles"
    write_archive(archive, {road_tile: road_tile_bytes})
    visited = tmp_path / "visited.json"
    visited.write_text("[]", encoding="utf-8")

    code = road_coverage.main(
        _bbox_args(tile_bbox(road_tile))
        + ["--url", str(archive), "--visited", str(visited), "--no-cache"]
    )

    assert code == 0
    out = capsys.readouterr().out
    assert out.startswith("0/")
    assert "road cells visited (0.00%)" in out


def test_road_coverage_unmapped_country(tmp_path, road_tile) -> None:
    visited = tmp_path / "visited.json"
    visited.write_text("[]", encoding="utf-8")
    code = road_coverage.main(
        _bbox_args(tile_bbox(road_tile))
        + ["--country", "Atlantis", "--visited", str(visited), "--no-cache"]
    )
    assert code == 1


def test_road_coverage_rejects_inverted_bbox(tmp_path) -> None:
    visited = tmp_path / "visited.json"
    visited.write_text("[]", encoding="utf-8")
    code = road_coverage.main(
        ["--bbox", "44", "43", "7", "8", "--url", "x.pmtiles"]
        + ["--visited", str(visited), "--no-cache"]
    )
    assert code == 2


def test_load_visited_accepts_exploration_output(tmp_path) -> None:
    path = tmp_path / "exploration.json"
    path.write_text(json.dumps({"visitedCells": ["1,2", "3,4"]}), encoding="utf-8")
    assert road_coverage.load_visited(path) == {"1,2", "3,4"}
