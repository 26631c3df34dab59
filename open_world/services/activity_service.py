"""Activity exploration service (application layer).

Turns encoded activity polylines into visited grid cells and keeps the state
needed to rebuild them when a coverage-affecting setting changes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import fields, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Set, Union

import polyline

from ..config import (
    ACTIVITY_BATCH_SIZE,
    CELL_SIZE_M,
    MAX_WORKERS,
    PRIVACY_DISTANCE_M,
    SAMPLING_STEP_M,
    SKIP_PRIVATE_ACTIVITIES,
)
from ..errors import MalformedInputError
from ..geo.projection import resample, trim_ends
from ..geo.rasterize import cells_of_points
from ..geo.rectangles import compact
from ..models import (
    Activity,
    CellSet,
    GeoPoint,
    ProcessingConfig,
    ProcessingResult,
    Rectangle,
)

ActivityLike = Union[Activity, Mapping[str, Any]]
ProgressCallback = Callable[[int, int, ProcessingResult], None]

_CONFIG_FIELDS = frozenset(f.name for f in fields(ProcessingConfig))


def default_processing_config() -> ProcessingConfig:
    return ProcessingConfig(
        cell_size=CELL_SIZE_M,
        sampling_step=SAMPLING_STEP_M,
        privacy_distance=PRIVACY_DISTANCE_M,
        skip_private=SKIP_PRIVATE_ACTIVITIES,
    )


def _validate_config(config: ProcessingConfig) -> None:
    if config.cell_size <= 0:
        raise ValueError("cell_size must be positive")
    if config.sampling_step <= 0:
        raise ValueError("sampling_step must be positive")
    if config.privacy_distance < 0:
        raise ValueError("privacy_distance must not be negative")


def activity_cells(encoded: str, config: ProcessingConfig) -> CellSet:
    """Return the cells touched by one encoded polyline.

    The track is trimmed by ``privacy_distance`` at both ends, resampled every
    ``sampling_step`` metres and each sample is mapped to its cell.

    Raises:
        MalformedInputError: When the polyline cannot be decoded.
    """

    try:
        coords = polyline.decode(encoded)
    except (ValueError, IndexError, TypeError) as exc:
        raise MalformedInputError(f"Undecodable polyline: {exc}") from exc
    if not coords:
        return set()
    points = [GeoPoint(float(lat), float(lng)) for lat, lng in coords]
    trimmed = trim_ends(points, config.privacy_distance)
    if not trimmed:
        return set()
    return cells_of_points(resample(trimmed, config.sampling_step), config.cell_size)


def _as_activity(item: ActivityLike) -> Activity:
    if isinstance(item, Activity):
        return item
    return Activity.from_payload(item)


class ExplorationProcessor:
    """Accumulates visited cells over a growing set of activities."""

    def __init__(
        self,
        config: ProcessingConfig | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.max_workers = max_workers or MAX_WORKERS
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self._config = replace(config) if config else default_processing_config()
        _validate_config(self._config)
        self._log = logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()
        # Serialises processing runs; a config change waits for a running batch.
        self._run_lock = threading.Lock()
        self._visited: CellSet = set()
        self._processed_ids: Set[int] = set()
        self._activities: Dict[int, Activity] = {}

    @property
    def config(self) -> ProcessingConfig:
        with self._lock:
            return replace(self._config)

    @property
    def visited_cells(self) -> CellSet:
        with self._lock:
            return set(self._visited)

    @property
    def processed_ids(self) -> Set[int]:
        with self._lock:
            return set(self._processed_ids)

    @property
    def stored_activity_count(self) -> int:
        with self._lock:
            return len(self._activities)

    def rectangles(self) -> List[Rectangle]:
        with self._lock:
            cells = set(self._visited)
        return compact(cells)

    def initialize(
        self,
        visited_cells: Iterable[str] | None = None,
        processed_ids: Iterable[int] | None = None,
        activities: Iterable[ActivityLike] | None = None,
        config: ProcessingConfig | None = None,
    ) -> None:
        """Restore previously persisted state."""

        if config is not None:
            _validate_config(config)
        with self._lock:
            if visited_cells is not None:
                self._visited = set(visited_cells)
            if processed_ids is not None:
                self._processed_ids = {int(i) for i in processed_ids}
            if config is not None:
                self._config = replace(config)
            for item in activities or ():
                activity = _as_activity(item)
                self._activities[activity.id] = activity
            self._log.info(
                "Initialised with %d cells, %d processed and %d stored activities",
                len(self._visited),
                len(self._processed_ids),
                len(self._activities),
            )

    def process(
        self,
        activities: Iterable[ActivityLike],
        batch_size: int | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ProcessingResult:
        """Add the cells of every not yet processed activity."""

        items = [_as_activity(item) for item in activities]
        with self._run_lock:
            with self._lock:
                for activity in items:
                    self._activities[activity.id] = activity
                pending = [a for a in items if a.id not in self._processed_ids]
            return self._run(pending, len(items), batch_size, progress, cancel_event)

    def reprocess(
        self,
        batch_size: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> ProcessingResult:
        """Drop derived state and rebuild it from every stored activity."""

        with self._run_lock:
            return self._reprocess(batch_size, progress)

    def update_config(
        self,
        force_reprocess: bool = False,
        batch_size: int | None = None,
        progress: ProgressCallback | None = None,
        **changes: Any,
    ) -> ProcessingResult | None:
        """Apply setting changes; rebuild coverage when it is affected.

        Returns the reprocessing result, or ``None`` when nothing was rebuilt.

        Raises:
            ValueError: For unknown setting names or invalid values.
        """

        unknown = set(changes) - _CONFIG_FIELDS
        if unknown:
            raise ValueError(f"Unknown processing settings: {sorted(unknown)}")
        with self._run_lock:
            with self._lock:
                updated = replace(self._config, **changes)
                _validate_config(updated)
                changed = updated != self._config
                self._config = updated
            self._log.info(
                "Processing config updated: %s (changed=%s force=%s)",
                updated,
                changed,
                force_reprocess,
            )
            if not (changed or force_reprocess):
                return None
            if not self.stored_activity_count:
                self._log.info("No stored activities to reprocess")
                with self._lock:
                    self._visited.clear()
                    self._processed_ids.clear()
                return None
            return self._reprocess(batch_size, progress)

    def clear(self) -> None:
        with self._lock:
            self._visited.clear()
            self._processed_ids.clear()
            self._activities.clear()
        self._log.info("Cleared exploration state")

    def _reprocess(
        self,
        batch_size: int | None,
        progress: ProgressCallback | None,
    ) -> ProcessingResult:
        with self._lock:
            self._visited.clear()
            self._processed_ids.clear()
            items = list(self._activities.values())
        self._log.info("Reprocessing %d stored activities", len(items))
        return self._run(items, len(items), batch_size, progress, None)

    def _run(
        self,
        pending: List[Activity],
        total: int,
        batch_size: int | None,
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> ProcessingResult:
        size = batch_size or ACTIVITY_BATCH_SIZE
        if size <= 0:
            raise ValueError("batch_size must be positive")
        with self._lock:
            initial_cells = len(self._visited)
            config = replace(self._config)
        handled = 0

        def notify_progress() -> None:
            if progress is None:
                return
            try:
                progress(handled, total, self._snapshot(initial_cells, handled))
            except Exception:
                self._log.debug("Progress callback failed", exc_info=True)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for start in range(0, len(pending), size):
                if cancel_event and cancel_event.is_set():
                    self._log.info("Cancellation requested; stopping after %d", handled)
                    break
                batch = pending[start : start + size]
                list(executor.map(lambda a: self._process_activity(a, config), batch))
                handled += len(batch)
                notify_progress()

        result = self._snapshot(initial_cells, handled)
        self._log.info(
            "Processed %d activities: %d new cells (%d total, %d rectangles)",
            handled,
            result.cells_added,
            result.total_cells,
            len(result.rectangles),
        )
        return result

    def _process_activity(self, activity: Activity, config: ProcessingConfig) -> None:
        if config.skip_private and activity.private:
            return
        if not activity.polyline:
            with self._lock:
                self._processed_ids.add(activity.id)
            return
        try:
            cells = activity_cells(activity.polyline, config)
        except ValueError as exc:
            self._log.warning("Failed to process activity %s: %s", activity.id, exc)
            cells = set()
        with self._lock:
            self._visited |= cells
            self._processed_ids.add(activity.id)

    def _snapshot(self, initial_cells: int, handled: int) -> ProcessingResult:
        with self._lock:
            cells = set(self._visited)
        return ProcessingResult(
            cells_added=len(cells) - initial_cells,
            total_cells=len(cells),
            rectangles=compact(cells),
            processed_activities=handled,
        )
