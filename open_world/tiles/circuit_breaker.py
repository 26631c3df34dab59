"""Failure counter that stops remote tile fetches after repeated errors."""

from __future__ import annotations

import logging
import threading

from ..config import TILE_CIRCUIT_BREAKER_THRESHOLD

_LOGGER = logging.getLogger(__name__)

__all__ = ["CircuitBreaker"]


class CircuitBreaker:
    """One-way breaker: once open it stays open until :meth:`reset`.

    Successes reset the failure counter; ``threshold`` consecutive failures
    open the breaker. Safe to share between fetch threads.
    """

    def __init__(self, threshold: int = TILE_CIRCUIT_BREAKER_THRESHOLD) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self._threshold = threshold
        self._lock = threading.Lock()
        self._failures = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._open

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._open or self._failures < self._threshold:
                return
            self._open = True
        _LOGGER.warning(
            "Too many tile fetch failures (%d); opening circuit breaker.",
            self._threshold,
        )

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._open = False

