"""Central error types used across the application."""

from __future__ import annotations


class OpenWorldError(RuntimeError):
    """Base error for the exploration toolkit."""


class MalformedInputError(OpenWorldError, ValueError):
    """Raised when input data cannot be interpreted and must be rejected."""


class MalformedKeyError(MalformedInputError):
    """Raised when a cell key string does not encode an integer cell."""


class NonFiniteCoordinateError(MalformedInputError):
    """Raised when geometry contains NaN or infinite coordinates."""


class TileFetchError(OpenWorldError):
    """Raised when a road tile cannot be retrieved from its archive."""


class TileDecodeError(TileFetchError):
    """Raised when tile bytes are not a readable vector tile."""


__all__ = [
    "OpenWorldError",
    "MalformedInputError",
    "MalformedKeyError",
    "NonFiniteCoordinateError",
    "TileFetchError",
    "TileDecodeError",
]
