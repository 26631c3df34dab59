"""Open World exploration toolkit."""

from .errors import MalformedInputError, OpenWorldError, TileFetchError
from .main import main
from .models import Activity, City, ProcessingConfig, Rectangle
from .services import CityService, ExplorationProcessor

__all__ = [
    "main",
    "Activity",
    "City",
    "ProcessingConfig",
    "Rectangle",
    "CityService",
    "ExplorationProcessor",
    "MalformedInputError",
    "OpenWorldError",
    "TileFetchError",
]
