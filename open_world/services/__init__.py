"""Application services built on the grid and tile layers."""

from .activity_service import ExplorationProcessor, activity_cells
from .city_service import CityService, cells_bbox

__all__ = ["ExplorationProcessor", "activity_cells", "CityService", "cells_bbox"]
