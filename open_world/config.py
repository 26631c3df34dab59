"""Central configuration for the Open World exploration tools.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Every value can be overridden through an environment
variable of the same name (optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Grid settings
# ---------------------------------------------------------------------------
# Side length (metres) of one grid cell. Changing it invalidates the visited
# cells accumulated for the previous size.
CELL_SIZE_M = _env_float("CELL_SIZE_M", 25.0)

# Spacing (metres) between samples taken along an activity polyline. Keep it
# at or below half the cell size so no cell is skipped.
SAMPLING_STEP_M = _env_float("SAMPLING_STEP_M", 12.5)

# Arc length (metres) removed from both ends of every activity before it is
# rasterized. Set to 0 to disable start/finish trimming.
PRIVACY_DISTANCE_M = _env_float("PRIVACY_DISTANCE_M", 100.0)

# Ignore activities flagged as private.
SKIP_PRIVATE_ACTIVITIES = _env_bool("SKIP_PRIVATE_ACTIVITIES", False)


# ---------------------------------------------------------------------------
# Activity processing
# ---------------------------------------------------------------------------
# Threads used to rasterize activities in parallel.
MAX_WORKERS = _env_int("MAX_WORKERS", 4)

# Number of activities handled between progress notifications.
ACTIVITY_BATCH_SIZE = _env_int("ACTIVITY_BATCH_SIZE", 20)


# ---------------------------------------------------------------------------
# Road tiles
# ---------------------------------------------------------------------------
# Base URL hosting the regional PMTiles road archives.
TILES_BASE_URL = os.getenv(
    "TILES_BASE_URL", "https://pub-fe917f235736482c991c98f959f63e11.r2.dev"
)

# Zoom level used for road tile queries.
ROAD_TILE_ZOOM = _env_int("ROAD_TILE_ZOOM", 14)

# Maximum number of tiles fetched/decoded concurrently for one query.
TILE_FETCH_CONCURRENCY = _env_int("TILE_FETCH_CONCURRENCY", 32)

# Consecutive fetch failures after which remote fetching stops until the
# tile source is reconfigured.
TILE_CIRCUIT_BREAKER_THRESHOLD = _env_int("TILE_CIRCUIT_BREAKER_THRESHOLD", 5)

# Directory (absolute or relative) where rasterized road cells are cached per
# tile and cell size.
TILE_CACHE_DIR = os.getenv("TILE_CACHE_DIR", "road_tile_cache")

# Number of PMTiles header/directory byte ranges kept in memory per archive.
PMTILES_DIRECTORY_CACHE_SIZE = _env_int("PMTILES_DIRECTORY_CACHE_SIZE", 64)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
# HTTP session pool sizes for concurrent range requests.
HTTP_POOL_CONNECTIONS = _env_int("HTTP_POOL_CONNECTIONS", 32)
HTTP_POOL_MAXSIZE = _env_int("HTTP_POOL_MAXSIZE", 32)

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_float("REQUEST_TIMEOUT", 15.0)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
# Number of cities exposed by the city ranking.
CITY_STATS_TOP_N = _env_int("CITY_STATS_TOP_N", 5)

# Viewports larger than this many cells are not evaluated (roughly a
# 50km x 50km area with 25m cells would already be 4M cells).
VIEWPORT_MAX_CELLS = _env_int("VIEWPORT_MAX_CELLS", 2_000_000)
