"""Static mapping from (country, region) to the road archive covering it."""

from __future__ import annotations

from typing import Dict, Optional

from ..config import TILES_BASE_URL

# country -> {"default": filename, "regions": {region: filename}}
REGION_ARCHIVES: Dict[str, Dict[str, object]] = {
    "United States": {
        "regions": {
            "California": "california.pmtiles",
            "Colorado": "colorado.pmtiles",
            "Illinois": "illinois.pmtiles",
            "Indiana": "indiana.pmtiles",
            "Nevada": "nevada.pmtiles",
            "New York": "new-york.pmtiles",
            "Utah": "utah.pmtiles",
            "Wisconsin": "wisconsin.pmtiles",
        },
    },
    "Germany": {
        "regions": {
            "Bayern": "bayern.pmtiles",
            "Bavaria": "bayern.pmtiles",
            "Baden-Württemberg": "baden-wuerttemberg.pmtiles",
        },
    },
    "Monaco": {"default": "monaco.pmtiles"},
    "Switzerland": {"default": "switzerland.pmtiles"},
    "India": {"default": "india.pmtiles"},
    "France": {
        "regions": {
            "Rhône-Alpes": "rhone-alpes.pmtiles",
            "Auvergne-Rhône-Alpes": "rhone-alpes.pmtiles",
            "Provence-Alpes-Côte d'Azur": "provence-alpes-cote-d-azur.pmtiles",
        },
    },
}

__all__ = [
    "REGION_ARCHIVES",
    "tile_source_filename",
    "has_road_coverage",
    "tile_source_url",
]


def tile_source_filename(country: str, region: Optional[str] = None) -> Optional[str]:
    """Return the archive filename for a location, or ``None`` if uncovered.

    An exact region match wins; otherwise the country's default archive is
    used when it has one.
    """

    if not country:
        return None
    entry = REGION_ARCHIVES.get(country)
    if entry is None:
        return None
    regions = entry.get("regions") or {}
    if region and isinstance(regions, dict) and region in regions:
        return str(regions[region])
    default = entry.get("default")
    return str(default) if default else None


def has_road_coverage(country: str, region: Optional[str] = None) -> bool:
    return tile_source_filename(country, region) is not None


def tile_source_url(filename: str, base_url: str = TILES_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/{filename}"
