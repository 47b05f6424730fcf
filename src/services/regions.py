"""
Region lookup for missing persons cases.

A case is kept only when the city it was reported missing from resolves, by exact
case-insensitive name, to one of the configured counties. The lookup tables are plain
YAML files so the site and this job can share them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

import yaml

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgencyContact:
    agency: str
    phone: str


def _read_yaml(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


def load_city_regions(path: Path) -> Dict[str, str]:
    """Map lowercase city names to their county.

    Accepts either a top-level list of ``{name, county}`` entries or a mapping with a
    ``cities`` list. Raises ``FileNotFoundError`` when the file is missing because no
    case can be placed without it.
    """
    payload = _read_yaml(path)
    if isinstance(payload, dict):
        payload = payload.get("cities") or []
    mapping: Dict[str, str] = {}
    for entry in payload or []:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip()
        county = str(entry.get("county") or "").strip()
        if name and county:
            mapping[name.lower()] = county
    LOGGER.debug("Loaded %s city-to-county mappings from %s", len(mapping), path)
    return mapping


def load_city_agencies(path: Path | None) -> Dict[str, AgencyContact]:
    """Load the static city -> investigating agency table (empty when the file is absent)."""
    table: Dict[str, AgencyContact] = {}
    if path is None or not path.exists():
        LOGGER.info("City agency table %s not found; contact fallback disabled.", path)
        return table
    try:
        payload = _read_yaml(path)
    except (OSError, yaml.YAMLError):
        LOGGER.warning("Failed to read city agency table at %s", path, exc_info=True)
        return table
    if not isinstance(payload, dict):
        return table
    for city, entry in payload.items():
        if not isinstance(entry, dict):
            continue
        agency = str(entry.get("agency") or "").strip()
        phone = str(entry.get("phone") or "").strip()
        if city and agency:
            table[str(city).strip().lower()] = AgencyContact(agency, phone)
    LOGGER.debug("Loaded %s city agency contacts", len(table))
    return table


def resolve_region(
    place: str | None,
    city_regions: Mapping[str, str],
    allowed_regions: Iterable[str] | None = None,
) -> str | None:
    """Return the county for `place`, or None when it is unknown or outside the region set."""
    if not place:
        return None
    region = city_regions.get(place.strip().lower())
    if not region:
        return None
    if allowed_regions is not None and region not in set(allowed_regions):
        return None
    return region


def lookup_agency(city: str | None, agencies: Mapping[str, AgencyContact]) -> AgencyContact | None:
    if not city:
        return None
    return agencies.get(city.strip().lower())
