from __future__ import annotations

from pathlib import Path

import pytest

from src.services import regions
from src.services.sync_config import BAY_AREA_COUNTIES, DEFAULT_AGENCIES_PATH, DEFAULT_CITIES_PATH

CITIES_YAML = """
cities:
  - name: Oakland
    county: Alameda County
  - name: San Francisco
    county: San Francisco
  - name: Fresno
    county: Fresno County
  - name: Nowhere
"""


def write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def test_load_city_regions_lowercases_names(tmp_path: Path) -> None:
    mapping = regions.load_city_regions(write(tmp_path, "cities.yml", CITIES_YAML))
    assert mapping == {
        "oakland": "Alameda County",
        "san francisco": "San Francisco",
        "fresno": "Fresno County",
    }


def test_load_city_regions_accepts_top_level_list(tmp_path: Path) -> None:
    path = write(tmp_path, "cities.yml", "- name: Napa\n  county: Napa County\n")
    assert regions.load_city_regions(path) == {"napa": "Napa County"}


def test_load_city_regions_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        regions.load_city_regions(tmp_path / "absent.yml")


def test_resolve_region_is_case_insensitive_exact_match(tmp_path: Path) -> None:
    mapping = regions.load_city_regions(write(tmp_path, "cities.yml", CITIES_YAML))
    assert regions.resolve_region("OAKLAND", mapping, BAY_AREA_COUNTIES) == "Alameda County"
    assert regions.resolve_region(" san francisco ", mapping, BAY_AREA_COUNTIES) == "San Francisco"
    assert regions.resolve_region("Oakland Hills", mapping, BAY_AREA_COUNTIES) is None
    assert regions.resolve_region("Fresno", mapping, BAY_AREA_COUNTIES) is None
    assert regions.resolve_region("Fresno", mapping) == "Fresno County"
    assert regions.resolve_region(None, mapping, BAY_AREA_COUNTIES) is None


def test_load_city_agencies(tmp_path: Path) -> None:
    path = write(
        tmp_path,
        "agencies.yml",
        "Oakland:\n  agency: Oakland Police Department\n  phone: 510-555-0100\nBroken: nope\n",
    )
    agencies = regions.load_city_agencies(path)
    assert agencies == {"oakland": regions.AgencyContact("Oakland Police Department", "510-555-0100")}
    assert regions.lookup_agency("OAKLAND", agencies).agency == "Oakland Police Department"
    assert regions.lookup_agency("Berkeley", agencies) is None


def test_load_city_agencies_missing_or_invalid(tmp_path: Path) -> None:
    assert regions.load_city_agencies(None) == {}
    assert regions.load_city_agencies(tmp_path / "absent.yml") == {}
    assert regions.load_city_agencies(write(tmp_path, "bad.yml", "key: [unclosed")) == {}


def test_shipped_reference_tables_cover_every_county() -> None:
    mapping = regions.load_city_regions(DEFAULT_CITIES_PATH)
    assert set(mapping.values()) == set(BAY_AREA_COUNTIES)
    agencies = regions.load_city_agencies(DEFAULT_AGENCIES_PATH)
    assert "oakland" in agencies
    assert all(contact.phone != "911" for contact in agencies.values())
