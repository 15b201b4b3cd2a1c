from __future__ import annotations

from pathlib import Path

import pytest

from pantry.services.counties import County
from pantry.services.counties import Region
from pantry.services.counties import counties_by_state
from pantry.services.counties import find_county
from pantry.services.counties import load_counties
from pantry.services.counties import parse_gazetteer
from pantry.services.monitoring import county_stats
from pantry.services.monitoring import unprocessed_counties
from pantry.services.resource_store import ResourceStore

HEADER = "USPS\tGEOID\tANSICODE\tNAME\tALAND\tAWATER\tALAND_SQMI\tAWATER_SQMI\tINTPTLAT\tINTPTLONG"
ROWS = [
    "PA\t42091\t01209182\tMontgomery County\t1250957754\t11378066\t483.0\t4.4\t40.210196\t-75.370170",
    "PA\t42101\t01209191\tPhiladelphia County\t347520282\t19696046\t134.2\t7.6\t40.009376\t-75.133346",
    "NJ\t34021\t00882228\tMercer County\t581580289\t11431766\t224.6\t4.4\t40.282503\t-74.703724",
]


def _gazetteer_text(*extra: str) -> str:
    return "\n".join([HEADER, *ROWS, *extra]) + "\n"


@pytest.fixture
def gazetteer(tmp_path: Path) -> Path:
    path = tmp_path / "counties.txt"
    path.write_text(_gazetteer_text(), encoding="utf-8")
    return path


def test_parse_gazetteer_reads_counties() -> None:
    counties = parse_gazetteer(_gazetteer_text())

    assert [c.geoid for c in counties] == ["42091", "42101", "34021"]
    first = counties[0]
    assert first == County("PA", "42091", "Montgomery County", 40.210196, -75.37017)


def test_parse_gazetteer_skips_bad_lines() -> None:
    counties = parse_gazetteer(_gazetteer_text(
        "",
        "PA\t42003\tshort row",
        "PA\t42003\t01213657\tAllegheny County\t1\t1\t1\t1\tnot-a-lat\t-79.98",
    ))

    assert len(counties) == 3


def test_lookup_helpers(gazetteer: Path) -> None:
    assert len(load_counties(gazetteer)) == 3
    assert [c.name for c in counties_by_state(gazetteer, "pa")] == ["Montgomery County", "Philadelphia County"]
    assert find_county(gazetteer, "montgomery county", "PA").geoid == "42091"
    assert find_county(gazetteer, "Montgomery County", "NJ") is None


def test_zip_region_validation() -> None:
    region = Region.for_zip(" 19002 ")

    assert (region.kind, region.key, region.label) == ("zip", "19002", "zip 19002")
    for bad in ("1900", "19002-1234", "abcde"):
        with pytest.raises(ValueError):
            Region.for_zip(bad)


def test_county_region_carries_centroid(montgomery: County) -> None:
    region = Region.for_county(montgomery)

    assert region.key == "42091"
    assert region.label == "Montgomery County, PA"
    assert (region.latitude, region.longitude) == (40.21, -75.37)


def test_county_stats_and_unprocessed(store: ResourceStore, gazetteer: Path) -> None:
    counties = load_counties(gazetteer)
    montgomery = find_county(gazetteer, "Montgomery County", "PA")
    store.record_search(Region.for_county(montgomery), 4)
    store.record_search(Region.for_zip("19002"), 2)

    stats = county_stats(store, counties)

    assert stats["total"] == 3
    assert stats["searched"] == 1
    assert stats["pending"] == 2
    assert stats["by_state"] == {
        "NJ": {"total": 1, "searched": 0, "pending": 1},
        "PA": {"total": 2, "searched": 1, "pending": 1},
    }
    assert unprocessed_counties(store, counties, "pa") == [
        {"state": "PA", "county_name": "Philadelphia County", "geoid": "42101"},
    ]
    assert len(unprocessed_counties(store, counties)) == 2
