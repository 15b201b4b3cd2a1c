"""
Census county gazetteer loader and search regions.

The gazetteer is the tab-separated national counties file published by the
Census Bureau (USPS, GEOID, ANSICODE, NAME, ALAND, AWATER, ALAND_SQMI,
AWATER_SQMI, INTPTLAT, INTPTLONG).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from loguru import logger

ZIP_RE = re.compile(r"^\d{5}$")


@dataclass(frozen=True, slots=True)
class County:
    state: str      # two-letter USPS code
    geoid: str
    name: str       # e.g. "Montgomery County"
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Region:
    """A discovery scope: a zip code (narrow) or a county (wide)."""

    kind: str       # zip|county
    key: str        # zip code or county GEOID
    name: str
    state: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def for_zip(cls, zip_code: str) -> Region:
        zip_code = zip_code.strip()
        if not ZIP_RE.match(zip_code):
            raise ValueError(f"Invalid zip code: {zip_code!r}")
        return cls(kind="zip", key=zip_code, name=zip_code)

    @classmethod
    def for_county(cls, county: County) -> Region:
        return cls(
            kind="county",
            key=county.geoid,
            name=county.name,
            state=county.state,
            latitude=county.latitude,
            longitude=county.longitude,
        )

    @property
    def label(self) -> str:
        if self.kind == "zip":
            return f"zip {self.key}"
        return f"{self.name}, {self.state}"


def parse_gazetteer(text: str) -> list[County]:
    counties: list[County] = []
    for line in text.splitlines()[1:]:
        line = line.strip()
        if not line:
            continue
        parts = [part.strip() for part in line.split("\t")]
        if len(parts) < 10:
            continue
        state, geoid, name = parts[0], parts[1], parts[3]
        try:
            latitude = float(parts[8])
            longitude = float(parts[9])
        except ValueError:
            continue
        if state and geoid and name:
            counties.append(County(state, geoid, name, latitude, longitude))
    return counties


@lru_cache(maxsize=4)
def load_counties(path: Path) -> tuple[County, ...]:
    counties = tuple(parse_gazetteer(path.read_text(encoding="utf-8")))
    logger.info(f"Loaded {len(counties)} counties from {path}")
    return counties


def counties_by_state(path: Path, state: str) -> list[County]:
    wanted = state.strip().upper()
    return [county for county in load_counties(path) if county.state == wanted]


def find_county(path: Path, name: str, state: str) -> County | None:
    wanted_name = name.strip().lower()
    wanted_state = state.strip().upper()
    for county in load_counties(path):
        if county.state == wanted_state and county.name.lower() == wanted_name:
            return county
    return None
