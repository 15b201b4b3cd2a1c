"""
Geographic filters for county-wide discovery.

Regional food banks headquartered in a big city tend to show up in searches
for every county they serve. For hyper-local results we drop candidates whose
city is a major metro that is not the county being searched.
"""

from __future__ import annotations

import re
from typing import Iterable

from loguru import logger

from pantry.models import CandidateResource

ADMINISTRATIVE_SUFFIX_RE = re.compile(
    r"\s+(County|Parish|Borough|Census Area)\b", re.IGNORECASE
)

# State capitals and major metros that host umbrella organisations
MAJOR_CITIES = frozenset({
    "anchorage", "fairbanks", "juneau",
    "los angeles", "san francisco", "san diego", "sacramento",
    "new york", "brooklyn", "queens", "manhattan",
    "chicago",
    "houston", "dallas", "austin", "san antonio",
    "phoenix", "tucson",
    "philadelphia",
    "seattle", "spokane",
})


def expected_locality(region_name: str | None) -> str:
    """'Dillingham Census Area' -> 'dillingham'."""
    parts = ADMINISTRATIVE_SUFFIX_RE.split(region_name or "", maxsplit=1)
    return parts[0].strip().lower()


def is_outside_region(candidate: CandidateResource, region_name: str) -> bool:
    city = (candidate.city or "").strip().lower()
    if not city:
        return False
    return city in MAJOR_CITIES and city not in expected_locality(region_name)


def filter_by_region(
    candidates: Iterable[CandidateResource],
    region_name: str,
) -> list[CandidateResource]:
    kept: list[CandidateResource] = []
    for candidate in candidates:
        if is_outside_region(candidate, region_name):
            logger.info(
                f"Filtered out {candidate.name} - located in major city "
                f"{candidate.city} outside {region_name}"
            )
            continue
        kept.append(candidate)
    return kept


def filter_by_state(
    candidates: Iterable[CandidateResource],
    state: str,
) -> list[CandidateResource]:
    expected = state.strip().upper()
    kept: list[CandidateResource] = []
    for candidate in candidates:
        reported = (candidate.state or "").strip().upper()
        if reported and reported != expected:
            logger.info(
                f"Filtered out {candidate.name} - wrong state ({reported} instead of {expected})"
            )
            continue
        kept.append(candidate)
    return kept
