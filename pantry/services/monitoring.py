"""County coverage and enrichment queue reporting."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, List, Sequence

from pantry.services.counties import County
from pantry.services.resource_store import ResourceStore


def county_stats(store: ResourceStore, counties: Sequence[County]) -> Dict[str, Any]:
    searched = store.searched_region_keys("county")
    by_state: Dict[str, Dict[str, int]] = defaultdict(lambda: {"total": 0, "searched": 0, "pending": 0})
    for county in counties:
        bucket = by_state[county.state]
        bucket["total"] += 1
        if county.geoid in searched:
            bucket["searched"] += 1
        else:
            bucket["pending"] += 1

    searched_total = sum(bucket["searched"] for bucket in by_state.values())
    return {
        "total": len(counties),
        "searched": searched_total,
        "pending": len(counties) - searched_total,
        "by_state": dict(sorted(by_state.items())),
    }


def unprocessed_counties(
    store: ResourceStore,
    counties: Sequence[County],
    state: str | None = None,
) -> List[Dict[str, str]]:
    searched = store.searched_region_keys("county")
    wanted_state = state.strip().upper() if state else None
    return [
        {"state": county.state, "county_name": county.name, "geoid": county.geoid}
        for county in counties
        if county.geoid not in searched and (wanted_state is None or county.state == wanted_state)
    ]
