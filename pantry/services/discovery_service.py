"""
Discovery orchestrator: cache check, discovery, filtering, dedup and storage.

Two flows share the same skeleton:

- ``search_zip`` (narrow) verifies every new candidate before storing it and
  drops the ones that fail verification.
- ``search_county`` (wide) stores every new candidate as pending and leaves
  verification to the enrichment worker.

Either way the caller gets every stored resource for the region, split by
category.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable, List, Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from pantry.config import DISCOVERY_QUERY_DELAY_SECONDS
from pantry.config import VERIFY_DELAY_SECONDS
from pantry.errors import ConfigurationError
from pantry.logging import bind_context
from pantry.logging import search_log
from pantry.models import CandidateResource
from pantry.models import EnrichedFields
from pantry.models import ResourceCategory
from pantry.models import ResourceView
from pantry.models import SearchResult
from pantry.services.counties import County
from pantry.services.counties import Region
from pantry.services.geo_filter import filter_by_region
from pantry.services.geo_filter import filter_by_state
from pantry.services.places_discovery import DiscoveryAdapter
from pantry.services.resource_store import ResourceStore
from pantry.services.source_filter import filter_by_source
from pantry.services.verifier import Verifier
from pantry.services.verifier import failure_reason
from pantry.services.verifier import result_from_exception
from pantry.state import DiscoveryStats

ZIP_QUERIES = (
    "food pantries near zip code {key}",
    "food banks near zip code {key}",
    "emergency food assistance near {key}",
)

COUNTY_QUERIES = (
    "food pantry in {name}, {state}",
    "food bank in {name}, {state}",
    "emergency food assistance in {name}, {state}",
)


def dedupe_candidates(candidates: Iterable[CandidateResource]) -> List[CandidateResource]:
    """Keep the first candidate seen for each dedup key."""
    seen: set[str] = set()
    unique: List[CandidateResource] = []
    for candidate in candidates:
        key = candidate.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def build_search_result(resources: Iterable[object], *, cached: bool) -> SearchResult:
    result = SearchResult(cached=cached)
    buckets = {
        ResourceCategory.PANTRY.value: result.pantries,
        ResourceCategory.BANK.value: result.banks,
    }
    for resource in resources:
        view = ResourceView.model_validate(resource)
        buckets.get(view.category, result.mixed).append(view)
    return result


class DiscoveryService:
    def __init__(
        self,
        store: ResourceStore,
        discovery: DiscoveryAdapter,
        verifier: Verifier,
        *,
        query_delay: float = DISCOVERY_QUERY_DELAY_SECONDS,
        verify_delay: float = VERIFY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.discovery = discovery
        self.verifier = verifier
        self.query_delay = query_delay
        self.verify_delay = verify_delay
        self._sleep = sleep
        self.last_stats: DiscoveryStats | None = None

    def search_zip(self, zip_code: str) -> SearchResult:
        return self._search(Region.for_zip(zip_code), ZIP_QUERIES)

    def search_county(self, county: County) -> SearchResult:
        return self._search(Region.for_county(county), COUNTY_QUERIES)

    def _search(self, region: Region, templates: Sequence[str]) -> SearchResult:
        log = bind_context(region=region.label, region_type=region.kind)

        # Store read errors propagate to the caller.
        if self.store.is_fresh(region):
            log.info(f"Cache hit for {region.label}")
            self.last_stats = None
            return build_search_result(self.store.resources_for_region(region), cached=True)

        stats = DiscoveryStats(region=region.label)
        self.last_stats = stats
        queries = [template.format(key=region.key, name=region.name, state=region.state) for template in templates]
        candidates = self._discover(region, queries, stats)

        unique = dedupe_candidates(candidates)
        stats.unique = len(unique)

        kept = filter_by_source(unique)
        if region.kind == "county":
            kept = filter_by_region(kept, region.name)
            if region.state:
                kept = filter_by_state(kept, region.state)
        stats.after_filters = len(kept)

        existing = self.store.existing_dedup_keys(kept)
        new = [candidate for candidate in kept if candidate.dedup_key not in existing]
        stats.already_known = len(kept) - len(new)

        if region.kind == "zip":
            self._verify_and_store(new, region, stats)
        else:
            self._store_pending(new, region, stats)

        self.store.record_search(region, stats.stored)
        log.bind(**stats.as_dict()).info(
            f"Discovery for {region.label}: {stats.raw} raw, {stats.unique} unique, "
            f"{stats.after_filters} after filters, {stats.stored} stored"
        )
        return build_search_result(self.store.resources_for_region(region), cached=False)

    def _discover(self, region: Region, queries: Sequence[str], stats: DiscoveryStats) -> List[CandidateResource]:
        collected: List[CandidateResource] = []
        for index, query in enumerate(queries):
            if index:
                self._sleep(self.query_delay)
            stats.queries += 1
            started = time.perf_counter()
            results: List[CandidateResource] = []
            try:
                for candidate in self.discovery.search(query, region):
                    results.append(candidate)
            except ConfigurationError:
                raise
            except Exception as exc:  # noqa: BLE001
                stats.failed_queries += 1
                stats.errors.append(f"{query}: {exc}")
                logger.warning(
                    f"Discovery query failed for {region.label}: {query!r}: {exc} "
                    f"(keeping {len(results)} results already received)"
                )
            stats.raw += len(results)
            search_log(
                "google_places",
                query,
                results_raw=len(results),
                duration_ms=(time.perf_counter() - started) * 1000,
                region=region.label,
            )
            collected.extend(results)
        return collected

    def _insert(self, candidate: CandidateResource, region: Region, stats: DiscoveryStats,
                enriched: EnrichedFields | None = None) -> bool:
        try:
            self.store.insert_resource(candidate, region, enriched=enriched)
        except SQLAlchemyError as exc:
            stats.errors.append(f"insert {candidate.name}: {exc}")
            logger.error(f"Failed to store {candidate.name} for {region.label}: {exc}")
            return False
        stats.stored += 1
        return True

    def _store_pending(self, candidates: Sequence[CandidateResource], region: Region, stats: DiscoveryStats) -> None:
        for candidate in candidates:
            self._insert(candidate, region, stats)

    def _verify_and_store(self, candidates: Sequence[CandidateResource], region: Region, stats: DiscoveryStats) -> None:
        for index, candidate in enumerate(candidates):
            if index:
                self._sleep(self.verify_delay)
            try:
                result = self.verifier.verify(candidate)
            except ConfigurationError:
                raise
            except Exception as exc:  # noqa: BLE001
                result = result_from_exception(exc)

            if not result.verified:
                stats.dropped += 1
                logger.info(f"Dropping {candidate.name}: {failure_reason(result)}")
                continue
            stats.verified += 1
            self._insert(candidate, region, stats, enriched=result.data)
