"""
PostgreSQL resource store shared by the discovery service and the worker.

Owns every read and write the pipeline makes against ``resources`` and
``region_searches``:

- search cache freshness and region lookups,
- the dedup-key pre-check before inserts,
- the lease claim used by the enrichment worker,
- the enrichment state transitions,
- the queue counts used for monitoring.

Each row stores its dedup key, computed in Python with the same
normalization as incoming candidates. The key is indexed but not unique, so
two racing inserts can both land.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Callable, Iterable

from loguru import logger
from sqlalchemy import ColumnElement
from sqlalchemy import and_
from sqlalchemy import func
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.engine import Engine

from pantry.config import CACHE_TTL_DAYS
from pantry.config import MAX_ENRICHMENT_FAILURES
from pantry.config import REASON_PERMANENTLY_CLOSED
from pantry.models import CandidateResource
from pantry.models import EnrichedFields
from pantry.models import dedup_key
from pantry.services.counties import Region
from pantrydb.db import get_engine
from pantrydb.db import get_session_factory
from pantrydb.db import resolve_pg_dsn
from pantrydb.models import Base
from pantrydb.models import RegionSearch
from pantrydb.models import Resource

Clock = Callable[[], dt.datetime]

# Columns a verifier may fill in on success.
MERGEABLE_FIELDS = (
    "name",
    "address",
    "city",
    "state",
    "zip_code",
    "latitude",
    "longitude",
    "phone",
    "hours",
    "rating",
    "source_url",
    "place_id",
    "verification_notes",
)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _closed_permanently() -> ColumnElement[bool]:
    return Resource.enrichment_failure_reason.contains(REASON_PERMANENTLY_CLOSED)


def claimable_clause(cutoff: dt.datetime) -> ColumnElement[bool]:
    """Rows the worker may lease: pending, under the strike limit, not closed, lease expired."""
    return and_(
        Resource.needs_enrichment.is_(True),
        Resource.enrichment_failure_count < MAX_ENRICHMENT_FAILURES,
        or_(Resource.enrichment_failure_reason.is_(None), ~_closed_permanently()),
        or_(
            Resource.last_enrichment_attempt.is_(None),
            Resource.last_enrichment_attempt < cutoff,
        ),
    )


def merge_enriched(current: dict[str, Any], enriched: EnrichedFields) -> dict[str, Any]:
    """Incoming non-empty values win; empty ones fall back to what is stored."""
    incoming = enriched.non_empty()
    return {
        field: incoming.get(field, current.get(field))
        for field in MERGEABLE_FIELDS
    }


class ResourceStore:
    def __init__(
        self,
        engine: Engine,
        *,
        clock: Clock = utcnow,
        cache_ttl: dt.timedelta = dt.timedelta(days=CACHE_TTL_DAYS),
    ) -> None:
        self._engine = engine
        self._session_factory = get_session_factory(engine)
        self._clock = clock
        self.cache_ttl = cache_ttl

    @classmethod
    def from_dsn(cls, dsn: str | None = None, **kwargs: Any) -> ResourceStore:
        return cls(get_engine(resolve_pg_dsn(dsn)), **kwargs)

    @property
    def is_postgres(self) -> bool:
        return self._engine.dialect.name == "postgresql"

    def ensure_schema(self) -> None:
        Base.metadata.create_all(bind=self._engine)

    def now(self) -> dt.datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Search cache
    # ------------------------------------------------------------------

    def _region_filter(self, region: Region) -> ColumnElement[bool]:
        if region.kind == "zip":
            return Resource.zip_code == region.key
        return Resource.county_geoid == region.key

    def latest_fresh_search(self, region: Region) -> RegionSearch | None:
        cutoff = self.now() - self.cache_ttl
        stmt = (
            select(RegionSearch)
            .where(
                RegionSearch.region_type == region.kind,
                RegionSearch.region_key == region.key,
                RegionSearch.searched_at > cutoff,
            )
            .order_by(RegionSearch.searched_at.desc(), RegionSearch.id.desc())
            .limit(1)
        )
        with self._session_factory() as session:
            return session.scalars(stmt).first()

    def count_region_resources(self, region: Region) -> int:
        stmt = select(func.count()).select_from(Resource).where(self._region_filter(region))
        with self._session_factory() as session:
            return int(session.scalar(stmt) or 0)

    def is_fresh(self, region: Region) -> bool:
        if self.latest_fresh_search(region) is None:
            return False
        return self.count_region_resources(region) > 0

    def resources_for_region(self, region: Region) -> list[Resource]:
        stmt = (
            select(Resource)
            .where(self._region_filter(region))
            .order_by(Resource.name, Resource.id)
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt))

    def record_search(self, region: Region, result_count: int) -> None:
        with self._session_factory.begin() as session:
            session.add(
                RegionSearch(
                    region_type=region.kind,
                    region_key=region.key,
                    region_name=region.name,
                    state=region.state,
                    searched_at=self.now(),
                    result_count=result_count,
                )
            )

    def searched_region_keys(self, region_type: str) -> set[str]:
        stmt = select(RegionSearch.region_key).where(RegionSearch.region_type == region_type).distinct()
        with self._session_factory() as session:
            return set(session.scalars(stmt))

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def existing_dedup_keys(self, candidates: Iterable[CandidateResource]) -> set[str]:
        """Return the dedup keys of ``candidates`` that already belong to a stored resource."""
        candidates = list(candidates)
        if not candidates:
            return set()
        wanted = {candidate.dedup_key for candidate in candidates}
        stmt = select(Resource.dedup_key).where(Resource.dedup_key.in_(wanted)).distinct()
        with self._session_factory() as session:
            return set(session.scalars(stmt))

    def insert_resource(
        self,
        candidate: CandidateResource,
        region: Region,
        *,
        enriched: EnrichedFields | None = None,
    ) -> Resource:
        """Store a candidate. With ``enriched`` it lands verified, otherwise pending."""
        values = candidate.model_dump(exclude={"types", "category"})
        values["category"] = candidate.category.value
        if region.kind == "zip":
            values["zip_code"] = region.key
            values["location_type"] = "zip"
        else:
            values["county_name"] = region.name
            values["county_geoid"] = region.key
            values["location_type"] = "county"
            values["state"] = values.get("state") or region.state

        now = self.now()
        if enriched is not None:
            values.update(merge_enriched(values, enriched))
            if region.kind == "zip":
                values["zip_code"] = region.key
            values["is_verified"] = True
            values["needs_enrichment"] = False
            values["last_verified_at"] = now
        else:
            values["needs_enrichment"] = True
        values["dedup_key"] = dedup_key(values.get("name"), values.get("address"))

        resource = Resource(**values, created_at=now, enrichment_failure_count=0, exportable=True)
        with self._session_factory.begin() as session:
            session.add(resource)
        return resource

    # ------------------------------------------------------------------
    # Enrichment lease + transitions
    # ------------------------------------------------------------------

    def claim_batch(self, limit: int, lease: dt.timedelta) -> list[Resource]:
        """Select up to ``limit`` claimable rows, newest first, and stamp their lease.

        Selection and stamping share one transaction, so a second claim
        issued inside the lease window cannot see the same rows.
        """
        if limit <= 0:
            return []
        now = self.now()
        stmt = (
            select(Resource)
            .where(claimable_clause(now - lease))
            .order_by(Resource.created_at.desc(), Resource.id.desc())
            .limit(limit)
        )
        if self.is_postgres:
            stmt = stmt.with_for_update(skip_locked=True)

        with self._session_factory.begin() as session:
            rows = list(session.scalars(stmt))
            if rows:
                session.execute(
                    update(Resource)
                    .where(Resource.id.in_([row.id for row in rows]))
                    .values(last_enrichment_attempt=now),
                    execution_options={"synchronize_session": False},
                )
                for row in rows:
                    row.last_enrichment_attempt = now
                    session.expunge(row)
        return rows

    def mark_verified(self, resource_id: int, enriched: EnrichedFields) -> None:
        now = self.now()
        with self._session_factory.begin() as session:
            resource = session.get(Resource, resource_id)
            if resource is None:
                logger.warning(f"mark_verified: resource {resource_id} no longer exists")
                return
            current = {field: getattr(resource, field) for field in MERGEABLE_FIELDS}
            for field, value in merge_enriched(current, enriched).items():
                setattr(resource, field, value)
            resource.dedup_key = dedup_key(resource.name, resource.address)
            resource.is_verified = True
            resource.needs_enrichment = False
            resource.enrichment_failure_count = 0
            resource.enrichment_failure_reason = None
            resource.last_enrichment_attempt = now
            resource.last_verified_at = now

    def mark_retry(self, resource_id: int, reason: str) -> None:
        self._record_failure(resource_id, reason)

    def mark_permanently_closed(self, resource_id: int, reason: str = REASON_PERMANENTLY_CLOSED) -> None:
        if REASON_PERMANENTLY_CLOSED.lower() not in reason.lower():
            reason = f"{REASON_PERMANENTLY_CLOSED}: {reason}"
        self._record_failure(resource_id, reason, exportable=False)

    def _record_failure(self, resource_id: int, reason: str, **extra: Any) -> None:
        stmt = (
            update(Resource)
            .where(Resource.id == resource_id)
            .values(
                enrichment_failure_count=Resource.enrichment_failure_count + 1,
                enrichment_failure_reason=reason,
                last_enrichment_attempt=self.now(),
                **extra,
            )
        )
        with self._session_factory.begin() as session:
            session.execute(stmt, execution_options={"synchronize_session": False})

    def get(self, resource_id: int) -> Resource | None:
        with self._session_factory() as session:
            return session.get(Resource, resource_id)

    def iter_resources(self, *, limit: int | None = None, exportable_only: bool = False) -> list[Resource]:
        stmt = select(Resource).order_by(Resource.id)
        if exportable_only:
            stmt = stmt.where(Resource.exportable.is_(True))
        if limit:
            stmt = stmt.limit(limit)
        with self._session_factory() as session:
            return list(session.scalars(stmt))

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def enrichment_stats(self) -> dict[str, int]:
        not_closed = or_(Resource.enrichment_failure_reason.is_(None), ~_closed_permanently())
        pending = and_(
            Resource.needs_enrichment.is_(True),
            Resource.enrichment_failure_count < MAX_ENRICHMENT_FAILURES,
            not_closed,
        )
        retrying = and_(pending, Resource.enrichment_failure_count >= 1)
        permanently_failed = or_(
            Resource.enrichment_failure_count >= MAX_ENRICHMENT_FAILURES,
            _closed_permanently(),
        )

        def _count(condition: ColumnElement[bool]) -> int:
            stmt = select(func.count()).select_from(Resource).where(condition)
            return int(session.scalar(stmt) or 0)

        with self._session_factory() as session:
            return {
                "pending": _count(pending),
                "retrying": _count(retrying),
                "permanently_failed": _count(permanently_failed),
                "verified": _count(Resource.is_verified.is_(True)),
            }
