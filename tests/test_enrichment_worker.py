from __future__ import annotations

import asyncio
import threading
import time
from typing import Any

import pytest

from pantry.errors import ConfigurationError
from pantry.errors import PermanentClosureSignal
from pantry.models import CandidateResource
from pantry.models import EnrichedFields
from pantry.models import VerificationOutcome
from pantry.models import VerificationResult
from pantry.services.counties import Region
from pantry.services.enrichment_worker import EnrichmentWorker
from pantry.services.enrichment_worker import candidate_from_resource
from pantry.services.resource_store import ResourceStore


class _FakeVerifier:
    """Outcome per resource name; defaults to verified."""

    def __init__(self, outcomes: dict[str, Any] | None = None, delay: float = 0.0) -> None:
        self.outcomes = outcomes or {}
        self.delay = delay
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def verify(self, candidate: CandidateResource) -> VerificationResult:
        with self._lock:
            self.calls.append(candidate.name)
        if self.delay:
            time.sleep(self.delay)
        outcome = self.outcomes.get(candidate.name, VerificationOutcome.VERIFIED)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is VerificationOutcome.VERIFIED:
            return VerificationResult(outcome=outcome, data=EnrichedFields(phone="555-0100"))
        return VerificationResult(outcome=outcome)


class _GatedVerifier:
    """Blocks every call until released; records peak concurrency."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def verify(self, candidate: CandidateResource) -> VerificationResult:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            self.release.wait(timeout=5)
            return VerificationResult(outcome=VerificationOutcome.VERIFIED, data=EnrichedFields())
        finally:
            with self._lock:
                self.active -= 1


def _seed(store: ResourceStore, region: Region, *names: str) -> dict[str, int]:
    ids = {}
    for index, name in enumerate(names):
        resource = store.insert_resource(CandidateResource(name=name, address=f"{index} Main St"), region)
        ids[name] = resource.id
    return ids


def _worker(store: ResourceStore, verifier: Any, **kwargs: Any) -> EnrichmentWorker:
    kwargs.setdefault("dispatch_delay", 0)
    kwargs.setdefault("poll_interval", 0.01)
    return EnrichmentWorker(store, verifier, **kwargs)


def test_run_once_applies_each_outcome(store: ResourceStore, county_region: Region) -> None:
    ids = _seed(store, county_region, "Ambler Pantry", "Ghost Pantry", "Closed Pantry", "Mismatch Pantry")
    verifier = _FakeVerifier({
        "Ghost Pantry": VerificationOutcome.NOT_FOUND,
        "Closed Pantry": VerificationOutcome.PERMANENTLY_CLOSED,
        "Mismatch Pantry": VerificationOutcome.NAME_MISMATCH,
    })
    worker = _worker(store, verifier)

    tick = asyncio.run(worker.run_once())

    assert tick.claimed == 4
    assert sorted(tick.dispatched) == sorted(ids.values())

    verified = store.get(ids["Ambler Pantry"])
    assert verified.is_verified is True
    assert verified.needs_enrichment is False
    assert verified.phone == "555-0100"

    ghost = store.get(ids["Ghost Pantry"])
    assert ghost.enrichment_failure_count == 1
    assert ghost.enrichment_failure_reason == "Not found"
    assert ghost.needs_enrichment is True

    closed = store.get(ids["Closed Pantry"])
    assert closed.exportable is False
    assert closed.enrichment_failure_count == 1

    mismatch = store.get(ids["Mismatch Pantry"])
    assert mismatch.enrichment_failure_reason == "Name mismatch"

    status = worker.status()
    assert status["dispatched"] == 4
    assert status["verified"] == 1
    assert status["retried"] == 2
    assert status["closed"] == 1
    assert status["in_flight"] == 0


def test_claims_newest_first(store: ResourceStore, clock, county_region: Region) -> None:
    _seed(store, county_region, "Older Pantry")
    clock.advance(minutes=1)
    _seed(store, county_region, "Newer Pantry")
    verifier = _FakeVerifier()
    worker = _worker(store, verifier, max_concurrent=1)

    asyncio.run(worker.run_once())

    assert verifier.calls == ["Newer Pantry"]


def test_never_exceeds_max_concurrent(store: ResourceStore, county_region: Region) -> None:
    _seed(store, county_region, *[f"Pantry {i}" for i in range(7)])
    verifier = _GatedVerifier()
    worker = _worker(store, verifier, max_concurrent=5)

    async def scenario():
        first = await worker.tick()
        second = await worker.tick()
        in_flight = worker.in_flight
        verifier.release.set()
        await worker.drain()
        return first, second, in_flight

    first, second, in_flight = asyncio.run(scenario())

    assert first.claimed == 5
    assert second.skipped_reason == "at_capacity"
    assert in_flight == 5
    assert verifier.peak <= 5
    assert worker.in_flight == 0
    assert store.enrichment_stats()["pending"] == 2


def test_leased_record_is_not_dispatched_twice(store: ResourceStore, clock, county_region: Region) -> None:
    _seed(store, county_region, "Ghost Pantry")
    verifier = _FakeVerifier({"Ghost Pantry": VerificationOutcome.NOT_FOUND})
    worker = _worker(store, verifier)

    first = asyncio.run(worker.run_once())
    clock.advance(minutes=4)
    second = asyncio.run(worker.run_once())
    clock.advance(minutes=2)
    third = asyncio.run(worker.run_once())

    assert (first.claimed, second.claimed, third.claimed) == (1, 0, 1)
    assert verifier.calls == ["Ghost Pantry", "Ghost Pantry"]


def test_three_strikes_then_never_claimed(store: ResourceStore, clock, county_region: Region) -> None:
    ids = _seed(store, county_region, "Ghost Pantry")
    verifier = _FakeVerifier({"Ghost Pantry": VerificationOutcome.NOT_FOUND})
    worker = _worker(store, verifier)

    for _ in range(4):
        asyncio.run(worker.run_once())
        clock.advance(minutes=6)

    assert len(verifier.calls) == 3
    assert store.get(ids["Ghost Pantry"]).enrichment_failure_count == 3
    assert store.enrichment_stats()["permanently_failed"] == 1


def test_timeout_counts_as_transient(store: ResourceStore, county_region: Region) -> None:
    ids = _seed(store, county_region, "Slow Pantry")
    worker = _worker(store, _FakeVerifier(delay=0.3), verify_timeout=0.05)

    asyncio.run(worker.run_once())

    row = store.get(ids["Slow Pantry"])
    assert row.enrichment_failure_count == 1
    assert row.enrichment_failure_reason == "API error: timed out"


def test_errors_are_isolated_per_record(store: ResourceStore, county_region: Region) -> None:
    ids = _seed(store, county_region, "Broken Pantry", "Ambler Pantry", "Gone Pantry")
    verifier = _FakeVerifier({
        "Broken Pantry": RuntimeError("boom"),
        "Gone Pantry": PermanentClosureSignal("Permanently closed"),
    })
    worker = _worker(store, verifier)

    asyncio.run(worker.run_once())

    broken = store.get(ids["Broken Pantry"])
    assert broken.enrichment_failure_count == 1
    assert broken.enrichment_failure_reason == "API error: boom"
    assert store.get(ids["Ambler Pantry"]).is_verified is True
    assert store.get(ids["Gone Pantry"]).exportable is False


def test_configuration_error_blocks_worker(store: ResourceStore, clock, county_region: Region) -> None:
    ids = _seed(store, county_region, "Ambler Pantry")
    verifier = _FakeVerifier({"Ambler Pantry": ConfigurationError("GOOGLE_MAPS_API_KEY is not configured")})
    worker = _worker(store, verifier)

    asyncio.run(worker.run_once())
    clock.advance(minutes=10)
    after = asyncio.run(worker.tick())

    row = store.get(ids["Ambler Pantry"])
    assert row.enrichment_failure_count == 0
    assert row.needs_enrichment is True
    assert worker.status()["blocked_reason"] == "GOOGLE_MAPS_API_KEY is not configured"
    assert after.skipped_reason == "blocked"
    assert verifier.calls == ["Ambler Pantry"]


def test_run_until_stopped_drains_in_flight(store: ResourceStore, county_region: Region) -> None:
    ids = _seed(store, county_region, "A Pantry", "B Pantry", "C Pantry")
    worker = _worker(store, _FakeVerifier(delay=0.05), max_concurrent=2)

    async def scenario() -> dict[str, Any]:
        runner = asyncio.create_task(worker.run())
        await asyncio.sleep(0.02)
        during = worker.status()
        await asyncio.sleep(0.3)
        worker.stop()
        await asyncio.wait_for(runner, timeout=5)
        return during

    during = asyncio.run(scenario())

    assert during["running"] is True
    assert worker.status()["running"] is False
    assert worker.in_flight == 0
    assert all(store.get(resource_id).is_verified for resource_id in ids.values())


def test_stop_before_run_exits_immediately(store: ResourceStore, county_region: Region) -> None:
    _seed(store, county_region, "A Pantry")
    verifier = _FakeVerifier()
    worker = _worker(store, verifier)

    worker.stop()
    asyncio.run(asyncio.wait_for(worker.run(), timeout=1))

    assert verifier.calls == []


def test_store_calls_run_off_the_event_loop_thread(store: ResourceStore, county_region: Region, monkeypatch) -> None:
    _seed(store, county_region, "Ambler Pantry")
    threads: list[int] = []
    claim_batch = store.claim_batch
    mark_verified = store.mark_verified

    def _claim(limit, lease):
        threads.append(threading.get_ident())
        return claim_batch(limit, lease)

    def _verified(resource_id, enriched):
        threads.append(threading.get_ident())
        mark_verified(resource_id, enriched)

    monkeypatch.setattr(store, "claim_batch", _claim)
    monkeypatch.setattr(store, "mark_verified", _verified)
    worker = _worker(store, _FakeVerifier())

    asyncio.run(worker.run_once())
    worker.close()

    assert len(threads) == 2
    assert len(set(threads)) == 1
    assert threading.get_ident() not in threads
    assert store.enrichment_stats()["verified"] == 1


def test_rejects_non_positive_concurrency(store: ResourceStore) -> None:
    with pytest.raises(ValueError):
        EnrichmentWorker(store, _FakeVerifier(), max_concurrent=0)


def test_candidate_from_resource_tolerates_unknown_category(store: ResourceStore, county_region: Region) -> None:
    ids = _seed(store, county_region, "Ambler Pantry")
    row = store.get(ids["Ambler Pantry"])
    row.category = "soup"

    candidate = candidate_from_resource(row)

    assert candidate.category.value == "mixed"
    assert candidate.state == "PA"
