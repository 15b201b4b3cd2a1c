"""
Background enrichment worker.

Polls the store for resources that still need verification and runs up to
``max_concurrent`` verifications at once. Each tick:

1. computes the free slots (``max_concurrent - in_flight``),
2. claims that many rows, newest first, stamping their lease in the same
   transaction,
3. starts one task per row, ``dispatch_delay`` apart.

A claimed row is not visible to another claim until its lease expires, so a
slow verification is never dispatched twice. The verifier itself is
synchronous and runs in a thread, bounded by ``verify_timeout``. Store calls
go through a single dedicated thread, so they never block the event loop and
the worker's writes stay serialized.

Outcomes:

- verified            -> fields merged, needs_enrichment cleared, count reset
- permanently closed  -> exportable=False, never claimed again
- anything else       -> count + 1, retried after the lease until the third strike

A ConfigurationError (no API key) blocks the worker instead of burning the
retry budget of every row.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from pantry.config import DISPATCH_DELAY_SECONDS
from pantry.config import LEASE_MINUTES
from pantry.config import MAX_CONCURRENT_ENRICHMENTS
from pantry.config import MAX_ENRICHMENT_FAILURES
from pantry.config import POLL_INTERVAL_SECONDS
from pantry.config import VERIFY_TIMEOUT_SECONDS
from pantry.errors import ConfigurationError
from pantry.logging import transition_log
from pantry.models import CandidateResource
from pantry.models import ResourceCategory
from pantry.models import VerificationOutcome
from pantry.models import VerificationResult
from pantry.services.resource_store import ResourceStore
from pantry.services.verifier import Verifier
from pantry.services.verifier import failure_reason
from pantry.services.verifier import result_from_exception
from pantry.state import TickResult
from pantrydb.models import Resource

T = TypeVar("T")


def candidate_from_resource(resource: Resource) -> CandidateResource:
    try:
        category = ResourceCategory(resource.category)
    except ValueError:
        category = ResourceCategory.MIXED
    return CandidateResource(
        name=resource.name,
        address=resource.address or "",
        city=resource.city,
        state=resource.state,
        zip_code=resource.zip_code,
        latitude=resource.latitude,
        longitude=resource.longitude,
        category=category,
        phone=resource.phone,
        hours=resource.hours,
        rating=resource.rating,
        notes=resource.notes,
        is_verified=resource.is_verified,
        verification_notes=resource.verification_notes,
        source_url=resource.source_url,
        place_id=resource.place_id,
    )


class EnrichmentWorker:
    def __init__(
        self,
        store: ResourceStore,
        verifier: Verifier,
        *,
        max_concurrent: int = MAX_CONCURRENT_ENRICHMENTS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        dispatch_delay: float = DISPATCH_DELAY_SECONDS,
        lease: dt.timedelta = dt.timedelta(minutes=LEASE_MINUTES),
        verify_timeout: float = VERIFY_TIMEOUT_SECONDS,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.store = store
        self.verifier = verifier
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.dispatch_delay = dispatch_delay
        self.lease = lease
        self.verify_timeout = verify_timeout

        self._stop = asyncio.Event()
        self._db_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="enrichment-db")
        self._tasks: set[asyncio.Task[None]] = set()
        self._in_flight = 0
        self._running = False
        self.blocked_reason: str | None = None
        self.counters = {
            "dispatched": 0,
            "verified": 0,
            "retried": 0,
            "closed": 0,
            "errors": 0,
        }

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def running(self) -> bool:
        return self._running

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "in_flight": self._in_flight,
            "max_concurrent": self.max_concurrent,
            "blocked_reason": self.blocked_reason,
            **self.counters,
        }

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        """Release the store thread. Call once the worker will not run again."""
        self._db_executor.shutdown(wait=True)

    async def _db(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._db_executor, functools.partial(func, *args))

    async def run(self) -> None:
        """Poll until ``stop()``; already-dispatched tasks are awaited, not cancelled."""
        self._running = True
        logger.info(
            f"[Enrichment] Worker started (max {self.max_concurrent} concurrent, "
            f"poll {self.poll_interval}s, lease {self.lease})"
        )
        try:
            while not self._stop.is_set():
                await self.tick()
                if self._stop.is_set():
                    break
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
        finally:
            await self.drain()
            self._running = False
            logger.info(f"[Enrichment] Worker stopped: {self.status()}")

    async def run_once(self) -> TickResult:
        """One claim cycle, then wait for every task it started."""
        result = await self.tick()
        await self.drain()
        return result

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def tick(self) -> TickResult:
        if self.blocked_reason:
            return TickResult(skipped_reason="blocked")

        available = self.max_concurrent - self._in_flight
        if available <= 0:
            return TickResult(available=0, skipped_reason="at_capacity")

        try:
            batch = await self._db(self.store.claim_batch, available, self.lease)
        except SQLAlchemyError as exc:
            self.counters["errors"] += 1
            logger.error(f"[Enrichment] Claim failed: {exc}")
            return TickResult(available=available, skipped_reason="claim_failed")

        result = TickResult(available=available, claimed=len(batch))
        if not batch:
            return result

        logger.info(
            f"[Enrichment] Starting {len(batch)} enrichment requests "
            f"({self._in_flight} already running, max {self.max_concurrent})"
        )
        for index, resource in enumerate(batch):
            if index and self.dispatch_delay:
                await asyncio.sleep(self.dispatch_delay)
            self._dispatch(resource)
            result.dispatched.append(resource.id)
        return result

    def _dispatch(self, resource: Resource) -> None:
        self._in_flight += 1
        self.counters["dispatched"] += 1
        task = asyncio.create_task(self._process(resource), name=f"enrich-{resource.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, resource: Resource) -> None:
        try:
            candidate = candidate_from_resource(resource)
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(self.verifier.verify, candidate),
                    timeout=self.verify_timeout,
                )
            except ConfigurationError as exc:
                self._block(str(exc))
                return
            except Exception as exc:  # noqa: BLE001
                result = result_from_exception(exc)
            await self._apply(resource, result)
        except Exception as exc:  # noqa: BLE001
            self.counters["errors"] += 1
            logger.exception(f"[Enrichment] Error processing {resource.name}: {exc}")
        finally:
            self._in_flight -= 1

    async def _apply(self, resource: Resource, result: VerificationResult) -> None:
        if result.verified:
            await self._db(self.store.mark_verified, resource.id, result.data)
            self.counters["verified"] += 1
            transition_log(resource.id, result.data.name or resource.name, "verified")
            return

        reason = failure_reason(result)
        if result.outcome is VerificationOutcome.PERMANENTLY_CLOSED:
            await self._db(self.store.mark_permanently_closed, resource.id, reason)
            self.counters["closed"] += 1
            transition_log(resource.id, resource.name, "permanently_failed", f"{reason} - marked unexportable")
            return

        await self._db(self.store.mark_retry, resource.id, reason)
        self.counters["retried"] += 1
        attempts = (resource.enrichment_failure_count or 0) + 1
        state = "permanently_failed" if attempts >= MAX_ENRICHMENT_FAILURES else "retry_pending"
        transition_log(resource.id, resource.name, state, reason)

    def _block(self, reason: str) -> None:
        if self.blocked_reason is None:
            self.blocked_reason = reason
            logger.error(f"[Enrichment] Worker blocked, no further claims: {reason}")
