"""
Main entry point for the pantry locator pipeline.
Supports commands:
  init-db:        Create tables if missing
  search-zip:     Narrow discovery for one zip code (verified inline)
  search-county:  Wide discovery for one county (verified by the worker)
  worker:         Run the enrichment worker until interrupted
  stats:          Enrichment queue and county coverage counts
  triage:         List stored resources most likely to be false positives
"""
from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import json
import signal
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger

from pantry.config import Settings
from pantry.errors import PipelineError
from pantry.logging import configure_logging
from pantry.services.counties import find_county
from pantry.services.counties import load_counties
from pantry.services.discovery_service import DiscoveryService
from pantry.services.enrichment_worker import EnrichmentWorker
from pantry.services.monitoring import county_stats
from pantry.services.monitoring import unprocessed_counties
from pantry.services.places_discovery import PlacesTextSearchDiscovery
from pantry.services.places_verifier import PlacesVerifier
from pantry.services.resource_store import ResourceStore
from pantry.services.suspicion import analyze_resources
from pantry.services.suspicion import filter_by_suspicion
from pantry.services.suspicion import group_by_category


def _payload_failed(payload: dict[str, Any]) -> bool:
    if payload.get("success") is False:
        return True
    return payload.get("error") not in (None, "")


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))
    if _payload_failed(payload):
        raise SystemExit(1)


def _store(settings: Settings) -> ResourceStore:
    store = ResourceStore.from_dsn(settings.dsn)
    store.ensure_schema()
    return store


def _discovery_service(settings: Settings, store: ResourceStore) -> DiscoveryService:
    return DiscoveryService(
        store,
        PlacesTextSearchDiscovery(settings.google_api_key),
        PlacesVerifier(settings.google_api_key),
    )


def handle_init_db(settings: Settings, _args: argparse.Namespace) -> dict[str, Any]:
    _store(settings)
    return {"success": True}


def handle_search_zip(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    store = _store(settings)
    service = _discovery_service(settings, store)
    result = service.search_zip(args.zip_code)
    return {
        "success": True,
        "stats": service.last_stats.as_dict() if service.last_stats else None,
        "result": result.model_dump(mode="json"),
    }


def handle_search_county(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    county = find_county(settings.counties_file, args.name, args.state)
    if county is None:
        return {"success": False, "error": f"Unknown county {args.name!r} in {args.state}"}
    store = _store(settings)
    service = _discovery_service(settings, store)
    result = service.search_county(county)
    return {
        "success": True,
        "county": {"name": county.name, "state": county.state, "geoid": county.geoid},
        "stats": service.last_stats.as_dict() if service.last_stats else None,
        "result": result.model_dump(mode="json"),
    }


async def _run_worker(worker: EnrichmentWorker, once: bool) -> None:
    if once:
        await worker.run_once()
        return
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass
    await worker.run()


def handle_worker(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    store = _store(settings)
    worker = EnrichmentWorker(
        store,
        PlacesVerifier(settings.google_api_key),
        max_concurrent=settings.max_concurrent,
        poll_interval=settings.poll_interval,
        lease=dt.timedelta(minutes=settings.lease_minutes),
        verify_timeout=settings.verify_timeout,
    )
    try:
        asyncio.run(_run_worker(worker, once=args.once))
    finally:
        worker.close()
    status = worker.status()
    return {
        "success": status["blocked_reason"] is None,
        "error": status["blocked_reason"],
        "worker": status,
        "queue": store.enrichment_stats(),
    }


def handle_stats(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    store = _store(settings)
    payload: dict[str, Any] = {"success": True, "enrichment": store.enrichment_stats()}
    if settings.counties_file.exists():
        counties = load_counties(settings.counties_file)
        payload["counties"] = county_stats(store, counties)
        if args.state:
            payload["unprocessed"] = unprocessed_counties(store, counties, args.state)
    else:
        logger.warning(f"County gazetteer not found at {settings.counties_file}; skipping coverage")
    return payload


def handle_triage(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    store = _store(settings)
    analyzed = filter_by_suspicion(
        analyze_resources(store.iter_resources(limit=args.limit)),
        min_score=args.min_score,
    )
    analyzed.sort(key=lambda item: item.suspicion.score, reverse=True)
    grouped = group_by_category(analyzed)
    return {
        "success": True,
        "flagged": len(analyzed),
        "by_category": {
            category: [
                {"id": item.resource.id, "name": item.resource.name, **item.suspicion.as_dict()}
                for item in items
            ]
            for category, items in grouped.items()
        },
    }


HANDLERS = {
    "init-db": handle_init_db,
    "search-zip": handle_search_zip,
    "search-county": handle_search_county,
    "worker": handle_worker,
    "stats": handle_stats,
    "triage": handle_triage,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Food pantry discovery and enrichment pipeline")
    parser.add_argument("--log-level", default="INFO", help="Log level for console and file sinks")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables if missing")

    zip_parser = sub.add_parser("search-zip", help="Discover and verify resources near a zip code")
    zip_parser.add_argument("zip_code", help="Five digit zip code")

    county_parser = sub.add_parser("search-county", help="Discover resources in a county")
    county_parser.add_argument("name", help='County name as in the gazetteer, e.g. "Montgomery County"')
    county_parser.add_argument("state", help="Two letter state code")

    worker_parser = sub.add_parser("worker", help="Run the enrichment worker")
    worker_parser.add_argument("--once", action="store_true", help="Run one claim cycle and exit")

    stats_parser = sub.add_parser("stats", help="Enrichment queue and county coverage")
    stats_parser.add_argument("--state", default=None, help="List unprocessed counties for this state")

    triage_parser = sub.add_parser("triage", help="List likely false positives")
    triage_parser.add_argument("--min-score", type=int, default=50, help="Minimum suspicion score (default 50)")
    triage_parser.add_argument("--limit", type=int, default=None, help="Max resources to scan")
    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level)
    settings = Settings.from_env()

    try:
        payload = HANDLERS[args.command](settings, args)
    except (PipelineError, ValueError, FileNotFoundError) as exc:
        logger.error(f"{args.command} failed: {exc}")
        payload = {"success": False, "error": str(exc)}
    _emit(payload)


if __name__ == "__main__":
    main(sys.argv[1:])
