"""
Pipeline configuration - discovery cache, enrichment worker and rate limits.

Module constants are the defaults; ``Settings.from_env()`` lets a deployment
override the ones that vary per environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# Search cache
CACHE_TTL_DAYS = 30

# Enrichment worker
MAX_CONCURRENT_ENRICHMENTS = 5
POLL_INTERVAL_SECONDS = 1.0
DISPATCH_DELAY_SECONDS = 0.1
LEASE_MINUTES = 5
MAX_ENRICHMENT_FAILURES = 3
VERIFY_TIMEOUT_SECONDS = 30.0

# Rate limiting between external calls
DISCOVERY_QUERY_DELAY_SECONDS = 0.5
VERIFY_DELAY_SECONDS = 0.1
PAGINATION_DELAY_SECONDS = 0.2

# HTTP
HTTP_TIMEOUT_SECONDS = 20
USER_AGENT = "PantryLocator/1.0"

# Failure reasons persisted on resources; claim/stats queries match on these
REASON_PERMANENTLY_CLOSED = "Permanently closed"
REASON_TEMPORARILY_CLOSED = "Temporarily closed"
REASON_NOT_FOUND = "Not found"

# Census gazetteer (tab separated, one county per line)
DEFAULT_COUNTIES_FILE = Path("data/2024_Gaz_counties_national.txt")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    dsn: str | None = None
    google_api_key: str | None = None
    max_concurrent: int = MAX_CONCURRENT_ENRICHMENTS
    poll_interval: float = POLL_INTERVAL_SECONDS
    lease_minutes: int = LEASE_MINUTES
    verify_timeout: float = VERIFY_TIMEOUT_SECONDS
    counties_file: Path = DEFAULT_COUNTIES_FILE

    @classmethod
    def from_env(cls) -> Settings:
        counties_file = (os.getenv("PANTRY_COUNTIES_FILE") or "").strip()
        return cls(
            dsn=os.getenv("PANTRY_PG_DSN") or None,
            google_api_key=os.getenv("GOOGLE_MAPS_API_KEY") or None,
            max_concurrent=max(1, _env_int("PANTRY_MAX_CONCURRENT", MAX_CONCURRENT_ENRICHMENTS)),
            poll_interval=_env_float("PANTRY_POLL_INTERVAL", POLL_INTERVAL_SECONDS),
            lease_minutes=max(1, _env_int("PANTRY_LEASE_MINUTES", LEASE_MINUTES)),
            verify_timeout=_env_float("PANTRY_VERIFY_TIMEOUT", VERIFY_TIMEOUT_SECONDS),
            counties_file=Path(counties_file) if counties_file else DEFAULT_COUNTIES_FILE,
        )
