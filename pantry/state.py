"""Result objects shared by the discovery service and the enrichment worker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(slots=True)
class TickResult:
    available: int = 0
    claimed: int = 0
    dispatched: List[int] = field(default_factory=list)
    skipped_reason: str | None = None


@dataclass(slots=True)
class DiscoveryStats:
    region: str
    queries: int = 0
    failed_queries: int = 0
    raw: int = 0
    unique: int = 0
    after_filters: int = 0
    already_known: int = 0
    verified: int = 0
    dropped: int = 0
    stored: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region,
            "queries": self.queries,
            "failed_queries": self.failed_queries,
            "raw": self.raw,
            "unique": self.unique,
            "after_filters": self.after_filters,
            "already_known": self.already_known,
            "verified": self.verified,
            "dropped": self.dropped,
            "stored": self.stored,
            "errors": list(self.errors),
        }
