from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResourceCategory(str, Enum):
    PANTRY = "pantry"   # emergency food distribution
    BANK = "bank"       # large-scale distribution hub
    MIXED = "mixed"


class VerificationOutcome(Enum):
    VERIFIED = "verified"                       # Found, open, name matches
    NOT_FOUND = "not_found"                     # Provider has no candidate for the query
    PERMANENTLY_CLOSED = "permanently_closed"   # Terminal, record becomes unexportable
    TEMPORARILY_CLOSED = "temporarily_closed"
    BLOCKED_CATEGORY = "blocked_category"       # Restaurant, supermarket, school...
    NAME_MISMATCH = "name_mismatch"             # Provider returned a different place
    TRANSIENT_ERROR = "transient_error"         # Timeout, HTTP error, malformed payload


def dedup_key(name: str | None, address: str | None) -> str:
    return f"{(name or '').strip().lower()}-{(address or '').strip().lower()}"


class CandidateResource(BaseModel):
    """
    A partial resource as reported by a discovery source.
    Everything but the name is optional; sources differ in what they know.
    """
    name: str
    address: str = ""
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    category: ResourceCategory = ResourceCategory.MIXED
    phone: Optional[str] = None
    hours: Optional[str] = None
    rating: Optional[float] = None
    eligibility_requirements: Optional[str] = None
    services_offered: Optional[str] = None
    languages_spoken: Optional[str] = None
    notes: Optional[str] = None
    is_verified: bool = False
    verification_notes: Optional[str] = None
    source_url: Optional[str] = None
    place_id: Optional[str] = None
    types: List[str] = Field(default_factory=list)  # provider place types, not persisted

    @property
    def dedup_key(self) -> str:
        return dedup_key(self.name, self.address)


class EnrichedFields(BaseModel):
    """Fields the verifier confirmed or normalized. Empty values never overwrite."""
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    hours: Optional[str] = None
    rating: Optional[float] = None
    source_url: Optional[str] = None
    place_id: Optional[str] = None
    verification_notes: Optional[str] = None

    def non_empty(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in self.model_dump().items()
            if value not in (None, "")
        }


class VerificationResult(BaseModel):
    outcome: VerificationOutcome
    data: Optional[EnrichedFields] = None
    reason: Optional[str] = None  # Human readable cause, persisted as failure reason

    @property
    def verified(self) -> bool:
        return self.outcome is VerificationOutcome.VERIFIED and self.data is not None


class ResourceView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    address: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    county_name: Optional[str] = None
    category: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    hours: Optional[str] = None
    rating: Optional[float] = None
    is_verified: bool
    verification_notes: Optional[str] = None
    source_url: Optional[str] = None
    needs_enrichment: bool
    exportable: bool


class SearchResult(BaseModel):
    pantries: List[ResourceView] = []
    banks: List[ResourceView] = []
    mixed: List[ResourceView] = []
    cached: bool
    search_timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def total(self) -> int:
        return len(self.pantries) + len(self.banks) + len(self.mixed)
