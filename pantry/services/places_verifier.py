"""
Google Places verifier.

Looks a candidate up with Find Place From Text, checks it is open, that the
provider's place is the same organisation (or at least a food-assistance
site), and that it is not a restaurant / supermarket / school, then pulls
phone, hours and website from Place Details.
"""

from __future__ import annotations

import os
from typing import Any, Optional

import requests
from loguru import logger
from pydantic import ValidationError

from pantry.config import HTTP_TIMEOUT_SECONDS
from pantry.config import REASON_NOT_FOUND
from pantry.config import REASON_PERMANENTLY_CLOSED
from pantry.config import REASON_TEMPORARILY_CLOSED
from pantry.config import USER_AGENT
from pantry.errors import ConfigurationError
from pantry.errors import TransientVerificationError
from pantry.models import CandidateResource
from pantry.models import EnrichedFields
from pantry.models import ResourceCategory
from pantry.models import VerificationOutcome
from pantry.models import VerificationResult
from pantry.services.google_places import CLOSED_PERMANENTLY
from pantry.services.google_places import CLOSED_TEMPORARILY
from pantry.services.google_places import CONDITIONALLY_BLOCKED_TYPES
from pantry.services.google_places import DETAILS_FIELDS
from pantry.services.google_places import FIND_PLACE_FIELDS
from pantry.services.google_places import FIND_PLACE_URL
from pantry.services.google_places import PLACE_DETAILS_URL
from pantry.services.google_places import STRICTLY_BLOCKED_TYPES
from pantry.services.google_places import FindPlaceCandidate
from pantry.services.google_places import FindPlaceResponse
from pantry.services.google_places import PlaceDetails
from pantry.services.google_places import PlaceDetailsResponse
from pantry.services.google_places import parse_formatted_address
from pantry.services.google_places import reviews_suffix
from pantry.services.name_matcher import is_food_related_place
from pantry.services.name_matcher import match_names

NOT_FOUND_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}
PLACEHOLDER_VALUES = {"", "not specified"}


def build_search_query(candidate: CandidateResource) -> str:
    parts: list[str] = []
    if candidate.name:
        parts.append(candidate.name)
    if candidate.category is ResourceCategory.PANTRY:
        parts.append("food pantry")
    elif candidate.category is ResourceCategory.BANK:
        parts.append("food bank")
    for value in (candidate.address, candidate.city, candidate.state):
        if value and value.strip().lower() not in PLACEHOLDER_VALUES:
            parts.append(value.strip())
    return " ".join(parts)


class PlacesVerifier:
    """Synchronous verifier; the worker runs it in a thread."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("GOOGLE_MAPS_API_KEY")
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": USER_AGENT})
        self.session = session

    def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        try:
            response = self.session.get(url, params={**params, "key": self.api_key}, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise TransientVerificationError(f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise TransientVerificationError(f"Invalid JSON from {url}") from exc

    def find_place(self, query: str) -> FindPlaceResponse:
        payload = self._get_json(
            FIND_PLACE_URL,
            {"input": query, "inputtype": "textquery", "fields": FIND_PLACE_FIELDS},
        )
        try:
            return FindPlaceResponse.model_validate(payload)
        except ValidationError as exc:
            raise TransientVerificationError(f"Malformed find-place response: {exc.error_count()} errors") from exc

    def place_details(self, place_id: str) -> Optional[PlaceDetails]:
        """Best effort: details only add phone, hours and website."""
        try:
            payload = self._get_json(PLACE_DETAILS_URL, {"place_id": place_id, "fields": DETAILS_FIELDS})
            details = PlaceDetailsResponse.model_validate(payload)
        except (TransientVerificationError, ValidationError) as exc:
            logger.warning(f"Place details unavailable for {place_id}: {exc}")
            return None
        if details.status != "OK":
            return None
        return details.result

    def verify(self, candidate: CandidateResource) -> VerificationResult:
        if not self.api_key:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY is not configured")

        query = build_search_query(candidate)
        logger.debug(f"Verifying {candidate.name} with query {query!r}")
        response = self.find_place(query)

        if response.status == "REQUEST_DENIED":
            raise ConfigurationError(f"Google Places denied the request: {response.error_message or 'no message'}")
        if response.status in NOT_FOUND_STATUSES or (response.status == "OK" and not response.candidates):
            logger.info(f"Not found in Google Places: {candidate.name}")
            return VerificationResult(outcome=VerificationOutcome.NOT_FOUND, reason=REASON_NOT_FOUND)
        if response.status != "OK":
            raise TransientVerificationError(f"Google Places status {response.status}")

        place = response.candidates[0]
        return self._classify(candidate, place)

    def _classify(self, candidate: CandidateResource, place: FindPlaceCandidate) -> VerificationResult:
        if place.business_status == CLOSED_PERMANENTLY:
            logger.info(f"{candidate.name}: business status {place.business_status}")
            return VerificationResult(outcome=VerificationOutcome.PERMANENTLY_CLOSED, reason=REASON_PERMANENTLY_CLOSED)
        if place.business_status == CLOSED_TEMPORARILY:
            logger.info(f"{candidate.name}: business status {place.business_status}")
            return VerificationResult(outcome=VerificationOutcome.TEMPORARILY_CLOSED, reason=REASON_TEMPORARILY_CLOSED)

        food_related = is_food_related_place(place.name, place.types)
        match = match_names(candidate.name, place.name)
        if not match.is_match:
            if match.is_close_match:
                logger.info(f"Accepting close match {place.name!r} for {candidate.name!r} ({match.ratio:.2f})")
            elif food_related:
                logger.info(f"Accepting food-related place {place.name!r} for {candidate.name!r}")
            else:
                logger.info(f"Name mismatch: searched {candidate.name!r}, found {place.name!r}")
                return VerificationResult(
                    outcome=VerificationOutcome.NAME_MISMATCH,
                    reason=f"Name mismatch: found {place.name}",
                )

        types = set(place.types)
        blocked = sorted(types & STRICTLY_BLOCKED_TYPES)
        if not blocked and not food_related:
            blocked = sorted(types & CONDITIONALLY_BLOCKED_TYPES)
        if blocked:
            logger.info(f"Blocked type: {place.name} has types [{', '.join(place.types)}]")
            return VerificationResult(
                outcome=VerificationOutcome.BLOCKED_CATEGORY,
                reason=f"Blocked category: {', '.join(blocked)}",
            )

        use_provider_name = not match.is_match and food_related
        details = self.place_details(place.place_id)
        return VerificationResult(
            outcome=VerificationOutcome.VERIFIED,
            data=self._enriched_fields(candidate, place, details, use_provider_name),
        )

    def _enriched_fields(
        self,
        candidate: CandidateResource,
        place: FindPlaceCandidate,
        details: Optional[PlaceDetails],
        use_provider_name: bool,
    ) -> EnrichedFields:
        street, city, state, zip_code = parse_formatted_address(place.formatted_address)
        hours = candidate.hours
        if details and details.opening_hours and details.opening_hours.weekday_text:
            hours = "; ".join(details.opening_hours.weekday_text)

        notes = f"Verified via Google Places API{reviews_suffix(place.user_ratings_total)}"
        if use_provider_name:
            notes += f". Original name: {candidate.name}"

        location = place.geometry.location if place.geometry else None
        logger.info(f"Verified {candidate.name}: {place.formatted_address}")
        return EnrichedFields(
            name=place.name if use_provider_name else candidate.name,
            address=street or None,
            city=city,
            state=state,
            zip_code=zip_code,
            latitude=location.lat if location else None,
            longitude=location.lng if location else None,
            rating=place.rating,
            phone=(details.formatted_phone_number if details else None)
            or candidate.phone
            or place.formatted_phone_number,
            hours=hours,
            source_url=(details.website if details else None) or candidate.source_url,
            place_id=place.place_id,
            verification_notes=notes,
        )
