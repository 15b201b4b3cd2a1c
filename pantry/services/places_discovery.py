"""
Discovery through Google Places Text Search (v1).

Each query pages through at most three result pages (20 places each) and
yields one candidate per open place whose types do not rule it out. Pages
are fetched lazily as the caller iterates.
"""

from __future__ import annotations

import os
import time
from typing import Any, Callable, Iterator, Protocol

import requests
from loguru import logger
from pydantic import ValidationError

from pantry.config import HTTP_TIMEOUT_SECONDS
from pantry.config import PAGINATION_DELAY_SECONDS
from pantry.errors import ConfigurationError
from pantry.errors import DiscoveryError
from pantry.models import CandidateResource
from pantry.services.counties import Region
from pantry.services.google_places import CLOSED_PERMANENTLY
from pantry.services.google_places import CLOSED_TEMPORARILY
from pantry.services.google_places import DISCOVERY_EXCLUDED_TYPES
from pantry.services.google_places import TEXT_SEARCH_FIELD_MASK
from pantry.services.google_places import TEXT_SEARCH_URL
from pantry.services.google_places import TextSearchPlace
from pantry.services.google_places import TextSearchResponse
from pantry.services.google_places import guess_category
from pantry.services.google_places import parse_formatted_address
from pantry.services.google_places import reviews_suffix

MAX_PAGES = 3
PAGE_SIZE = 20
# Most US counties are 20-50 miles across
LOCATION_BIAS_RADIUS_METERS = 50_000


class DiscoveryAdapter(Protocol):
    def search(self, query: str, region: Region) -> Iterator[CandidateResource]: ...


def candidate_from_place(place: TextSearchPlace, region: Region) -> CandidateResource | None:
    if place.business_status in (CLOSED_PERMANENTLY, CLOSED_TEMPORARILY):
        return None
    if DISCOVERY_EXCLUDED_TYPES.intersection(place.types):
        return None

    name = place.display_name.text if place.display_name else ""
    if not name.strip():
        return None

    street, city, state, zip_code = parse_formatted_address(place.formatted_address)
    hours = None
    if place.regular_opening_hours and place.regular_opening_hours.weekday_descriptions:
        hours = "; ".join(place.regular_opening_hours.weekday_descriptions)

    return CandidateResource(
        name=name,
        address=street,
        city=city,
        state=state or region.state,
        zip_code=zip_code,
        latitude=place.location.latitude if place.location else None,
        longitude=place.location.longitude if place.location else None,
        category=guess_category(name),
        phone=place.national_phone_number,
        hours=hours,
        rating=place.rating,
        source_url=place.website_uri,
        verification_notes=f"Found via Google Places Text Search API{reviews_suffix(place.user_rating_count)}",
        place_id=place.id,
        types=list(place.types),
    )


class PlacesTextSearchDiscovery:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        page_delay: float = PAGINATION_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("GOOGLE_MAPS_API_KEY")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_delay = page_delay
        self._sleep = sleep

    def _request_body(self, query: str, region: Region, page_token: str | None) -> dict[str, Any]:
        body: dict[str, Any] = {"textQuery": query, "pageSize": PAGE_SIZE}
        if region.latitude is not None and region.longitude is not None:
            body["locationBias"] = {
                "circle": {
                    "center": {"latitude": region.latitude, "longitude": region.longitude},
                    "radius": LOCATION_BIAS_RADIUS_METERS,
                }
            }
        if page_token:
            body["pageToken"] = page_token
        return body

    def _fetch_page(self, query: str, region: Region, page_token: str | None) -> TextSearchResponse:
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key or "",
            "X-Goog-FieldMask": TEXT_SEARCH_FIELD_MASK,
        }
        try:
            response = self.session.post(
                TEXT_SEARCH_URL,
                json=self._request_body(query, region, page_token),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DiscoveryError(f"Places text search failed: {exc}") from exc

        if not response.ok:
            raise DiscoveryError(f"Places text search error: {response.status_code} - {response.text[:200]}")
        try:
            return TextSearchResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise DiscoveryError(f"Malformed text search response: {exc}") from exc

    def search(self, query: str, region: Region) -> Iterator[CandidateResource]:
        if not self.api_key:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY is not configured")

        page_token: str | None = None
        for page in range(MAX_PAGES):
            if page:
                self._sleep(self.page_delay)
            data = self._fetch_page(query, region, page_token)
            logger.debug(f"Text search {query!r} page {page + 1}: {len(data.places)} places")
            for place in data.places:
                candidate = candidate_from_place(place, region)
                if candidate is not None:
                    yield candidate
            page_token = data.next_page_token
            if not page_token:
                break
