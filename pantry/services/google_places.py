"""
Google Places wire format shared by the verifier and the discovery adapter.

Responses are decoded through the pydantic models below; anything that does
not validate is treated as a malformed payload by the callers.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pantry.models import ResourceCategory

FIND_PLACE_URL = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"
PLACE_DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"
TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"

FIND_PLACE_FIELDS = "place_id,name,formatted_address,geometry,business_status,rating,user_ratings_total,types"
DETAILS_FIELDS = "formatted_phone_number,opening_hours,website"
TEXT_SEARCH_FIELD_MASK = ",".join([
    "places.id",
    "places.displayName",
    "places.formattedAddress",
    "places.location",
    "places.businessStatus",
    "places.rating",
    "places.userRatingCount",
    "places.nationalPhoneNumber",
    "places.websiteUri",
    "places.regularOpeningHours",
    "places.types",
    "nextPageToken",
])

CLOSED_PERMANENTLY = "CLOSED_PERMANENTLY"
CLOSED_TEMPORARILY = "CLOSED_TEMPORARILY"

# Never food assistance, whatever the name says
STRICTLY_BLOCKED_TYPES = frozenset({
    "restaurant",
    "cafe",
    "meal_takeaway",
    "meal_delivery",
    "supermarket",
    "grocery_or_supermarket",
    "convenience_store",
})

# Churches, schools and stores do run pantries; only blocked when nothing food-related shows
CONDITIONALLY_BLOCKED_TYPES = frozenset({
    "school",
    "primary_school",
    "secondary_school",
    "university",
    "store",
})

# Discovery is stricter: it has no name-match signal to fall back on
DISCOVERY_EXCLUDED_TYPES = STRICTLY_BLOCKED_TYPES | CONDITIONALLY_BLOCKED_TYPES | {
    "bar",
    "night_club",
    "shopping_mall",
}


class LatLng(BaseModel):
    lat: float
    lng: float


class Geometry(BaseModel):
    location: LatLng


class FindPlaceCandidate(BaseModel):
    place_id: str
    name: str
    formatted_address: str = ""
    geometry: Optional[Geometry] = None
    business_status: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    formatted_phone_number: Optional[str] = None
    types: List[str] = []


class FindPlaceResponse(BaseModel):
    status: str
    candidates: List[FindPlaceCandidate] = []
    error_message: Optional[str] = None


class OpeningHours(BaseModel):
    weekday_text: List[str] = []


class PlaceDetails(BaseModel):
    formatted_phone_number: Optional[str] = None
    opening_hours: Optional[OpeningHours] = None
    website: Optional[str] = None


class PlaceDetailsResponse(BaseModel):
    status: str
    result: Optional[PlaceDetails] = None


class DisplayName(BaseModel):
    text: str = ""


class Location(BaseModel):
    latitude: float
    longitude: float


class RegularOpeningHours(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    weekday_descriptions: List[str] = Field(default_factory=list, alias="weekdayDescriptions")


class TextSearchPlace(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    display_name: Optional[DisplayName] = Field(default=None, alias="displayName")
    formatted_address: Optional[str] = Field(default=None, alias="formattedAddress")
    location: Optional[Location] = None
    business_status: Optional[str] = Field(default=None, alias="businessStatus")
    rating: Optional[float] = None
    user_rating_count: Optional[int] = Field(default=None, alias="userRatingCount")
    national_phone_number: Optional[str] = Field(default=None, alias="nationalPhoneNumber")
    website_uri: Optional[str] = Field(default=None, alias="websiteUri")
    regular_opening_hours: Optional[RegularOpeningHours] = Field(default=None, alias="regularOpeningHours")
    types: List[str] = []


class TextSearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    places: List[TextSearchPlace] = []
    next_page_token: Optional[str] = Field(default=None, alias="nextPageToken")


def parse_formatted_address(formatted: str | None) -> tuple[str, str | None, str | None, str | None]:
    """
    Split a US formatted address into (street, city, state, zip).

    "123 Main St, Springfield, IL 62701, USA" -> ("123 Main St", "Springfield", "IL", "62701")
    "Suite 5, 123 Main St, Springfield, IL 62701, USA" -> ("Suite 5, 123 Main St", ...)
    """
    parts = (formatted or "").split(", ")
    street = ", ".join(parts[:-3]) if len(parts) > 3 else parts[0]
    city = parts[-3] if len(parts) >= 3 else None
    state_zip = parts[-2].split(" ") if len(parts) >= 2 else []
    state = state_zip[0] if state_zip and state_zip[0] else None
    zip_code = state_zip[1] if len(state_zip) > 1 else None
    return street, city, state, zip_code


def guess_category(name: str | None) -> ResourceCategory:
    lowered = (name or "").lower()
    if "food bank" in lowered:
        return ResourceCategory.BANK
    if "pantry" in lowered or "cupboard" in lowered:
        return ResourceCategory.PANTRY
    return ResourceCategory.MIXED


def reviews_suffix(count: int | None) -> str:
    return f" ({count} reviews)" if count else ""
