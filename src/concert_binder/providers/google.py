"""
Google Geocoding and Places (New) providers.

Three providers share the Google key handling:

- ``GoogleGeocodingProvider``: address geocoding, primary venue location source
- ``GooglePlacesLocationProvider``: Places text search, location fallback
- ``GooglePlacesDetailsProvider``: text search + place details for photos,
  rating and website
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from concert_binder.models import GeoPoint, Location, PlaceDetails, PlacePhoto, VenueQuery
from concert_binder.normalize import names_match
from concert_binder.providers.base import (
    Failed,
    Found,
    HttpProvider,
    NotFound,
    ProviderOutcome,
    Throttled,
    days,
    request_json,
)
from concert_binder.rate_limiter import IntervalLimiter

log = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
PLACES_URL = "https://places.googleapis.com/v1"

SEARCH_FIELD_MASK = "places.id,places.displayName,places.location,places.formattedAddress"
DETAILS_FIELD_MASK = "id,displayName,formattedAddress,rating,userRatingCount,websiteUri,types,photos,location"
LOCATION_BIAS_RADIUS_M = 1000.0


class _GeocodeLatLng(BaseModel):
    lat: float
    lng: float


class _GeocodeGeometry(BaseModel):
    location: _GeocodeLatLng


class GeocodeResult(BaseModel):
    formatted_address: str | None = None
    geometry: _GeocodeGeometry
    partial_match: bool = False


class GeocodeResponse(BaseModel):
    status: str
    results: list[GeocodeResult] = Field(default_factory=list)
    error_message: str | None = None


class _DisplayName(BaseModel):
    text: str = ""


class _LatLng(BaseModel):
    latitude: float
    longitude: float


class _AuthorAttribution(BaseModel):
    displayName: str = ""


class _Photo(BaseModel):
    name: str
    widthPx: int | None = None
    heightPx: int | None = None
    authorAttributions: list[_AuthorAttribution] = Field(default_factory=list)


class Place(BaseModel):
    id: str
    displayName: _DisplayName | None = None
    formattedAddress: str | None = None
    location: _LatLng | None = None
    rating: float | None = None
    userRatingCount: int | None = None
    websiteUri: str | None = None
    types: list[str] = Field(default_factory=list)
    photos: list[_Photo] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.displayName.text if self.displayName else ""


class PlaceSearch(BaseModel):
    places: list[Place] = Field(default_factory=list)


def photo_media_url(photo_name: str, max_height_px: int = 400) -> str:
    """Media URL for a Places photo (the caller appends its own ``key``)."""
    return f"{PLACES_URL}/{photo_name}/media?maxHeightPx={max_height_px}"


class _GoogleProvider(HttpProvider[VenueQuery, Any]):
    env_var = "GOOGLE_MAPS_API_KEY"

    def __init__(
        self,
        api_key: str | None,
        base_confidence: float,
        ttl: timedelta,
        client: httpx.Client | None = None,
    ):
        super().__init__(base_confidence, ttl, client)
        self.api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def missing_credentials(self) -> str:
        return "" if self.is_configured else self.env_var


class GoogleGeocodingProvider(_GoogleProvider):
    name = "google_geocoding"
    payload_type = GeoPoint

    def __init__(
        self,
        api_key: str | None,
        base_confidence: float = 0.95,
        ttl: timedelta = days(365),
        client: httpx.Client | None = None,
    ):
        super().__init__(api_key, base_confidence, ttl, client)

    def lookup(self, entity: VenueQuery) -> ProviderOutcome:
        data = request_json(
            self._client,
            "GET",
            GEOCODE_URL,
            params={"address": entity.display_name, "key": self.api_key or ""},
        )
        if isinstance(data, (Throttled, Failed)):
            return data
        try:
            response = GeocodeResponse.model_validate(data)
        except ValidationError as e:
            return Failed(f"unexpected geocode response: {e.error_count()} validation errors")

        match response.status:
            case "OK" if response.results:
                result = response.results[0]
            case "OK" | "ZERO_RESULTS":
                return NotFound("ZERO_RESULTS")
            case "OVER_QUERY_LIMIT":
                return Throttled()
            case status:
                return Failed(f"{status}: {response.error_message or 'no detail'}")

        point = GeoPoint(
            lat=result.geometry.location.lat,
            lng=result.geometry.location.lng,
            formatted_address=result.formatted_address,
        )
        # A partial match usually means Google fell back to the city.
        return Found(point, self.base_confidence, definitive=not result.partial_match)


class GooglePlacesClient:
    """Places API (New) text search and details."""

    def __init__(self, api_key: str | None, client: httpx.Client):
        self.api_key = api_key
        self._client = client

    def _headers(self, field_mask: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key or "",
            "X-Goog-FieldMask": field_mask,
        }

    def search_text(
        self,
        query: str,
        bias: Location | None = None,
        field_mask: str = SEARCH_FIELD_MASK,
    ) -> Place | NotFound | Throttled | Failed:
        body: dict[str, Any] = {"textQuery": query}
        if bias is not None:
            body["locationBias"] = {
                "circle": {
                    "center": {"latitude": bias.lat, "longitude": bias.lng},
                    "radius": LOCATION_BIAS_RADIUS_M,
                }
            }
        data = request_json(
            self._client,
            "POST",
            f"{PLACES_URL}/places:searchText",
            json=body,
            headers=self._headers(field_mask),
        )
        if isinstance(data, (Throttled, Failed)):
            return data
        try:
            search = PlaceSearch.model_validate(data)
        except ValidationError as e:
            return Failed(f"unexpected searchText response: {e.error_count()} validation errors")
        if not search.places:
            return NotFound(f"no place found for {query!r}")
        return search.places[0]

    def place_details(self, place_id: str) -> Place | Throttled | Failed:
        data = request_json(
            self._client,
            "GET",
            f"{PLACES_URL}/places/{place_id}",
            headers=self._headers(DETAILS_FIELD_MASK),
        )
        if isinstance(data, (Throttled, Failed)):
            return data
        try:
            return Place.model_validate(data)
        except ValidationError as e:
            return Failed(f"unexpected place details response: {e.error_count()} validation errors")


def _bias(entity: VenueQuery) -> Location | None:
    if entity.lat is None or entity.lng is None:
        return None
    return Location(lat=entity.lat, lng=entity.lng)


class GooglePlacesLocationProvider(_GoogleProvider):
    name = "google_places"
    payload_type = GeoPoint
    env_var = "GOOGLE_PLACES_API_KEY"

    def __init__(
        self,
        api_key: str | None,
        base_confidence: float = 0.80,
        ttl: timedelta = days(90),
        client: httpx.Client | None = None,
    ):
        super().__init__(api_key, base_confidence, ttl, client)
        self.places = GooglePlacesClient(api_key, self._client)

    def lookup(self, entity: VenueQuery) -> ProviderOutcome:
        place = self.places.search_text(entity.display_name)
        if isinstance(place, (NotFound, Throttled, Failed)):
            return place
        if place.location is None:
            return NotFound(f"place {place.id} has no location")

        point = GeoPoint(
            lat=place.location.latitude,
            lng=place.location.longitude,
            formatted_address=place.formattedAddress,
        )
        return Found(point, self.base_confidence, definitive=names_match(entity.venue, place.name))


class GooglePlacesDetailsProvider(_GoogleProvider):
    name = "google_places_details"
    payload_type = PlaceDetails
    env_var = "GOOGLE_PLACES_API_KEY"

    def __init__(
        self,
        api_key: str | None,
        base_confidence: float = 0.90,
        ttl: timedelta = days(90),
        client: httpx.Client | None = None,
        limiter: IntervalLimiter | None = None,
    ):
        super().__init__(api_key, base_confidence, ttl, client)
        self.places = GooglePlacesClient(api_key, self._client)
        # paces the details request after the search; the waterfall only
        # waits before the first of the two calls
        self.limiter = limiter

    def lookup(self, entity: VenueQuery) -> ProviderOutcome:
        found = self.places.search_text(entity.display_name, bias=_bias(entity))
        if isinstance(found, (NotFound, Throttled, Failed)):
            return found

        if self.limiter is not None:
            self.limiter.wait()
        place = self.places.place_details(found.id)
        if isinstance(place, (Throttled, Failed)):
            return place

        details = PlaceDetails(
            place_id=place.id,
            display_name=place.name or None,
            formatted_address=place.formattedAddress,
            rating=place.rating,
            user_rating_count=place.userRatingCount,
            website_uri=place.websiteUri,
            types=place.types,
            photos=[
                PlacePhoto(
                    name=photo.name,
                    width_px=photo.widthPx,
                    height_px=photo.heightPx,
                    attributions=[a.displayName for a in photo.authorAttributions if a.displayName],
                )
                for photo in place.photos
            ],
            location=(
                Location(lat=place.location.latitude, lng=place.location.longitude)
                if place.location
                else None
            ),
        )
        if not details.photos:
            log.info(f"  Places: {entity.display_name} has no photos")
        return Found(details, self.base_confidence, definitive=names_match(entity.venue, place.name))
