"""Data models for concert-binder.

Persisted documents use camelCase JSON (``headlinerNormalized``,
``cityState``); the models expose snake_case attributes and serialize by
alias. Persisted records and metadata entries accept unknown fields so
hand-added data (``attendedWith``, notes, ...) survives a round trip.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from concert_binder.normalize import composite_key, normalize_artist


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Location(CamelModel):
    lat: float
    lng: float


# ---------------------------------------------------------------------------
# Concert records
# ---------------------------------------------------------------------------


class ConcertFields(CamelModel):
    """Fields derived from one ingested row. Absent means "not derived"."""

    date: str | None = None
    headliner: str = ""
    headliner_normalized: str | None = None
    genre: str | None = None
    genre_normalized: str | None = None
    openers: list[str] | None = None
    venue: str | None = None
    venue_normalized: str | None = None
    city: str | None = None
    state: str | None = None
    city_state: str | None = None
    reference: str | None = None
    is_festival: bool | None = None
    year: int | None = None
    month: int | None = None
    day: int | None = None
    day_of_week: str | None = None
    decade: str | None = None
    location: Location | None = None


class SourceRecord(ConcertFields):
    """A freshly derived row. Discarded after reconciliation."""

    model_config = ConfigDict(extra="forbid")

    row_number: int = Field(default=0, exclude=True)
    raw_date: str = Field(default="", exclude=True)


class PersistedRecord(ConcertFields):
    """A catalog record: derived fields, a permanent ``id``, and any extras."""

    model_config = ConfigDict(extra="allow")

    id: str
    date: str

    def to_json(self) -> dict[str, Any]:
        data = super().to_json()
        return {"id": data.pop("id"), **data}

    @property
    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


# ---------------------------------------------------------------------------
# Provider payloads
# ---------------------------------------------------------------------------


class CoverArt(CamelModel):
    small: str | None = None
    medium: str | None = None
    large: str | None = None


class AlbumSummary(CamelModel):
    name: str
    spotify_album_id: str
    spotify_album_url: str | None = None
    cover_art: CoverArt = Field(default_factory=CoverArt)
    release_year: int | None = None


class TrackSummary(CamelModel):
    name: str
    spotify_track_id: str
    spotify_url: str | None = None
    preview_url: str | None = None
    duration_ms: int | None = None


class ArtistProfile(CamelModel):
    """Artist metadata as resolved by one provider."""

    name: str
    image: str | None = None
    bio: str | None = None
    genres: list[str] = Field(default_factory=list)
    formed: str | None = None
    spotify_artist_id: str | None = None
    spotify_artist_url: str | None = None
    popularity: int | None = None
    most_popular_album: AlbumSummary | None = None
    top_tracks: list[TrackSummary] | None = None


class GeoPoint(CamelModel):
    lat: float
    lng: float
    formatted_address: str | None = None

    @property
    def location(self) -> Location:
        return Location(lat=self.lat, lng=self.lng)


class PlacePhoto(CamelModel):
    name: str
    width_px: int | None = None
    height_px: int | None = None
    attributions: list[str] = Field(default_factory=list)


class PlaceDetails(CamelModel):
    place_id: str
    display_name: str | None = None
    formatted_address: str | None = None
    rating: float | None = None
    user_rating_count: int | None = None
    website_uri: str | None = None
    types: list[str] = Field(default_factory=list)
    photos: list[PlacePhoto] = Field(default_factory=list)
    location: Location | None = None


# ---------------------------------------------------------------------------
# Metadata documents
# ---------------------------------------------------------------------------


class ArtistMetadataEntry(CamelModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    image: str | None = None
    bio: str | None = None
    genres: list[str] | None = None
    formed: str | None = None
    source: str | None = None
    confidence: float | None = None
    fetched_at: str | None = None
    spotify_artist_id: str | None = None
    spotify_artist_url: str | None = None
    popularity: int | None = None
    most_popular_album: AlbumSummary | None = None
    top_tracks: list[TrackSummary] | None = None


class VenueMetadataEntry(CamelModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    city: str | None = None
    state: str | None = None
    place_id: str | None = None
    formatted_address: str | None = None
    rating: float | None = None
    user_rating_count: int | None = None
    website_uri: str | None = None
    photos: list[PlacePhoto] | None = None
    fetched_at: str | None = None


# ---------------------------------------------------------------------------
# Waterfall entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtistQuery:
    name: str

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def normalized(self) -> str:
        return normalize_artist(self.name)

    def cache_key(self) -> str:
        return composite_key(self.name)


@dataclass(frozen=True)
class VenueQuery:
    venue: str
    city: str
    state: str
    lat: float | None = None
    lng: float | None = None

    @property
    def display_name(self) -> str:
        return f"{self.venue}, {self.city}, {self.state}"

    @property
    def city_state(self) -> str:
        return f"{self.city}, {self.state}"

    def cache_key(self) -> str:
        return composite_key(self.venue, self.city, self.state)
