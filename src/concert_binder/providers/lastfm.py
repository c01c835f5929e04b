"""Last.fm artist provider (``artist.getinfo``)."""

from __future__ import annotations

import logging
import re
from datetime import timedelta

import httpx
from pydantic import BaseModel, Field, ValidationError

from concert_binder.models import ArtistProfile, ArtistQuery
from concert_binder.normalize import name_similarity, names_match
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

log = logging.getLogger(__name__)

# Last.fm appends a "Read more on Last.fm" anchor to every bio.
_READ_MORE = re.compile(r"\s*<a href=.*?</a>\.?\s*$", re.DOTALL)

# Last.fm error codes that mean "no such artist".
_NOT_FOUND_CODES = {6}
_RATE_LIMIT_CODES = {29}


class LastFmImage(BaseModel):
    url: str = Field(default="", alias="#text")
    size: str = ""


class LastFmTag(BaseModel):
    name: str


class LastFmTags(BaseModel):
    tag: list[LastFmTag] = Field(default_factory=list)


class LastFmBio(BaseModel):
    summary: str | None = None


class LastFmArtist(BaseModel):
    name: str
    image: list[LastFmImage] = Field(default_factory=list)
    bio: LastFmBio | None = None
    tags: LastFmTags | None = None

    def best_image(self) -> str | None:
        by_size = {img.size: img.url for img in self.image if img.url}
        for size in ("mega", "extralarge", "large", "medium", "small"):
            if by_size.get(size):
                return by_size[size]
        return None


class LastFmProvider(HttpProvider[ArtistQuery, ArtistProfile]):
    name = "lastfm"
    payload_type = ArtistProfile

    BASE_URL = "https://ws.audioscrobbler.com/2.0/"

    def __init__(
        self,
        api_key: str | None,
        base_confidence: float = 0.60,
        ttl: timedelta = days(30),
        client: httpx.Client | None = None,
    ):
        super().__init__(base_confidence, ttl, client)
        self.api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def missing_credentials(self) -> str:
        return "" if self.is_configured else "LASTFM_API_KEY"

    def lookup(self, entity: ArtistQuery) -> ProviderOutcome:
        data = request_json(
            self._client,
            "GET",
            self.BASE_URL,
            params={
                "method": "artist.getinfo",
                "artist": entity.name,
                "api_key": self.api_key or "",
                "format": "json",
                "autocorrect": "1",
            },
        )
        if isinstance(data, (Throttled, Failed)):
            return data

        # Errors come back as 200 with an "error" code.
        if "error" in data:
            code = data.get("error")
            message = data.get("message", "")
            if code in _RATE_LIMIT_CODES:
                return Throttled()
            if code in _NOT_FOUND_CODES:
                return NotFound(str(message) or "artist not found")
            return Failed(f"Last.fm error {code}: {message}")

        try:
            artist = LastFmArtist.model_validate(data.get("artist"))
        except ValidationError as e:
            return Failed(f"unexpected artist.getinfo response: {e.error_count()} validation errors")

        if not names_match(entity.name, artist.name):
            return NotFound(f"implausible match {artist.name!r}")
        image = artist.best_image()
        if not image:
            return NotFound(f"{artist.name!r} has no image")

        bio = None
        if artist.bio and artist.bio.summary:
            bio = _READ_MORE.sub("", artist.bio.summary).strip() or None

        profile = ArtistProfile(
            name=artist.name,
            image=image,
            bio=bio,
            genres=[t.name for t in artist.tags.tag[:3]] if artist.tags else [],
        )
        confidence = round(self.base_confidence * name_similarity(entity.name, artist.name), 3)
        return Found(profile, confidence)
