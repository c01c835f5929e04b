"""TheAudioDB artist provider (public key "2" works for search)."""

from __future__ import annotations

import logging
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

PUBLIC_API_KEY = "2"


class AudioDBArtist(BaseModel):
    strArtist: str
    strArtistThumb: str | None = None
    strBiographyEN: str | None = None
    strGenre: str | None = None
    strStyle: str | None = None
    intFormedYear: str | None = None


class AudioDBSearch(BaseModel):
    # The API answers {"artists": null} for no hits.
    artists: list[AudioDBArtist] | None = Field(default=None)


class TheAudioDBProvider(HttpProvider[ArtistQuery, ArtistProfile]):
    name = "theaudiodb"
    payload_type = ArtistProfile

    BASE_URL = "https://www.theaudiodb.com/api/v1/json"

    def __init__(
        self,
        api_key: str | None = PUBLIC_API_KEY,
        base_confidence: float = 0.80,
        ttl: timedelta = days(30),
        client: httpx.Client | None = None,
    ):
        super().__init__(base_confidence, ttl, client)
        self.api_key = api_key or PUBLIC_API_KEY

    def lookup(self, entity: ArtistQuery) -> ProviderOutcome:
        data = request_json(
            self._client,
            "GET",
            f"{self.BASE_URL}/{self.api_key}/search.php",
            params={"s": entity.name},
        )
        if isinstance(data, (Throttled, Failed)):
            return data
        try:
            result = AudioDBSearch.model_validate(data)
        except ValidationError as e:
            return Failed(f"unexpected search response: {e.error_count()} validation errors")

        if not result.artists:
            return NotFound("no search results")
        artist = result.artists[0]
        if not names_match(entity.name, artist.strArtist):
            return NotFound(f"implausible match {artist.strArtist!r}")
        if not artist.strArtistThumb:
            return NotFound(f"{artist.strArtist!r} has no image")

        genres = [g for g in (artist.strGenre, artist.strStyle) if g]
        profile = ArtistProfile(
            name=artist.strArtist,
            image=artist.strArtistThumb,
            bio=artist.strBiographyEN or None,
            genres=list(dict.fromkeys(genres)),
            formed=artist.intFormedYear or None,
        )
        confidence = round(self.base_confidence * name_similarity(entity.name, artist.strArtist), 3)
        return Found(profile, confidence)


## Tests


def _provider(handler) -> TheAudioDBProvider:
    return TheAudioDBProvider(client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_theaudiodb_found():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/2/search.php")
        assert request.url.params["s"] == "Violent Femmes"
        return httpx.Response(
            200,
            json={
                "artists": [
                    {
                        "strArtist": "Violent Femmes",
                        "strArtistThumb": "https://img/vf.jpg",
                        "strGenre": "Alternative Rock",
                        "intFormedYear": "1980",
                    }
                ]
            },
        )

    outcome = _provider(handler).lookup(ArtistQuery("Violent Femmes"))
    assert isinstance(outcome, Found)
    assert outcome.payload.genres == ["Alternative Rock"]
    assert outcome.confidence == 0.8


def test_theaudiodb_null_artists_is_not_found():
    outcome = _provider(lambda r: httpx.Response(200, json={"artists": None})).lookup(
        ArtistQuery("Nobody")
    )
    assert isinstance(outcome, NotFound)
