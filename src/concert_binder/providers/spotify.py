"""
Spotify Web API client and artist provider.

Uses the client credentials flow. The artist provider searches by name
(or fetches a pinned artist ID from the overrides table), requires an
image and a plausible name match, and attaches the most popular album
and top tracks when available.
"""

from __future__ import annotations

import base64
import logging
import time
from collections.abc import Mapping
from datetime import timedelta
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, Field, ValidationError

from concert_binder.models import AlbumSummary, ArtistProfile, ArtistQuery, CoverArt, TrackSummary
from concert_binder.normalize import name_similarity, names_match, normalize_artist
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

M = TypeVar("M", bound=BaseModel)

# Below this popularity a name match is kept but marked for review.
MIN_DEFINITIVE_POPULARITY = 30
ALBUM_DETAIL_LIMIT = 5
TOP_TRACK_LIMIT = 5


class SpotifyImage(BaseModel):
    url: str
    height: int | None = None
    width: int | None = None


class SpotifyArtist(BaseModel):
    id: str
    name: str
    images: list[SpotifyImage] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    popularity: int = 0
    external_urls: dict[str, str] = Field(default_factory=dict)


class _ArtistItems(BaseModel):
    items: list[SpotifyArtist] = Field(default_factory=list)


class SpotifyArtistSearch(BaseModel):
    artists: _ArtistItems = Field(default_factory=_ArtistItems)


class SpotifyAlbum(BaseModel):
    id: str
    name: str
    images: list[SpotifyImage] = Field(default_factory=list)
    release_date: str | None = None
    popularity: int | None = None
    external_urls: dict[str, str] = Field(default_factory=dict)


class SpotifyAlbumPage(BaseModel):
    items: list[SpotifyAlbum] = Field(default_factory=list)


class SpotifyTrack(BaseModel):
    id: str
    name: str
    preview_url: str | None = None
    duration_ms: int | None = None
    external_urls: dict[str, str] = Field(default_factory=dict)


class SpotifyTopTracks(BaseModel):
    tracks: list[SpotifyTrack] = Field(default_factory=list)


class SpotifyClient:
    """
    Spotify Web API client.

    Every call returns either the validated response model or a
    ``Throttled``/``Failed`` outcome; nothing raises on HTTP errors.
    """

    BASE_URL = "https://api.spotify.com/v1"
    AUTH_URL = "https://accounts.spotify.com/api/token"

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        client: httpx.Client | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self._client = client or httpx.Client(timeout=30.0)
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)

    def _get_access_token(self) -> str | Throttled | Failed:
        """Client credentials token, cached until shortly before expiry."""
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        credentials = f"{self.client_id}:{self.client_secret}"
        b64_credentials = base64.b64encode(credentials.encode()).decode()
        data = request_json(
            self._client,
            "POST",
            self.AUTH_URL,
            headers={
                "Authorization": f"Basic {b64_credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data={"grant_type": "client_credentials"},
        )
        if isinstance(data, (Throttled, Failed)):
            return data

        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            return Failed("token response without access_token")
        self._access_token = token
        expires_in = data.get("expires_in", 3600)
        self._token_expires_at = time.time() + float(expires_in) - 60  # 60s buffer
        return token

    def _get(
        self,
        endpoint: str,
        model: type[M],
        params: dict[str, str] | None = None,
    ) -> M | Throttled | Failed:
        token = self._get_access_token()
        if isinstance(token, (Throttled, Failed)):
            return token

        data = request_json(
            self._client,
            "GET",
            f"{self.BASE_URL}/{endpoint}",
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )
        if isinstance(data, (Throttled, Failed)):
            return data
        try:
            return model.model_validate(data)
        except ValidationError as e:
            return Failed(f"unexpected {endpoint} response: {e.error_count()} validation errors")

    def search_artist(self, name: str, limit: int = 5) -> SpotifyArtist | NotFound | Throttled | Failed:
        """Top search hit for ``name``."""
        result = self._get(
            "search",
            SpotifyArtistSearch,
            params={"q": name, "type": "artist", "limit": str(limit)},
        )
        if isinstance(result, (Throttled, Failed)):
            return result
        if not result.artists.items:
            return NotFound("no search results")
        return result.artists.items[0]

    def get_artist(self, artist_id: str) -> SpotifyArtist | Throttled | Failed:
        return self._get(f"artists/{artist_id}", SpotifyArtist)

    def get_top_album(self, artist_id: str) -> SpotifyAlbum | None | Throttled | Failed:
        """Most popular of the artist's first few albums (details carry popularity)."""
        page = self._get(
            f"artists/{artist_id}/albums",
            SpotifyAlbumPage,
            params={"include_groups": "album", "market": "US", "limit": "20"},
        )
        if isinstance(page, (Throttled, Failed)):
            return page

        details: list[SpotifyAlbum] = []
        for album in page.items[:ALBUM_DETAIL_LIMIT]:
            detail = self._get(f"albums/{album.id}", SpotifyAlbum)
            if isinstance(detail, Throttled):
                return detail
            if isinstance(detail, Failed):
                log.debug(f"Spotify album {album.id} details failed: {detail.detail}")
                continue
            details.append(detail)

        if not details:
            return page.items[0] if page.items else None
        return max(details, key=lambda a: a.popularity or 0)

    def get_top_tracks(self, artist_id: str) -> list[SpotifyTrack] | Throttled | Failed:
        result = self._get(f"artists/{artist_id}/top-tracks", SpotifyTopTracks, params={"market": "US"})
        if isinstance(result, (Throttled, Failed)):
            return result
        return result.tracks[:TOP_TRACK_LIMIT]

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SpotifyClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def _pick_image(images: list[SpotifyImage], height: int, index: int) -> str | None:
    for image in images:
        if image.height == height:
            return image.url
    return images[index].url if len(images) > index else None


def album_summary(album: SpotifyAlbum) -> AlbumSummary:
    release_year = None
    if album.release_date:
        year = album.release_date.split("-")[0]
        release_year = int(year) if year.isdigit() else None
    return AlbumSummary(
        name=album.name,
        spotify_album_id=album.id,
        spotify_album_url=album.external_urls.get("spotify"),
        cover_art=CoverArt(
            small=_pick_image(album.images, 64, 2),
            medium=_pick_image(album.images, 300, 1),
            large=_pick_image(album.images, 640, 0),
        ),
        release_year=release_year,
    )


def track_summary(track: SpotifyTrack) -> TrackSummary:
    return TrackSummary(
        name=track.name,
        spotify_track_id=track.id,
        spotify_url=track.external_urls.get("spotify"),
        preview_url=track.preview_url,
        duration_ms=track.duration_ms,
    )


class SpotifyArtistProvider(HttpProvider[ArtistQuery, ArtistProfile]):
    """Highest-confidence artist source."""

    name = "spotify"
    payload_type = ArtistProfile

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        overrides: Mapping[str, str] | None = None,
        base_confidence: float = 0.95,
        ttl: timedelta = days(90),
        client: httpx.Client | None = None,
    ):
        super().__init__(base_confidence, ttl, client)
        self.spotify = SpotifyClient(client_id, client_secret, client=self._client)
        # normalized artist name -> pinned Spotify artist ID
        self.overrides = dict(overrides or {})

    @property
    def is_configured(self) -> bool:
        return self.spotify.is_configured

    @property
    def missing_credentials(self) -> str:
        if self.is_configured:
            return ""
        return "SPOTIFY_CLIENT_ID/SPOTIFY_CLIENT_SECRET"

    def lookup(self, entity: ArtistQuery) -> ProviderOutcome:
        pinned_id = self.overrides.get(entity.normalized)
        if pinned_id:
            log.info(f"  Spotify: using pinned artist {pinned_id} for {entity.name!r}")
            artist = self.spotify.get_artist(pinned_id)
        else:
            artist = self.spotify.search_artist(entity.name)
        if isinstance(artist, (NotFound, Throttled, Failed)):
            return artist

        if not pinned_id and not names_match(entity.name, artist.name):
            return NotFound(f"implausible match {artist.name!r}")
        if not artist.images:
            return NotFound(f"{artist.name!r} has no image")

        album = self.spotify.get_top_album(artist.id)
        if isinstance(album, Throttled):
            return album
        if isinstance(album, Failed):
            log.debug(f"  Spotify: albums for {artist.name!r} failed: {album.detail}")
            album = None

        tracks = self.spotify.get_top_tracks(artist.id)
        if isinstance(tracks, Throttled):
            return tracks
        if isinstance(tracks, Failed):
            log.debug(f"  Spotify: top tracks for {artist.name!r} failed: {tracks.detail}")
            tracks = []

        profile = ArtistProfile(
            name=artist.name,
            image=artist.images[0].url,
            genres=artist.genres,
            spotify_artist_id=artist.id,
            spotify_artist_url=artist.external_urls.get("spotify"),
            popularity=artist.popularity,
            most_popular_album=album_summary(album) if album else None,
            top_tracks=[track_summary(t) for t in tracks] or None,
        )

        if pinned_id:
            return Found(profile, self.base_confidence, definitive=True)

        exact = normalize_artist(entity.name) == normalize_artist(artist.name)
        popular = artist.popularity >= MIN_DEFINITIVE_POPULARITY
        if not (exact and popular):
            log.warning(
                f"  Review match: {entity.name!r} -> {artist.name!r} (popularity: {artist.popularity})"
            )
        confidence = round(self.base_confidence * name_similarity(entity.name, artist.name), 3)
        return Found(profile, confidence, definitive=exact and popular)
