"""Metadata providers for the enrichment waterfalls."""

from concert_binder.providers.base import (
    Failed,
    Found,
    HttpProvider,
    MetadataProvider,
    NotFound,
    ProviderOutcome,
    Throttled,
)
from concert_binder.providers.city_coordinates import CityCentroidProvider
from concert_binder.providers.google import (
    GoogleGeocodingProvider,
    GooglePlacesDetailsProvider,
    GooglePlacesLocationProvider,
)
from concert_binder.providers.lastfm import LastFmProvider
from concert_binder.providers.spotify import SpotifyArtistProvider, SpotifyClient
from concert_binder.providers.theaudiodb import TheAudioDBProvider

__all__ = [
    "CityCentroidProvider",
    "Failed",
    "Found",
    "GoogleGeocodingProvider",
    "GooglePlacesDetailsProvider",
    "GooglePlacesLocationProvider",
    "HttpProvider",
    "LastFmProvider",
    "MetadataProvider",
    "NotFound",
    "ProviderOutcome",
    "SpotifyArtistProvider",
    "SpotifyClient",
    "TheAudioDBProvider",
    "Throttled",
]
