"""
Import and enrichment runs.

A ``Pipeline`` owns everything one run needs: its caches, its rate
limiters and the sink that receives the final write (``BackupGuard`` or
``DryRunSink``). Nothing is module-global, so runs and tests stay
isolated.

Runs:
    run_import        CSV -> geocode -> reconcile -> concerts.json
    enrich_artists    catalog artists -> artist waterfall -> artists-metadata.json
    enrich_venues     catalog venues -> places details -> venues-metadata.json
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

from concert_binder.artifacts import (
    build_catalog_document,
    build_metadata_document,
    dump_json,
    load_artist_metadata,
    load_catalog,
    load_string_map,
    load_venue_metadata,
)
from concert_binder.backup import ArtifactSink, BackupGuard, DryRunSink
from concert_binder.config import Config
from concert_binder.console import make_progress
from concert_binder.errors import InputFileError
from concert_binder.ingest import GenreResolver, derive_record, read_csv, unique_venues, venue_query
from concert_binder.keyed_cache import KeyedCache
from concert_binder.models import (
    ArtistMetadataEntry,
    ArtistProfile,
    ArtistQuery,
    GeoPoint,
    Location,
    PersistedRecord,
    PlaceDetails,
    VenueMetadataEntry,
    VenueQuery,
)
from concert_binder.normalize import normalize_artist, normalize_venue
from concert_binder.providers import (
    CityCentroidProvider,
    GoogleGeocodingProvider,
    GooglePlacesDetailsProvider,
    GooglePlacesLocationProvider,
    LastFmProvider,
    SpotifyArtistProvider,
    TheAudioDBProvider,
)
from concert_binder.providers.base import days
from concert_binder.rate_limiter import RateLimiterRegistry
from concert_binder.reconcile import reconcile
from concert_binder.validator import DEFAULT_ARTIST_OVERRIDES
from concert_binder.waterfall import ProviderResult, ProviderWaterfall

log = logging.getLogger(__name__)

# Cache domain -> file name under paths.cache_dir
CACHE_FILES = {
    "geocode": "geocode-cache.json",
    "artists": "artist-cache.json",
    "places": "venue-photos-cache.json",
}


def _timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class ImportSummary:
    rows: int = 0
    venues: int = 0
    located: int = 0
    unlocated: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    retained: int = 0
    dropped: int = 0
    total: int = 0
    dry_run: bool = False
    written: str | None = None
    backup: str | None = None
    geocoding: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EnrichSummary:
    target: str
    total: int = 0
    enriched: int = 0
    cached: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    written: str | None = None
    backup: str | None = None
    providers: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def open_cache(config: Config, domain: str) -> KeyedCache:
    return KeyedCache(config.paths.cache_dir / CACHE_FILES[domain], name=domain)


def artist_overrides(config: Config) -> dict[str, str]:
    """Canonical -> stored artist key; the file replaces the built-in table."""
    path = config.paths.artist_overrides_path
    if path is None:
        return dict(DEFAULT_ARTIST_OVERRIDES)
    return load_string_map(path, "artist overrides")


def artist_key(name: str, overrides: dict[str, str]) -> str:
    canonical = normalize_artist(name)
    return overrides.get(canonical, canonical)


class Pipeline:
    """One run's worth of collaborators, built from ``Config``."""

    def __init__(
        self,
        config: Config,
        *,
        dry_run: bool = False,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        show_progress: bool = True,
    ):
        self.config = config
        self.dry_run = dry_run
        self.sink: ArtifactSink = DryRunSink() if dry_run else BackupGuard(config.backup.retention)
        self.client = client
        self.sleep = sleep
        self.limiters = RateLimiterRegistry(config.providers.rate_intervals, sleep=sleep, clock=clock)
        self.show_progress = show_progress

    # -- waterfalls ----------------------------------------------------

    def _waterfall(self, name: str, providers: list[Any], cache: KeyedCache, payload_type: type) -> ProviderWaterfall:
        for provider in providers:
            if not provider.is_configured:
                log.warning(f"{name}: provider {provider.name} disabled (missing {provider.missing_credentials})")
        return ProviderWaterfall(
            name,
            providers,
            cache,
            payload_type,
            limiters=self.limiters,
            policy=self.config.waterfall.to_policy(),
            sleep=self.sleep,
        )

    def artist_waterfall(self, cache: KeyedCache) -> ProviderWaterfall[ArtistProfile]:
        p = self.config.providers
        spotify_overrides = load_string_map(self.config.paths.spotify_overrides_path, "Spotify overrides")
        providers = [
            SpotifyArtistProvider(
                p.spotify_client_id,
                p.spotify_client_secret,
                overrides=spotify_overrides,
                base_confidence=p.confidence_for("spotify", 0.95),
                ttl=p.ttl_for("spotify", days(90)),
                client=self.client,
            ),
            TheAudioDBProvider(
                p.theaudiodb_api_key,
                base_confidence=p.confidence_for("theaudiodb", 0.80),
                ttl=p.ttl_for("theaudiodb", days(30)),
                client=self.client,
            ),
            LastFmProvider(
                p.lastfm_api_key,
                base_confidence=p.confidence_for("lastfm", 0.60),
                ttl=p.ttl_for("lastfm", days(30)),
                client=self.client,
            ),
        ]
        return self._waterfall("artists", providers, cache, ArtistProfile)

    def geocode_waterfall(self, cache: KeyedCache) -> ProviderWaterfall[GeoPoint]:
        p = self.config.providers
        providers = [
            GoogleGeocodingProvider(
                p.google_maps_api_key,
                base_confidence=p.confidence_for("google_geocoding", 0.95),
                ttl=p.ttl_for("google_geocoding", days(365)),
                client=self.client,
            ),
            GooglePlacesLocationProvider(
                p.places_api_key,
                base_confidence=p.confidence_for("google_places", 0.80),
                ttl=p.ttl_for("google_places", days(90)),
                client=self.client,
            ),
            CityCentroidProvider(
                base_confidence=p.confidence_for("city_centroid", 0.30),
                ttl=p.ttl_for("city_centroid", days(30)),
            ),
        ]
        return self._waterfall("geocode", providers, cache, GeoPoint)

    def places_waterfall(self, cache: KeyedCache) -> ProviderWaterfall[PlaceDetails]:
        p = self.config.providers
        providers = [
            GooglePlacesDetailsProvider(
                p.places_api_key,
                base_confidence=p.confidence_for("google_places_details", 0.90),
                ttl=p.ttl_for("google_places_details", days(90)),
                client=self.client,
                limiter=self.limiters.get_limiter("google_places_details"),
            )
        ]
        return self._waterfall("places", providers, cache, PlaceDetails)

    # -- helpers -------------------------------------------------------

    def _write(self, path: Path, document: Any) -> Path | None:
        return self.sink.protected_write(path, dump_json(document))

    @staticmethod
    def _flush(cache: KeyedCache) -> None:
        if not cache.dirty:
            return
        if not cache.flush() and not cache.flush():
            log.error(f"Cache {cache.name} could not be saved; its new entries will be fetched again next run")

    def _progress_loop(self, description: str, items: list[Any], step: Callable[[Any], None]) -> None:
        if not self.show_progress or not items:
            for item in items:
                step(item)
            return
        with make_progress() as progress:
            task = progress.add_task(description, total=len(items))
            for item in items:
                step(item)
                progress.advance(task)

    # -- runs ----------------------------------------------------------

    def run_import(self) -> ImportSummary:
        """Re-derive the catalog from the CSV export and reconcile it with the stored one."""
        paths = self.config.paths
        existing = load_catalog(paths.catalog_path)
        rows = read_csv(paths.csv_path)

        try:
            metadata = load_artist_metadata(paths.artists_metadata_path)
        except InputFileError as e:
            log.warning(f"Ignoring artist metadata for genres: {e}")
            metadata = {}
        genres = GenreResolver(load_string_map(paths.genre_overrides_path, "genre overrides"), metadata)

        summary = ImportSummary(rows=len(rows), dry_run=self.dry_run)
        venues = unique_venues(rows)
        summary.venues = len(venues)
        locations: dict[str, Location] = {}

        cache = open_cache(self.config, "geocode")
        waterfall = self.geocode_waterfall(cache)
        try:

            def geocode(item: tuple[str, VenueQuery]) -> None:
                key, query = item
                result = waterfall.resolve(query)
                if result is not None:
                    locations[key] = result.payload.location
                else:
                    log.warning(f"No coordinates for {query.display_name}")

            self._progress_loop("Geocoding venues", list(venues.items()), geocode)
        finally:
            self._flush(cache)
            waterfall.close()

        summary.located = len(locations)
        summary.unlocated = len(venues) - len(locations)
        summary.geocoding = waterfall.stats.to_dict()

        fresh = []
        for row in rows:
            query = venue_query(row)
            location = locations.get(query.cache_key()) if query else None
            fresh.append(derive_record(row, genres, location))

        result = reconcile(fresh, existing)
        backup = self._write(paths.catalog_path, build_catalog_document(result.records))

        for key, value in result.summary().items():
            setattr(summary, key, value)
        summary.written = None if self.dry_run else str(paths.catalog_path)
        summary.backup = str(backup) if backup else None
        return summary

    def enrich_artists(self, refresh: bool = False, only: str | None = None) -> EnrichSummary:
        """Resolve every catalog artist and rewrite the artist metadata document."""
        paths = self.config.paths
        records = load_catalog(paths.catalog_path)
        if not records:
            raise InputFileError(paths.catalog_path, "no concerts to enrich (run import first)")

        overrides = artist_overrides(self.config)
        entries = load_artist_metadata(paths.artists_metadata_path)
        names = catalog_artists(records)
        summary = EnrichSummary(target="artists", total=len(names), dry_run=self.dry_run)

        cache = open_cache(self.config, "artists")
        waterfall = self.artist_waterfall(cache)
        try:

            def enrich(name: str) -> None:
                result = waterfall.resolve(ArtistQuery(name), refresh=refresh, only=only)
                key = artist_key(name, overrides)
                if result is None:
                    summary.skipped += 1
                    return
                summary.cached += int(result.from_cache)
                summary.enriched += int(not result.from_cache)
                summary.providers[result.provider_name] = summary.providers.get(result.provider_name, 0) + 1
                entries[key] = artist_entry(name, result, entries.get(key))

            self._progress_loop("Enriching artists", names, enrich)
        finally:
            self._flush(cache)
            waterfall.close()

        summary.failed = waterfall.stats.failures
        backup = self._write(paths.artists_metadata_path, build_metadata_document(entries))
        summary.written = None if self.dry_run else str(paths.artists_metadata_path)
        summary.backup = str(backup) if backup else None
        return summary

    def enrich_venues(self, refresh: bool = False) -> EnrichSummary:
        """Fetch place details and photos for every catalog venue."""
        paths = self.config.paths
        records = load_catalog(paths.catalog_path)
        if not records:
            raise InputFileError(paths.catalog_path, "no concerts to enrich (run import first)")

        entries = load_venue_metadata(paths.venues_metadata_path)
        queries = catalog_venues(records)
        summary = EnrichSummary(target="venues", total=len(queries), dry_run=self.dry_run)

        cache = open_cache(self.config, "places")
        waterfall = self.places_waterfall(cache)
        try:

            def enrich(query: VenueQuery) -> None:
                result = waterfall.resolve(query, refresh=refresh)
                if result is None:
                    summary.skipped += 1
                    return
                summary.cached += int(result.from_cache)
                summary.enriched += int(not result.from_cache)
                summary.providers[result.provider_name] = summary.providers.get(result.provider_name, 0) + 1
                key = normalize_venue(query.venue)
                entries[key] = venue_entry(query, result.payload, entries.get(key))

            self._progress_loop("Enriching venues", queries, enrich)
        finally:
            self._flush(cache)
            waterfall.close()

        summary.failed = waterfall.stats.failures
        backup = self._write(paths.venues_metadata_path, build_metadata_document(entries))
        summary.written = None if self.dry_run else str(paths.venues_metadata_path)
        summary.backup = str(backup) if backup else None
        return summary


def catalog_artists(records: list[PersistedRecord]) -> list[str]:
    """Headliners plus openers of non-festival shows, unique by canonical key."""
    names: dict[str, str] = {}
    for record in records:
        candidates = [record.headliner]
        if not record.is_festival:
            candidates += record.openers or []
        for name in candidates:
            if name and (canonical := normalize_artist(name)):
                names.setdefault(canonical, name)
    return list(names.values())


def catalog_venues(records: list[PersistedRecord]) -> list[VenueQuery]:
    """One query per venue name; the first record's coordinates bias the search."""
    queries: dict[str, VenueQuery] = {}
    for record in records:
        if not (record.venue and record.city and record.state):
            continue
        key = normalize_venue(record.venue)
        if key in queries:
            if queries[key].city_state != f"{record.city}, {record.state}":
                log.debug(f"Venue {record.venue!r} appears in several cities; using {queries[key].city_state}")
            continue
        queries[key] = VenueQuery(
            venue=record.venue,
            city=record.city,
            state=record.state,
            lat=record.location.lat if record.location else None,
            lng=record.location.lng if record.location else None,
        )
    return list(queries.values())


def artist_entry(
    name: str,
    result: ProviderResult[ArtistProfile],
    existing: ArtistMetadataEntry | None,
) -> ArtistMetadataEntry:
    """Metadata entry for ``name``; fields the providers never set survive from ``existing``."""
    profile = result.payload
    fresh = ArtistMetadataEntry(
        name=name,
        image=profile.image,
        bio=profile.bio,
        genres=profile.genres,
        formed=profile.formed,
        source=result.provider_name,
        confidence=result.confidence,
        fetched_at=_timestamp(),
        spotify_artist_id=profile.spotify_artist_id,
        spotify_artist_url=profile.spotify_artist_url,
        popularity=profile.popularity,
        most_popular_album=profile.most_popular_album,
        top_tracks=profile.top_tracks,
    )
    base = existing.to_json() if existing else {}
    return ArtistMetadataEntry.model_validate({**base, **fresh.to_json()})


def venue_entry(
    query: VenueQuery,
    details: PlaceDetails,
    existing: VenueMetadataEntry | None,
) -> VenueMetadataEntry:
    fresh = VenueMetadataEntry(
        name=query.venue,
        city=query.city,
        state=query.state,
        place_id=details.place_id,
        formatted_address=details.formatted_address,
        rating=details.rating,
        user_rating_count=details.user_rating_count,
        website_uri=details.website_uri,
        photos=details.photos or None,
        fetched_at=_timestamp(),
    )
    base = existing.to_json() if existing else {}
    return VenueMetadataEntry.model_validate({**base, **fresh.to_json()})


def run_import(config: Config, dry_run: bool = False, **kwargs: Any) -> ImportSummary:
    return Pipeline(config, dry_run=dry_run, **kwargs).run_import()


def run_enrich_artists(
    config: Config,
    dry_run: bool = False,
    refresh: bool = False,
    only: str | None = None,
    **kwargs: Any,
) -> EnrichSummary:
    return Pipeline(config, dry_run=dry_run, **kwargs).enrich_artists(refresh=refresh, only=only)


def run_enrich_venues(config: Config, dry_run: bool = False, refresh: bool = False, **kwargs: Any) -> EnrichSummary:
    return Pipeline(config, dry_run=dry_run, **kwargs).enrich_venues(refresh=refresh)
