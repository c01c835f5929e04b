__all__ = (
    "cli",
    "Config",
    "KeyedCache",
    "CacheEntry",
    "ProviderWaterfall",
    "ProviderResult",
    "WaterfallPolicy",
    "BackupGuard",
    "DryRunSink",
    "ConsistencyValidator",
    "Issue",
    "IssueKind",
    "Severity",
    "PersistedArtifacts",
    "Pipeline",
    "run_import",
    "run_enrich_artists",
    "run_enrich_venues",
    "reconcile",
    "ReconcileResult",
    "normalize_artist",
    "normalize_venue",
    "normalize_genre",
    "SourceRecord",
    "PersistedRecord",
    "ArtistMetadataEntry",
    "VenueMetadataEntry",
    # Errors
    "ConcertBinderError",
    "ConfigurationError",
    "ProviderConfigurationError",
    "InputFileError",
    "ArtifactWriteError",
)

from concert_binder.artifacts import PersistedArtifacts
from concert_binder.backup import BackupGuard, DryRunSink
from concert_binder.cli import cli
from concert_binder.config import Config
from concert_binder.errors import (
    ArtifactWriteError,
    ConcertBinderError,
    ConfigurationError,
    InputFileError,
    ProviderConfigurationError,
)
from concert_binder.keyed_cache import CacheEntry, KeyedCache
from concert_binder.models import (
    ArtistMetadataEntry,
    PersistedRecord,
    SourceRecord,
    VenueMetadataEntry,
)
from concert_binder.normalize import normalize_artist, normalize_genre, normalize_venue
from concert_binder.pipeline import Pipeline, run_enrich_artists, run_enrich_venues, run_import
from concert_binder.reconcile import ReconcileResult, reconcile
from concert_binder.validator import ConsistencyValidator, Issue, IssueKind, Severity
from concert_binder.waterfall import ProviderResult, ProviderWaterfall, WaterfallPolicy
