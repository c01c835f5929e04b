from __future__ import annotations

import os
import tomllib
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field

from concert_binder.waterfall import WaterfallPolicy


class PathsConfig(BaseModel):
    """Input, artifact and cache locations. Relative file names resolve against ``data_dir``."""

    data_dir: Path = Field(default=Path("public/data"))
    csv: Path = Field(default=Path("concerts.csv"))
    catalog: Path = Field(default=Path("concerts.json"))
    artists_metadata: Path = Field(default=Path("artists-metadata.json"))
    venues_metadata: Path = Field(default=Path("venues-metadata.json"))
    genre_overrides: Path = Field(default=Path("genre-overrides.json"))
    spotify_overrides: Path = Field(default=Path("spotify-overrides.json"))
    # JSON map canonical -> stored key; built-in table when unset
    artist_overrides: Path | None = Field(default=None)
    cache_dir: Path = Field(default=Path(".cache"))

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.data_dir / path

    @property
    def csv_path(self) -> Path:
        return self.resolve(self.csv)

    @property
    def catalog_path(self) -> Path:
        return self.resolve(self.catalog)

    @property
    def artists_metadata_path(self) -> Path:
        return self.resolve(self.artists_metadata)

    @property
    def venues_metadata_path(self) -> Path:
        return self.resolve(self.venues_metadata)

    @property
    def genre_overrides_path(self) -> Path:
        return self.resolve(self.genre_overrides)

    @property
    def spotify_overrides_path(self) -> Path:
        return self.resolve(self.spotify_overrides)

    @property
    def artist_overrides_path(self) -> Path | None:
        return self.resolve(self.artist_overrides) if self.artist_overrides else None


class ProvidersConfig(BaseModel):
    """Provider credentials and per-provider tuning."""

    # API credentials (read from env vars if not provided)
    spotify_client_id: str | None = Field(default=None)
    spotify_client_secret: str | None = Field(default=None)
    theaudiodb_api_key: str = Field(default="2")  # public test key
    lastfm_api_key: str | None = Field(default=None)
    google_maps_api_key: str | None = Field(default=None)
    google_places_api_key: str | None = Field(default=None)

    # Overrides keyed by provider name
    rate_intervals: dict[str, float] = Field(default_factory=dict)  # min seconds between calls
    ttl_days: dict[str, float] = Field(default_factory=dict)
    confidence: dict[str, float] = Field(default_factory=dict)

    @property
    def places_api_key(self) -> str | None:
        return self.google_places_api_key or self.google_maps_api_key

    def ttl_for(self, provider: str, default: timedelta) -> timedelta:
        if provider in self.ttl_days:
            return timedelta(days=self.ttl_days[provider])
        return default

    def confidence_for(self, provider: str, default: float) -> float:
        return self.confidence.get(provider, default)


class WaterfallConfig(BaseModel):
    """Retry and negative-caching policy."""

    max_retries: int = Field(default=3, ge=0)
    default_retry_after: float = Field(default=2.0, ge=0)  # seconds, when no Retry-After
    retry_margin: float = Field(default=1.0, ge=0)
    negative_ttl_days: float | None = Field(default=None, gt=0)  # None = permanent
    tentative_ttl_days: float = Field(default=7.0, gt=0)

    def to_policy(self) -> WaterfallPolicy:
        return WaterfallPolicy(
            max_retries=self.max_retries,
            default_retry_after=self.default_retry_after,
            retry_margin=self.retry_margin,
            negative_ttl=(
                timedelta(days=self.negative_ttl_days) if self.negative_ttl_days is not None else None
            ),
            tentative_ttl=timedelta(days=self.tentative_ttl_days),
        )


class BackupConfig(BaseModel):
    retention: int = Field(default=10, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")  # DEBUG, INFO, WARNING, ERROR
    # RichHandler already renders time and level
    format: str = Field(default="%(message)s")


class Config(BaseModel):
    """
    Main configuration for concert-binder.

    Loads from TOML file with optional environment variable overrides.
    """

    paths: PathsConfig = Field(default_factory=PathsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    waterfall: WaterfallConfig = Field(default_factory=WaterfallConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """
        Load configuration from TOML file with environment variable overrides.

        Environment variables take precedence and follow the pattern:
        CONCERT_BINDER_<SECTION>_<KEY> (e.g., CONCERT_BINDER_BACKUP_RETENTION).
        Provider credentials use their conventional names (SPOTIFY_CLIENT_ID, ...).

        All values are gathered into a single dictionary first, then validated
        by Pydantic to ensure consistent type checking and coercion.
        """
        config_dict: dict[str, object] = {}

        if config_path and config_path.exists():
            config_dict = tomllib.loads(config_path.read_text())

        config_dict = cls._merge_env_overrides(config_dict)
        return cls.model_validate(config_dict)

    @staticmethod
    def _section(config_dict: dict[str, object], name: str) -> dict[str, object]:
        section = config_dict.setdefault(name, {})
        if not isinstance(section, dict):
            section = {}
            config_dict[name] = section
        return section

    @classmethod
    def _merge_env_overrides(cls, config_dict: dict[str, object]) -> dict[str, object]:
        """
        Merge environment variable overrides into config dictionary.

        Returns a new dictionary with env vars applied, ready for Pydantic validation.
        """
        env_prefix = "CONCERT_BINDER_"

        paths = cls._section(config_dict, "paths")
        if data_dir := os.getenv(f"{env_prefix}PATHS_DATA_DIR"):
            paths["data_dir"] = data_dir
        if csv := os.getenv(f"{env_prefix}PATHS_CSV"):
            paths["csv"] = csv
        if cache_dir := os.getenv(f"{env_prefix}PATHS_CACHE_DIR"):
            paths["cache_dir"] = cache_dir
        if artist_overrides := os.getenv(f"{env_prefix}PATHS_ARTIST_OVERRIDES"):
            paths["artist_overrides"] = artist_overrides

        # API credentials from env
        providers = cls._section(config_dict, "providers")
        if spotify_id := os.getenv("SPOTIFY_CLIENT_ID"):
            providers["spotify_client_id"] = spotify_id
        if spotify_secret := os.getenv("SPOTIFY_CLIENT_SECRET"):
            providers["spotify_client_secret"] = spotify_secret
        if audiodb_key := os.getenv("THEAUDIODB_API_KEY"):
            providers["theaudiodb_api_key"] = audiodb_key
        if lastfm_key := os.getenv("LASTFM_API_KEY"):
            providers["lastfm_api_key"] = lastfm_key
        if maps_key := os.getenv("GOOGLE_MAPS_API_KEY"):
            providers["google_maps_api_key"] = maps_key
        if places_key := os.getenv("GOOGLE_PLACES_API_KEY"):
            providers["google_places_api_key"] = places_key

        waterfall = cls._section(config_dict, "waterfall")
        if max_retries := os.getenv(f"{env_prefix}WATERFALL_MAX_RETRIES"):
            waterfall["max_retries"] = max_retries
        if retry_after := os.getenv(f"{env_prefix}WATERFALL_DEFAULT_RETRY_AFTER"):
            waterfall["default_retry_after"] = retry_after
        if negative_ttl := os.getenv(f"{env_prefix}WATERFALL_NEGATIVE_TTL_DAYS"):
            waterfall["negative_ttl_days"] = negative_ttl
        if tentative_ttl := os.getenv(f"{env_prefix}WATERFALL_TENTATIVE_TTL_DAYS"):
            waterfall["tentative_ttl_days"] = tentative_ttl

        backup = cls._section(config_dict, "backup")
        if retention := os.getenv(f"{env_prefix}BACKUP_RETENTION"):
            backup["retention"] = retention

        # Logging config
        logging_config = cls._section(config_dict, "logging")
        if log_level := os.getenv(f"{env_prefix}LOGGING_LEVEL"):
            logging_config["level"] = log_level
        if log_format := os.getenv(f"{env_prefix}LOGGING_FORMAT"):
            logging_config["format"] = log_format

        return config_dict


## Tests


def _clear_credentials(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    for var in (
        "SPOTIFY_CLIENT_ID",
        "SPOTIFY_CLIENT_SECRET",
        "THEAUDIODB_API_KEY",
        "LASTFM_API_KEY",
        "GOOGLE_MAPS_API_KEY",
        "GOOGLE_PLACES_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)  # pyright: ignore[reportUnknownMemberType]


def test_config_defaults():
    config = Config()
    assert config.paths.catalog_path == Path("public/data/concerts.json")
    assert config.providers.theaudiodb_api_key == "2"
    assert config.waterfall.max_retries == 3
    assert config.waterfall.negative_ttl_days is None
    assert config.backup.retention == 10


def test_config_from_dict():
    config = Config.model_validate(
        {
            "paths": {"data_dir": "/srv/data", "csv": "/imports/export.csv"},
            "waterfall": {"negative_ttl_days": 180},
        }
    )
    assert config.paths.catalog_path == Path("/srv/data/concerts.json")
    assert config.paths.csv_path == Path("/imports/export.csv")
    assert config.waterfall.to_policy().negative_ttl == timedelta(days=180)


def test_config_env_overrides(
    monkeypatch,  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
):
    _clear_credentials(monkeypatch)
    monkeypatch.setenv("CONCERT_BINDER_BACKUP_RETENTION", "4")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("CONCERT_BINDER_PATHS_DATA_DIR", "/custom/data")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "maps-key")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()
    assert config.backup.retention == 4
    assert config.paths.data_dir == Path("/custom/data")
    assert config.providers.places_api_key == "maps-key"


def test_config_load_nonexistent_file(
    monkeypatch,  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
):
    _clear_credentials(monkeypatch)
    config = Config.load(Path("/nonexistent/config.toml"))
    assert config.backup.retention == 10
    assert config.providers.spotify_client_id is None
