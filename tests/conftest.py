"""Pytest configuration and shared fixtures for concert-binder tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from helpers import FakeSleep

from concert_binder.config import Config, PathsConfig

# =============================================================================
# Environment
# =============================================================================

CREDENTIAL_VARS = (
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "THEAUDIODB_API_KEY",
    "LASTFM_API_KEY",
    "GOOGLE_MAPS_API_KEY",
    "GOOGLE_PLACES_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep developer credentials and CONCERT_BINDER_* settings out of tests."""
    for var in CREDENTIAL_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("CONCERT_BINDER_"):
            monkeypatch.delenv(var, raising=False)


# =============================================================================
# Data directory fixtures
# =============================================================================


@pytest.fixture
def data_dir(tmp_path) -> Path:
    directory = tmp_path / "data"
    directory.mkdir()
    return directory


@pytest.fixture
def config(tmp_path, data_dir) -> Config:
    """Config rooted in a temp dir, no provider credentials."""
    return Config(paths=PathsConfig(data_dir=data_dir, cache_dir=tmp_path / "cache"))


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
