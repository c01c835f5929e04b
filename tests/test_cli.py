"""CLI commands through Typer's CliRunner. No command here reaches the network."""

from __future__ import annotations

import json
import os
from datetime import timedelta

import pytest
from helpers import read_json, write_csv, write_json
from typer.testing import CliRunner

from concert_binder.cli import app
from concert_binder.keyed_cache import KeyedCache

runner = CliRunner()


@pytest.fixture
def cache_dir(tmp_path, monkeypatch):
    directory = tmp_path / "cache"
    monkeypatch.setenv("CONCERT_BINDER_PATHS_CACHE_DIR", str(directory))
    return directory


@pytest.fixture
def invoke(data_dir, cache_dir):
    def run(*args: str, **kwargs):
        return runner.invoke(app, ["--data-dir", str(data_dir), *args], **kwargs)

    return run


@pytest.fixture
def export(data_dir):
    return write_csv(
        data_dir / "concerts.csv",
        [
            '7/13/1985,Duran Duran,Thompson Twins,JFK Stadium,"Philadelphia, PA",Yes,Live Aid',
            '8/1/1986,The Cure,,Red Rocks Amphitheatre,"Morrison, CO",,',
        ],
    )


@pytest.fixture
def geocode_cache(cache_dir):
    with KeyedCache(cache_dir / "geocode-cache.json") as cache:
        cache.put("red rocks amphitheatre|morrison|co", {"lat": 39.66, "lng": -105.2}, timedelta(days=30))
        cache.put("tiny club|nowhere|zz", None)
    return cache_dir / "geocode-cache.json"


def concert(**fields) -> dict:
    return {
        "id": "1985-07-13-duran-duran",
        "date": "1985-07-13",
        "headliner": "Duran Duran",
        "headlinerNormalized": "duran-duran",
        **fields,
    }


def test_no_args_shows_help():
    result = runner.invoke(app, [])
    assert "import" in result.output
    assert "enrich" in result.output


def test_import_dry_run(invoke, export, data_dir):
    result = invoke("import", "--dry-run")

    assert result.exit_code == 0, result.output
    assert "Dry run, not writing" in result.output
    assert "Would write" in result.output
    assert '"headliner": "Duran Duran"' in result.output
    assert not (data_dir / "concerts.json").exists()


def test_import_dry_run_json_includes_planned_document(invoke, export, data_dir):
    result = invoke("-o", "json", "import", "--dry-run")

    assert result.exit_code == 0, result.output
    summary = json.loads(result.stdout)
    [planned] = summary["plannedWrites"]
    assert planned["path"] == str(data_dir / "concerts.json")
    assert [c["headliner"] for c in planned["content"]["concerts"]] == ["Duran Duran", "The Cure"]
    assert not (data_dir / "concerts.json").exists()


def test_import_json_output(invoke, export, data_dir):
    result = invoke("-o", "json", "import")

    assert result.exit_code == 0, result.output
    summary = json.loads(result.stdout)
    assert summary["rows"] == 2
    assert summary["added"] == 2
    assert summary["written"] == str(data_dir / "concerts.json")
    assert len(read_json(data_dir / "concerts.json")["concerts"]) == 2


def test_import_without_csv_exits_1(invoke):
    result = invoke("import")
    assert result.exit_code == 1


def test_validate_passes_on_consistent_artifacts(invoke, data_dir):
    write_json(data_dir / "concerts.json", {"concerts": [concert()], "metadata": {}})
    write_json(data_dir / "artists-metadata.json", {"duran-duran": {"name": "Duran Duran"}})

    result = invoke("validate")

    assert result.exit_code == 0, result.output
    assert "All keys consistent" in result.output


def test_validate_fails_on_mismatched_key(invoke, data_dir):
    write_json(data_dir / "concerts.json", {"concerts": [concert()], "metadata": {}})
    write_json(data_dir / "artists-metadata.json", {"duranduran": {"name": "Duran Duran"}})

    result = invoke("-o", "json", "validate")

    assert result.exit_code == 1
    report = json.loads(result.stdout)
    assert report["valid"] is False
    assert [e["details"]["expectedKey"] for e in report["errors"]] == ["duran-duran"]
    assert "concert-binder enrich artists    # regenerate artist metadata" in report["suggestedFixes"]


def test_enrich_forced_unconfigured_provider_exits_1(invoke, data_dir):
    write_json(data_dir / "concerts.json", {"concerts": [concert()], "metadata": {}})

    result = invoke("enrich", "artists", "--only", "spotify")

    assert result.exit_code == 1
    assert "not configured" in result.output


def test_enrich_unknown_provider_exits_1(invoke, data_dir):
    write_json(data_dir / "concerts.json", {"concerts": [concert()], "metadata": {}})

    result = invoke("enrich", "artists", "--only", "myspace")

    assert result.exit_code == 1
    assert "Unknown artists provider" in result.output


def test_enrich_venues_requires_catalog(invoke):
    result = invoke("enrich", "venues")
    assert result.exit_code == 1


def test_cache_status(invoke, geocode_cache):
    result = invoke("-o", "json", "cache", "status")

    assert result.exit_code == 0, result.output
    report = json.loads(result.stdout)
    assert set(report) == {"geocode", "artists", "places"}
    assert report["geocode"]["total"] == 2
    assert report["geocode"]["negative"] == 1
    assert report["artists"]["total"] == 0


def test_cache_purge_negative_only(invoke, geocode_cache):
    result = invoke("-o", "json", "cache", "purge", "--negative-only")

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["removed"]["geocode"] == 1
    assert list(read_json(geocode_cache)) == ["red rocks amphitheatre|morrison|co"]


def test_cache_purge_rejects_both_filters(invoke, geocode_cache):
    result = invoke("cache", "purge", "--negative-only", "--expired-only")
    assert result.exit_code == 1
    assert len(read_json(geocode_cache)) == 2


def test_cache_purge_all_asks_first(invoke, geocode_cache):
    result = invoke("cache", "purge", input="n\n")

    assert result.exit_code == 1
    assert len(read_json(geocode_cache)) == 2


def test_cache_purge_all_forced(invoke, geocode_cache):
    result = invoke("cache", "purge", "--force")

    assert result.exit_code == 0, result.output
    assert read_json(geocode_cache) == {}


def test_backups_cleanup(invoke, data_dir):
    (data_dir / "concerts.json").write_text("{}")
    for age, stamp in enumerate(["20240103T000000Z", "20240102T000000Z", "20240101T000000Z"]):
        backup = data_dir / f"concerts.json.backup.{stamp}"
        backup.write_text("{}")
        mtime = 1_700_000_000 - age * 60
        os.utime(backup, (mtime, mtime))

    result = invoke("-o", "json", "backups", "cleanup", "--keep", "1")

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"keep": 1, "deleted": {"concerts.json": 2}}
    assert (data_dir / "concerts.json.backup.20240103T000000Z").exists()
    assert not (data_dir / "concerts.json.backup.20240101T000000Z").exists()
    assert (data_dir / "concerts.json").exists()


def test_backups_cleanup_rejects_negative_keep(invoke):
    result = invoke("backups", "cleanup", "--keep", "-1")
    assert result.exit_code == 2
