"""
Persisted documents: the concert catalog and the metadata maps.

Loading is strict for the catalog (a record that cannot be read would
otherwise be lost on the next write) and lenient for the optional
lookup files (overrides).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from concert_binder.errors import InputFileError
from concert_binder.models import ArtistMetadataEntry, PersistedRecord, VenueMetadataEntry

log = logging.getLogger(__name__)


def dump_json(document: Any) -> str:
    """Serialize the way every artifact is written: 2-space indent, UTF-8, trailing newline."""
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def read_json(path: Path) -> Any:
    """
    Parse a JSON artifact.

    Raises:
        InputFileError: Missing, unreadable or not JSON.
    """
    if not path.exists():
        raise InputFileError(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise InputFileError(path, str(e)) from e
    except ValueError as e:
        raise InputFileError(path, f"not valid JSON ({e})") from e


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def catalog_entries(document: Any) -> list[Any]:
    """The raw ``concerts`` list of a catalog document (a bare list is accepted)."""
    if isinstance(document, list):
        return document
    if isinstance(document, dict) and isinstance(document.get("concerts"), list):
        return document["concerts"]
    return []


def load_catalog(path: Path) -> list[PersistedRecord]:
    """
    Persisted records from ``path``; a missing catalog is empty.

    Raises:
        InputFileError: The file exists but a record cannot be read.
    """
    if not path.exists():
        log.info(f"No existing catalog at {path}, starting fresh")
        return []

    records: list[PersistedRecord] = []
    for index, raw in enumerate(catalog_entries(read_json(path))):
        try:
            records.append(PersistedRecord.model_validate(raw))
        except ValidationError as e:
            raise InputFileError(path, f"record {index} is invalid: {e.error_count()} errors") from e
    log.info(f"Loaded {len(records)} existing concerts from {path.name}")
    return records


def catalog_metadata(records: Sequence[PersistedRecord], now: datetime | None = None) -> dict[str, Any]:
    """Summary block recomputed on every write."""
    now = now or datetime.now(UTC)
    dates = sorted(r.date for r in records)
    return {
        "lastUpdated": now.isoformat().replace("+00:00", "Z"),
        "totalConcerts": len(records),
        "dateRange": {
            "earliest": dates[0] if dates else "",
            "latest": dates[-1] if dates else "",
        },
        "uniqueArtists": len({r.headliner for r in records}),
        "uniqueVenues": len({r.venue for r in records if r.venue}),
        "uniqueCities": len({r.city_state for r in records if r.city_state}),
    }


def build_catalog_document(
    records: Sequence[PersistedRecord],
    now: datetime | None = None,
) -> dict[str, Any]:
    return {
        "concerts": [r.to_json() for r in records],
        "metadata": catalog_metadata(records, now),
    }


# ---------------------------------------------------------------------------
# Metadata documents
# ---------------------------------------------------------------------------


def _entry_map(document: Any, wrapper: str) -> dict[str, Any]:
    if isinstance(document, dict) and isinstance(document.get(wrapper), dict):
        document = document[wrapper]
    if not isinstance(document, dict):
        return {}
    return document


def raw_artist_entries(document: Any) -> dict[str, Any]:
    return _entry_map(document, "artists")


def raw_venue_entries(document: Any) -> dict[str, Any]:
    return _entry_map(document, "venues")


def load_artist_metadata(path: Path) -> dict[str, ArtistMetadataEntry]:
    """Artist metadata keyed by stored key; missing file is empty."""
    if not path.exists():
        return {}
    entries: dict[str, ArtistMetadataEntry] = {}
    for key, raw in raw_artist_entries(read_json(path)).items():
        try:
            entries[key] = ArtistMetadataEntry.model_validate(raw)
        except ValidationError as e:
            raise InputFileError(path, f"entry {key!r} is invalid: {e.error_count()} errors") from e
    return entries


def load_venue_metadata(path: Path) -> dict[str, VenueMetadataEntry]:
    if not path.exists():
        return {}
    entries: dict[str, VenueMetadataEntry] = {}
    for key, raw in raw_venue_entries(read_json(path)).items():
        try:
            entries[key] = VenueMetadataEntry.model_validate(raw)
        except ValidationError as e:
            raise InputFileError(path, f"entry {key!r} is invalid: {e.error_count()} errors") from e
    return entries


def build_metadata_document(entries: dict[str, Any]) -> dict[str, Any]:
    """Flat ``key -> entry`` mapping, keys sorted for stable diffs."""
    return {
        key: entry.to_json() if hasattr(entry, "to_json") else entry
        for key, entry in sorted(entries.items())
    }


# ---------------------------------------------------------------------------
# Override tables
# ---------------------------------------------------------------------------


def load_string_map(path: Path | None, label: str) -> dict[str, str]:
    """
    A ``{key: value}`` lookup file. Missing or unreadable files give an
    empty map with a warning, since overrides are optional.

    Values may also be objects; the first string field among
    ``value``/``spotifyArtistId``/``key`` is used.
    """
    if path is None or not path.exists():
        return {}
    try:
        document = read_json(path)
    except InputFileError as e:
        log.warning(f"Could not load {label}: {e}")
        return {}
    if not isinstance(document, dict):
        log.warning(f"Ignoring {label} at {path}: expected a JSON object")
        return {}

    table: dict[str, str] = {}
    for key, value in document.items():
        if isinstance(value, dict):
            value = next(
                (value[f] for f in ("value", "spotifyArtistId", "key") if isinstance(value.get(f), str)),
                None,
            )
        if isinstance(value, str) and value:
            table[key] = value
    log.debug(f"Loaded {len(table)} {label}")
    return table


@dataclass
class PersistedArtifacts:
    """Raw documents as the validator sees them. ``None`` means the file is absent."""

    catalog: list[Any] | None = None
    artists: dict[str, Any] | None = None
    venues: dict[str, Any] | None = None
    catalog_path: Path | None = None
    artists_path: Path | None = None
    venues_path: Path | None = None

    @classmethod
    def load(cls, catalog_path: Path, artists_path: Path, venues_path: Path) -> PersistedArtifacts:
        """Read whatever exists. Unparsable documents raise ``InputFileError``."""
        return cls(
            catalog=catalog_entries(read_json(catalog_path)) if catalog_path.exists() else None,
            artists=raw_artist_entries(read_json(artists_path)) if artists_path.exists() else None,
            venues=raw_venue_entries(read_json(venues_path)) if venues_path.exists() else None,
            catalog_path=catalog_path,
            artists_path=artists_path,
            venues_path=venues_path,
        )


## Tests


def test_catalog_metadata_counts():
    records = [
        PersistedRecord(id="b", date="2001-01-02", headliner="A", venue="V1", city_state="X, CO"),
        PersistedRecord(id="a", date="1999-05-01", headliner="B", venue="V1", city_state="Y, NY"),
    ]
    meta = catalog_metadata(records, now=datetime(2024, 1, 1, tzinfo=UTC))
    assert meta["lastUpdated"] == "2024-01-01T00:00:00Z"
    assert meta["dateRange"] == {"earliest": "1999-05-01", "latest": "2001-01-02"}
    assert meta["uniqueArtists"] == 2
    assert meta["uniqueVenues"] == 1
    assert meta["uniqueCities"] == 2


def test_artist_wrapper_accepted():
    assert raw_artist_entries({"artists": {"a": {}}}) == {"a": {}}
    assert raw_artist_entries({"a": {}}) == {"a": {}}
    assert raw_artist_entries([1, 2]) == {}
