"""
Cross-artifact consistency checks.

Every stored key must equal the canonical normalization of its display
name, modulo an explicit override table, and no two stored keys may
collapse to the same canonical key. Denormalized ``*Normalized`` copies
in the catalog are recomputed to catch drift after a rule change.

Issues are returned as data; the CLI decides the exit code.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from concert_binder.artifacts import PersistedArtifacts
from concert_binder.normalize import normalize_artist, normalize_genre, normalize_venue

log = logging.getLogger(__name__)

# Canonical key -> stored key, where the canonical form is deliberately not used.
DEFAULT_ARTIST_OVERRIDES: dict[str, str] = {
    # drop a leading "The"
    "the-beach-boys": "beach-boys",
    "art-of-noise": "the-art-of-noise",
    # keep "and" for "&"
    "echo-the-bunnymen": "echo-and-the-bunnymen",
    "peter-hook-the-light": "peter-hook-and-the-light",
    # The Beat (UK) vs The Beat (US)
    "the-beat": "the-english-beat",
    # recognizable abbreviations
    "run-d-m-c": "run-dmc",
    "tone-l-c": "tone-loc",
    # US name
    "yazoo": "yaz",
}


class IssueKind(StrEnum):
    DUPLICATE = "duplicate"
    MISMATCH = "mismatch"
    MISSING = "missing"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class Issue:
    kind: IssueKind
    severity: Severity
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "severity": str(self.severity),
            "message": self.message,
            "details": self.details,
        }


def _error(kind: IssueKind, message: str, **details: Any) -> Issue:
    return Issue(kind, Severity.ERROR, message, details)


def _warning(kind: IssueKind, message: str, **details: Any) -> Issue:
    return Issue(kind, Severity.WARNING, message, details)


def expected_key(canonical: str, overrides: Mapping[str, str]) -> str:
    return overrides.get(canonical, canonical)


def validate_metadata_keys(
    entries: Mapping[str, Any],
    label: str,
    normalize: Callable[[str], str],
    overrides: Mapping[str, str] | None = None,
) -> list[Issue]:
    """Key consistency and duplicates for one ``key -> entry`` document."""
    overrides = overrides or {}
    issues: list[Issue] = []
    keys_by_canonical: dict[str, list[str]] = defaultdict(list)

    for key, entry in entries.items():
        name = entry.get("name") if isinstance(entry, dict) else None
        if not isinstance(name, str) or not name:
            issues.append(_error(IssueKind.MISSING, f"{label} entry missing name field", key=key))
            continue

        canonical = normalize(name)
        keys_by_canonical[canonical].append(key)
        expected = expected_key(canonical, overrides)
        if key != expected:
            issues.append(
                _error(
                    IssueKind.MISMATCH,
                    f'{label} key "{key}" doesn\'t match canonical normalization "{canonical}"',
                    name=name,
                    actualKey=key,
                    expectedKey=expected,
                )
            )

    for canonical, keys in keys_by_canonical.items():
        if len(keys) > 1:
            name = entries[keys[0]].get("name")
            issues.append(
                _error(
                    IssueKind.DUPLICATE,
                    f'{label} "{name}" has {len(keys)} duplicate entries',
                    name=name,
                    canonicalKey=canonical,
                    duplicateKeys=keys,
                )
            )
    return issues


# (stored field, source field, normalizer, checked even when the field is absent)
_DENORMALIZED_FIELDS: tuple[tuple[str, str, Callable[[str], str], bool], ...] = (
    ("headlinerNormalized", "headliner", normalize_artist, True),
    ("venueNormalized", "venue", normalize_venue, False),
    ("genreNormalized", "genre", normalize_genre, False),
)


def validate_catalog(concerts: Iterable[Any]) -> list[Issue]:
    """Recompute denormalized keys and look for duplicate record ids."""
    issues: list[Issue] = []
    ids: Counter[str] = Counter()

    for index, concert in enumerate(concerts):
        if not isinstance(concert, dict):
            issues.append(_error(IssueKind.MISSING, f"Concert #{index} is not an object", index=index))
            continue
        concert_id = concert.get("id")
        if not concert_id:
            issues.append(_error(IssueKind.MISSING, f"Concert #{index} has no id", index=index))
        else:
            ids[str(concert_id)] += 1

        for stored_field, source_field, normalize, required in _DENORMALIZED_FIELDS:
            if not required and stored_field not in concert:
                continue
            actual = concert.get(stored_field)
            expected = normalize(str(concert.get(source_field) or ""))
            if actual != expected:
                issues.append(
                    _error(
                        IssueKind.MISMATCH,
                        f"Concert {concert_id} {source_field} normalization mismatch",
                        concertId=concert_id,
                        field=stored_field,
                        value=concert.get(source_field),
                        actual=actual,
                        expected=expected,
                    )
                )

    for concert_id, count in ids.items():
        if count > 1:
            issues.append(
                _error(IssueKind.DUPLICATE, f"Concert id {concert_id} used {count} times", concertId=concert_id)
            )
    return issues


def check_data_quality(
    concerts: Iterable[Any],
    artists: Mapping[str, Any] | None,
    overrides: Mapping[str, str],
) -> list[Issue]:
    """Non-blocking gaps: no genre, no location, no artist metadata."""
    issues: list[Issue] = []
    headliners: dict[str, str] = {}

    for concert in concerts:
        if not isinstance(concert, dict):
            continue
        label = f"{concert.get('headliner')} ({concert.get('date')})"
        if not str(concert.get("genre") or "").strip():
            issues.append(_warning(IssueKind.MISSING, f"No genre for {label}", concertId=concert.get("id")))
        if not isinstance(concert.get("location"), dict):
            issues.append(
                _warning(
                    IssueKind.MISSING,
                    f"No location for {label} at {concert.get('venue')}, {concert.get('cityState')}",
                    concertId=concert.get("id"),
                )
            )
        if headliner := concert.get("headliner"):
            headliners.setdefault(normalize_artist(str(headliner)), str(headliner))

    if artists is not None:
        for canonical, headliner in sorted(headliners.items()):
            if expected_key(canonical, overrides) not in artists:
                issues.append(
                    _warning(
                        IssueKind.MISSING,
                        f"No artist metadata for {headliner}",
                        artist=headliner,
                        expectedKey=expected_key(canonical, overrides),
                    )
                )
    return issues


class ConsistencyValidator:
    """Audits persisted artifacts against the normalization rule."""

    def __init__(self, artist_overrides: Mapping[str, str] | None = None, data_quality: bool = True):
        self.artist_overrides = dict(
            DEFAULT_ARTIST_OVERRIDES if artist_overrides is None else artist_overrides
        )
        self.data_quality = data_quality

    def validate(self, artifacts: PersistedArtifacts) -> list[Issue]:
        """All issues found; an empty list means every check passed."""
        issues: list[Issue] = []

        if artifacts.artists is None:
            issues.append(
                _error(IssueKind.MISSING, "artists-metadata.json not found", path=str(artifacts.artists_path))
            )
        else:
            issues += validate_metadata_keys(
                artifacts.artists, "Artist", normalize_artist, self.artist_overrides
            )

        if artifacts.venues is not None:
            issues += validate_metadata_keys(artifacts.venues, "Venue", normalize_venue)

        if artifacts.catalog is None:
            issues.append(
                _error(IssueKind.MISSING, "concerts.json not found", path=str(artifacts.catalog_path))
            )
        else:
            issues += validate_catalog(artifacts.catalog)
            if self.data_quality:
                issues += check_data_quality(artifacts.catalog, artifacts.artists, self.artist_overrides)

        errors = sum(1 for i in issues if i.is_error)
        log.info(f"Validation finished: {errors} errors, {len(issues) - errors} warnings")
        return issues


def validate(
    artifacts: PersistedArtifacts,
    artist_overrides: Mapping[str, str] | None = None,
) -> list[Issue]:
    return ConsistencyValidator(artist_overrides).validate(artifacts)


def suggested_fixes(issues: Iterable[Issue]) -> list[str]:
    """Remediation commands for the kinds of issues present."""
    issues = list(issues)
    fixes: list[str] = []
    messages = " ".join(i.message for i in issues)

    if any(i.kind is IssueKind.DUPLICATE and "Concert id" not in i.message for i in issues):
        fixes.append("Merge duplicate metadata entries by hand, keeping the expected key")
    if any(i.kind is IssueKind.MISMATCH and i.message.startswith("Concert") for i in issues):
        fixes.append("concert-binder import            # regenerate concerts.json")
    if any(i.kind is IssueKind.MISMATCH and i.message.startswith("Artist") for i in issues):
        fixes.append("concert-binder enrich artists    # regenerate artist metadata")
        fixes.append("or add the key to the artist overrides file if the difference is intended")
    if any(i.kind is IssueKind.MISMATCH and i.message.startswith("Venue") for i in issues):
        fixes.append("concert-binder enrich venues     # regenerate venue metadata")
    if "artists-metadata.json not found" in messages or "No artist metadata" in messages:
        fixes.append("concert-binder enrich artists")
    if "concerts.json not found" in messages:
        fixes.append("concert-binder import")
    if "No location" in messages:
        fixes.append("concert-binder cache purge --negative-only && concert-binder import")
    return list(dict.fromkeys(fixes))


## Tests


def test_validate_art_of_noise_override():
    artifacts = PersistedArtifacts(
        catalog=[],
        artists={"the-art-of-noise": {"name": "The Art of Noise"}},
    )
    assert validate(artifacts) == []


def test_validate_override_key_accepted():
    artifacts = PersistedArtifacts(catalog=[], artists={"yaz": {"name": "Yazoo"}})
    assert validate(artifacts) == []


def test_validate_mismatch_and_duplicate():
    artifacts = PersistedArtifacts(
        catalog=[],
        artists={
            "duran-duran": {"name": "Duran Duran"},
            "duranduran": {"name": "Duran  Duran"},
        },
    )
    kinds = sorted(i.kind for i in validate(artifacts))
    assert kinds == [IssueKind.DUPLICATE, IssueKind.MISMATCH]
