"""
Stable-identity reconciliation of freshly derived rows with the catalog.

Each fresh row is matched to a persisted record by its stable key
(``<date>-<headlinerNormalized>``). A match is merged field by field
according to ``MERGE_POLICY``; a miss becomes a new record whose ``id``
is minted from the stable key once and never recomputed. Persisted
records that no fresh row maps to are carried forward untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from concert_binder.models import ConcertFields, PersistedRecord, SourceRecord
from concert_binder.normalize import normalize_artist, stable_key

log = logging.getLogger(__name__)


def is_present(value: Any) -> bool:
    return value is not None


def has_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


class Winner(StrEnum):
    FRESH = "fresh"
    EXISTING = "existing"


@dataclass(frozen=True)
class FieldPolicy:
    """Which side wins for one field, and what counts as "present" on the fresh side."""

    winner: Winner
    present: Callable[[Any], bool] = is_present

    def choose(self, existing: Any, fresh: Any) -> Any:
        if self.winner is Winner.FRESH and self.present(fresh):
            return fresh
        return existing


FRESH = FieldPolicy(Winner.FRESH)
FRESH_TEXT = FieldPolicy(Winner.FRESH, has_text)
EXISTING = FieldPolicy(Winner.EXISTING)

# Every derived concert field, by attribute name. Fields not listed here
# (manual additions such as attendedWith) always keep the existing value.
MERGE_POLICY: dict[str, FieldPolicy] = {
    "id": EXISTING,
    "date": FRESH,
    "headliner": FRESH_TEXT,
    "headliner_normalized": FRESH_TEXT,
    # an empty re-derived genre must not wipe a stored one
    "genre": FRESH_TEXT,
    "genre_normalized": FRESH_TEXT,
    "openers": FRESH,
    "venue": FRESH,
    "venue_normalized": FRESH,
    "city": FRESH,
    "state": FRESH,
    "city_state": FRESH,
    "reference": FRESH,
    "is_festival": FRESH,
    "year": FRESH,
    "month": FRESH,
    "day": FRESH,
    "day_of_week": FRESH,
    "decade": FRESH,
    "location": FRESH,
}


@dataclass
class ReconcileResult:
    records: list[PersistedRecord] = field(default_factory=list)
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    retained: int = 0
    dropped: int = 0

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.records),
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "retained": self.retained,
            "dropped": self.dropped,
        }


def persisted_stable_key(record: PersistedRecord) -> str:
    """Stable key of a stored record; older records may lack ``headlinerNormalized``."""
    headliner_normalized = record.headliner_normalized or normalize_artist(record.headliner)
    return stable_key(record.date, headliner_normalized)


def fresh_stable_key(row: SourceRecord) -> str | None:
    """Stable key of a fresh row, or None when the row cannot carry an identity."""
    if not row.date or not row.headliner_normalized:
        return None
    return stable_key(row.date, row.headliner_normalized)


def merge_record(existing: PersistedRecord, fresh: SourceRecord) -> PersistedRecord:
    """Overlay ``fresh`` onto ``existing`` field by field per ``MERGE_POLICY``."""
    values: dict[str, Any] = {}
    for name, policy in MERGE_POLICY.items():
        values[name] = policy.choose(getattr(existing, name), getattr(fresh, name, None))
    return PersistedRecord.model_validate({**existing.extras, **values})


def new_record(fresh: SourceRecord, identity: str) -> PersistedRecord:
    values = {name: getattr(fresh, name) for name in ConcertFields.model_fields}
    return PersistedRecord.model_validate({**values, "id": identity})


def reconcile(
    fresh_rows: Sequence[SourceRecord],
    existing: Sequence[PersistedRecord],
) -> ReconcileResult:
    """
    Merge ``fresh_rows`` into ``existing`` and return the full new catalog.

    Reconciling the same rows against the result again yields identical
    records.
    """
    result = ReconcileResult()

    by_key: dict[str, PersistedRecord] = {}
    for record in existing:
        key = persisted_stable_key(record)
        if key in by_key:
            log.warning(f"Existing records {by_key[key].id!r} and {record.id!r} share stable key {key!r}")
            continue
        by_key[key] = record

    matched_ids: set[int] = set()
    seen: dict[str, int] = {}
    records: list[PersistedRecord] = []

    for row in fresh_rows:
        key = fresh_stable_key(row)
        if key is None:
            reason = "invalid date" if not row.date else "empty headliner"
            log.warning(f"Row {row.row_number}: {reason} ({row.raw_date!r}, {row.headliner!r}), skipping")
            result.dropped += 1
            continue
        if key in seen:
            log.warning(f"Row {row.row_number}: duplicate of row {seen[key]} ({key}), skipping")
            result.dropped += 1
            continue
        seen[key] = row.row_number

        prior = by_key.get(key)
        if prior is None:
            records.append(new_record(row, identity=key))
            result.added += 1
            continue

        matched_ids.add(id(prior))
        merged = merge_record(prior, row)
        if merged.to_json() == prior.to_json():
            result.unchanged += 1
        else:
            result.updated += 1
        records.append(merged)

    for record in existing:
        if id(record) not in matched_ids:
            records.append(record)
            result.retained += 1

    records.sort(key=lambda r: (r.date, r.id))
    result.records = records

    if result.retained:
        log.info(f"Carried forward {result.retained} records with no matching row")
    return result
