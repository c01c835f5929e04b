"""Deterministic name normalization for concert-binder.

Every derived key in the catalog (metadata document keys, the
``*Normalized`` fields on concerts, stable record keys) is produced here.
All kinds currently share one rule: lowercase, collapse each run of
characters outside ``[a-z0-9]`` into a single hyphen, strip hyphens at
both ends. The per-kind entry points exist so a kind can diverge later
without touching its callers.
"""

from __future__ import annotations

import re
from enum import StrEnum

from rapidfuzz import fuzz

CACHE_KEY_SEPARATOR = "|"

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


class NameKind(StrEnum):
    """Kinds of free-text names that get canonical keys."""

    ARTIST = "artist"
    VENUE = "venue"
    GENRE = "genre"


def _canonicalize(raw: str) -> str:
    # str.lower() is locale independent; anything that is not ASCII
    # alphanumeric after lowering becomes a separator.
    return _NON_ALNUM_RUN.sub("-", raw.lower()).strip("-")


def normalize_artist(name: str) -> str:
    """Canonical key for an artist name.

    >>> normalize_artist("The Art of Noise")
    'the-art-of-noise'
    >>> normalize_artist("Run-D.M.C.")
    'run-d-m-c'
    """
    return _canonicalize(name)


def normalize_venue(name: str) -> str:
    """Canonical key for a venue name (``"9:30 Club"`` -> ``"9-30-club"``)."""
    return _canonicalize(name)


def normalize_genre(name: str) -> str:
    """Canonical key for a genre (``"New Wave/Synth-pop"`` -> ``"new-wave-synth-pop"``)."""
    return _canonicalize(name)


_ENTRY_POINTS = {
    NameKind.ARTIST: normalize_artist,
    NameKind.VENUE: normalize_venue,
    NameKind.GENRE: normalize_genre,
}


def normalize(kind: NameKind, raw: str) -> str:
    """Dispatch to the entry point for ``kind``."""
    return _ENTRY_POINTS[NameKind(kind)](raw)


def stable_key(date: str, headliner_normalized: str) -> str:
    """Content-derived key used to find a prior record across re-imports."""
    return f"{date}-{headliner_normalized}"


def composite_key(*fields: str | None) -> str:
    """Cache key from identifying fields: lowercased, joined with ``|``."""
    return CACHE_KEY_SEPARATOR.join((field or "").strip().lower() for field in fields)


def _squash(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower())


def names_match(query: str, candidate: str) -> bool:
    """Loose plausibility check between a searched name and a provider's name.

    Both sides are reduced to bare lowercase alphanumerics; the match
    holds when either contains the other. Empty names never match.
    """
    a = _squash(query)
    b = _squash(candidate)
    if not a or not b:
        return False
    return a in b or b in a


def name_similarity(query: str, candidate: str) -> float:
    """Similarity of two names in ``[0, 1]`` on their canonical forms."""
    a = normalize_artist(query)
    b = normalize_artist(candidate)
    if not a and not b:
        return 1.0
    return fuzz.ratio(a, b) / 100.0


## Tests


def test_normalize_examples():
    assert normalize_artist("Violent Femmes") == "violent-femmes"
    assert normalize_artist("  Echo & The Bunnymen ") == "echo-the-bunnymen"
    assert normalize_venue("The Coach House") == "the-coach-house"
    assert normalize_genre("Hip-Hop") == "hip-hop"


def test_normalize_empty_and_symbols():
    assert normalize_artist("") == ""
    assert normalize_artist("!!!") == ""
    assert normalize_artist("---a---") == "a"


def test_normalize_dispatch():
    assert normalize(NameKind.VENUE, "Red Rocks Amphitheatre") == "red-rocks-amphitheatre"
    assert normalize("genre", "Alternative Rock") == "alternative-rock"  # type: ignore[arg-type]


def test_composite_key():
    assert composite_key("Red Rocks", "Morrison", "CO") == "red rocks|morrison|co"
    assert composite_key("Venue", None, " ") == "venue||"
