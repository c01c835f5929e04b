"""
CSV ingestion: raw export rows -> ``SourceRecord``.

Parsing is tolerant. A row whose date cannot be read still becomes a
``SourceRecord`` with ``date=None`` so the merger can drop and report it
alongside the other invalid rows.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from concert_binder.errors import InputFileError
from concert_binder.models import ArtistMetadataEntry, Location, SourceRecord, VenueQuery
from concert_binder.normalize import normalize_artist, normalize_genre, normalize_venue

log = logging.getLogger(__name__)

COL_DATE = "Date"
COL_HEADLINER = "Artist Name - Headliner"
COL_OPENERS = "Artist Name - Opener(s)"
COL_VENUE = "Venue"
COL_CITY_STATE = "City/State"
COL_FESTIVAL = "Festival"
COL_REFERENCE = "Reference"

# Locale independent, Monday first like date.weekday().
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%B %d, %Y", "%b %d, %Y", "%B %d %Y")
_RANGE_SPLIT = re.compile(r"\s*[–—]\s*|\s+-\s+")
# "June 1-3, 2023"
_COMPACT_RANGE = re.compile(r"^([A-Za-z]+\.?)\s+(\d{1,2})\s*-\s*\d{1,2},?\s+(\d{4})$")
_TRAILING_YEAR = re.compile(r"(\d{4})\s*$")


@dataclass
class RawRow:
    """One CSV row, trimmed, before any derivation."""

    row_number: int
    date: str
    headliner: str
    openers: str = ""
    venue: str = ""
    city_state: str = ""
    festival: str = ""
    reference: str = ""


def read_csv(path: Path) -> list[RawRow]:
    """
    Read the concert export.

    Raises:
        InputFileError: The file does not exist or cannot be decoded.
    """
    if not path.exists():
        raise InputFileError(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise InputFileError(path, str(e)) from e

    rows: list[RawRow] = []
    reader = csv.DictReader(io.StringIO(text, newline=""))
    for index, record in enumerate(reader, start=1):
        values = {k.strip(): (v or "").strip() for k, v in record.items() if k is not None}
        if not any(values.values()):
            continue
        rows.append(
            RawRow(
                row_number=index,
                date=values.get(COL_DATE, ""),
                headliner=values.get(COL_HEADLINER, ""),
                openers=values.get(COL_OPENERS, ""),
                venue=values.get(COL_VENUE, ""),
                city_state=values.get(COL_CITY_STATE, ""),
                festival=values.get(COL_FESTIVAL, ""),
                reference=values.get(COL_REFERENCE, ""),
            )
        )
    log.info(f"Parsed {len(rows)} rows from {path}")
    return rows


def _parse_single(text: str) -> date | None:
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_date(raw: str) -> date | None:
    """
    Parse the export's date column.

    Ranges ("June 1 – June 3, 2023", "6/1/2023 - 6/3/2023", "June 1-3, 2023")
    resolve to their first day; a first part without a year borrows the
    range's trailing year.

    >>> parse_date("7/4/1986")
    datetime.date(1986, 7, 4)
    >>> parse_date("June 1 – June 3, 2023")
    datetime.date(2023, 6, 1)
    """
    text = " ".join(raw.split())
    if not text:
        return None

    if match := _COMPACT_RANGE.match(text):
        month, day, year = match.groups()
        return _parse_single(f"{month} {day}, {year}")

    parts = _RANGE_SPLIT.split(text)
    first = parts[0].strip(" ,")
    parsed = _parse_single(first)
    if parsed is None and len(parts) > 1 and (year := _TRAILING_YEAR.search(text)):
        parsed = _parse_single(f"{first}, {year.group(1)}")
    return parsed


def split_city_state(city_state: str) -> tuple[str, str]:
    """``"Morrison, CO"`` -> ``("Morrison", "CO")``; a missing state is ``""``."""
    city, _, state = city_state.partition(",")
    return city.strip(), state.strip()


def split_openers(openers: str) -> list[str]:
    return [name.strip() for name in openers.split(",") if name.strip()]


def is_festival(value: str) -> bool:
    return "yes" in value.lower()


def venue_query(row: RawRow) -> VenueQuery | None:
    city, state = split_city_state(row.city_state)
    if not (row.venue and city and state):
        return None
    return VenueQuery(venue=row.venue, city=city, state=state)


def unique_venues(rows: Iterable[RawRow]) -> dict[str, VenueQuery]:
    """Distinct venues by cache key, in first-seen order."""
    venues: dict[str, VenueQuery] = {}
    for row in rows:
        if (query := venue_query(row)) is not None:
            venues.setdefault(query.cache_key(), query)
    return venues


class GenreResolver:
    """Genre for a headliner: override file, then artist metadata, then ``""``."""

    def __init__(
        self,
        overrides: Mapping[str, str] | None = None,
        artist_metadata: Mapping[str, ArtistMetadataEntry] | None = None,
    ):
        self.overrides = dict(overrides or {})
        self.artist_metadata = dict(artist_metadata or {})

    def resolve(self, headliner_normalized: str) -> str:
        if override := self.overrides.get(headliner_normalized):
            return override
        entry = self.artist_metadata.get(headliner_normalized)
        if entry is not None and entry.genres:
            return entry.genres[0]
        return ""


def derive_record(
    row: RawRow,
    genres: GenreResolver,
    location: Location | None = None,
) -> SourceRecord:
    """Compute every derived concert field for ``row``."""
    parsed = parse_date(row.date)
    if parsed is None:
        log.warning(f"Row {row.row_number}: invalid date {row.date!r}")

    headliner_normalized = normalize_artist(row.headliner)
    genre = genres.resolve(headliner_normalized)
    city, state = split_city_state(row.city_state)

    fields: dict[str, object] = {}
    if parsed is not None:
        fields.update(
            date=parsed.isoformat(),
            year=parsed.year,
            month=parsed.month,
            day=parsed.day,
            day_of_week=WEEKDAYS[parsed.weekday()],
            decade=f"{parsed.year // 10 * 10}s",
        )

    return SourceRecord(
        row_number=row.row_number,
        raw_date=row.date,
        headliner=row.headliner,
        headliner_normalized=headliner_normalized,
        genre=genre,
        genre_normalized=normalize_genre(genre),
        openers=split_openers(row.openers),
        venue=row.venue,
        venue_normalized=normalize_venue(row.venue),
        city=city,
        state=state,
        city_state=row.city_state,
        reference=row.reference or None,
        is_festival=is_festival(row.festival),
        location=location,
        **fields,  # type: ignore[arg-type]
    )


## Tests


def test_parse_date_formats():
    assert parse_date("2023-06-15") == date(2023, 6, 15)
    assert parse_date("6/15/2023") == date(2023, 6, 15)
    assert parse_date("6/15/85") == date(1985, 6, 15)
    assert parse_date("June 15, 2023") == date(2023, 6, 15)
    assert parse_date("Sept 31, 2023") is None
    assert parse_date("") is None


def test_parse_date_ranges():
    assert parse_date("June 1 – June 3, 2023") == date(2023, 6, 1)
    assert parse_date("6/1/2023 - 6/3/2023") == date(2023, 6, 1)
    assert parse_date("June 1-3, 2023") == date(2023, 6, 1)


def test_split_city_state():
    assert split_city_state("Morrison, CO") == ("Morrison", "CO")
    assert split_city_state("London") == ("London", "")


def test_genre_resolver_order():
    resolver = GenreResolver(
        overrides={"depeche-mode": "Synth-pop"},
        artist_metadata={
            "depeche-mode": ArtistMetadataEntry(genres=["Dance"]),
            "the-cure": ArtistMetadataEntry(genres=["Post-Punk", "New Wave"]),
            "nobody": ArtistMetadataEntry(genres=[]),
        },
    )
    assert resolver.resolve("depeche-mode") == "Synth-pop"
    assert resolver.resolve("the-cure") == "Post-Punk"
    assert resolver.resolve("nobody") == ""
    assert resolver.resolve("unknown") == ""
