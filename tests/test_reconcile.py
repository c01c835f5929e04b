"""Stable-identity reconciliation of re-imported rows with the stored catalog."""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from concert_binder.models import ConcertFields, Location, PersistedRecord, SourceRecord
from concert_binder.normalize import normalize_artist, normalize_genre
from concert_binder.reconcile import MERGE_POLICY, Winner, reconcile


def fresh(
    date: str | None,
    headliner: str,
    row_number: int = 1,
    genre: str = "",
    venue: str = "Wembley Stadium",
    **fields,
) -> SourceRecord:
    return SourceRecord(
        row_number=row_number,
        raw_date=date or "??",
        date=date,
        headliner=headliner,
        headliner_normalized=normalize_artist(headliner),
        genre=genre,
        genre_normalized=normalize_genre(genre),
        venue=venue,
        **fields,
    )


def stored(record_id: str, date: str, headliner: str, **fields) -> PersistedRecord:
    return PersistedRecord.model_validate(
        {
            "id": record_id,
            "date": date,
            "headliner": headliner,
            "headlinerNormalized": normalize_artist(headliner),
            **fields,
        }
    )


def test_manual_fields_and_id_survive_reimport():
    existing = [
        stored(
            "1985-07-13-duran-duran",
            "1985-07-13",
            "Duran Duran",
            venue="JFK Stadium",
            genre="New Wave",
            genreNormalized="new-wave",
            attendedWith=["Sam"],
        )
    ]
    rows = [fresh("1985-07-13", "Duran Duran", venue="John F. Kennedy Stadium", genre="")]

    result = reconcile(rows, existing)

    assert result.updated == 1
    [record] = result.records
    assert record.id == "1985-07-13-duran-duran"
    assert record.venue == "John F. Kennedy Stadium"
    # an empty re-derived genre does not wipe the stored one
    assert record.genre == "New Wave"
    assert record.genre_normalized == "new-wave"
    assert record.to_json()["attendedWith"] == ["Sam"]


def test_new_row_gets_id_from_stable_key():
    result = reconcile([fresh("1984-11-02", "The Smiths")], [])
    assert result.added == 1
    assert result.records[0].id == "1984-11-02-the-smiths"


def test_legacy_ids_are_never_recomputed():
    existing = [stored("concert-42", "1986-04-01", "New Order")]
    result = reconcile([fresh("1986-04-01", "New Order", venue="Hacienda")], existing)
    assert result.records[0].id == "concert-42"


def test_unmatched_records_are_retained():
    existing = [
        stored("a", "1980-01-01", "Joy Division"),
        stored("b", "1990-01-01", "Pixies"),
    ]
    result = reconcile([fresh("1990-01-01", "Pixies")], existing)

    assert result.retained == 1
    assert [r.id for r in result.records] == ["a", "b"]


def test_invalid_and_duplicate_rows_are_dropped():
    rows = [
        fresh(None, "Talking Heads", row_number=1),
        fresh("1983-06-01", "", row_number=2),
        fresh("1983-06-01", "Talking Heads", row_number=3),
        fresh("1983-06-01", "Talking Heads", row_number=4, venue="Elsewhere"),
    ]
    result = reconcile(rows, [])

    assert result.dropped == 3
    assert result.added == 1
    assert result.records[0].venue == "Wembley Stadium"


def test_existing_duplicate_keys_keep_both_records():
    existing = [
        stored("first", "1987-05-05", "The Cure"),
        stored("second", "1987-05-05", "The Cure"),
    ]
    result = reconcile([fresh("1987-05-05", "The Cure", venue="Hollywood Bowl")], existing)

    ids = {r.id: r for r in result.records}
    assert set(ids) == {"first", "second"}
    assert ids["first"].venue == "Hollywood Bowl"
    assert result.retained == 1


def test_records_without_headliner_normalized_still_match():
    existing = [PersistedRecord(id="old", date="1988-08-08", headliner="R.E.M.")]
    result = reconcile([fresh("1988-08-08", "R.E.M.")], existing)
    assert result.added == 0
    assert result.records[0].id == "old"
    assert result.records[0].headliner_normalized == "r-e-m"


def test_location_is_refreshed_but_not_erased():
    existing = [stored("x", "1991-03-03", "Depeche Mode", location={"lat": 1.0, "lng": 2.0})]

    moved = reconcile([fresh("1991-03-03", "Depeche Mode", location=Location(lat=3.0, lng=4.0))], existing)
    assert moved.records[0].location == Location(lat=3.0, lng=4.0)

    unknown = reconcile([fresh("1991-03-03", "Depeche Mode")], existing)
    assert unknown.records[0].location == Location(lat=1.0, lng=2.0)


def test_output_sorted_by_date_then_id():
    rows = [
        fresh("1999-01-01", "B", row_number=1),
        fresh("1980-01-01", "A", row_number=2),
        fresh("1999-01-01", "A", row_number=3),
    ]
    result = reconcile(rows, [])
    assert [r.id for r in result.records] == ["1980-01-01-a", "1999-01-01-a", "1999-01-01-b"]


def test_id_always_kept_from_existing():
    assert MERGE_POLICY["id"].winner is Winner.EXISTING
    assert MERGE_POLICY["headliner"].choose("Old", "  ") == "Old"
    assert MERGE_POLICY["venue"].choose("Old", None) == "Old"
    assert MERGE_POLICY["venue"].choose("Old", "") == ""


# Properties

_headliners = st.sampled_from(["Duran Duran", "The Cure", "Yaz", "Run-D.M.C.", "Echo & the Bunnymen"])
_dates = st.sampled_from(["1983-01-01", "1984-05-05", "1985-07-13"])
_venues = st.sampled_from(["Wembley Stadium", "The Ritz", ""])
_rows = st.lists(st.tuples(_dates, _headliners, _venues), max_size=12)


def _to_sources(rows) -> list[SourceRecord]:
    return [fresh(d, h, row_number=i, venue=v) for i, (d, h, v) in enumerate(rows, start=1)]


@given(_rows)
@settings(max_examples=60)
def test_reconcile_is_idempotent(rows):
    sources = _to_sources(rows)
    once = reconcile(sources, []).records
    twice = reconcile(sources, once)

    assert [r.to_json() for r in twice.records] == [r.to_json() for r in once]
    assert twice.added == 0
    assert twice.updated == 0


@given(_rows, _rows)
@settings(max_examples=60)
def test_ids_are_permanent(first_rows, second_rows):
    """Once a record has an id, no later import changes or loses it."""
    first = reconcile(_to_sources(first_rows), []).records
    second = reconcile(_to_sources(second_rows), first).records

    assert {r.id for r in first} <= {r.id for r in second}
    assert len({r.id for r in second}) == len(second)


def test_every_concert_field_has_a_merge_policy():
    assert set(ConcertFields.model_fields) <= set(MERGE_POLICY)
