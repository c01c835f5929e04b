"""Normalization rules and their properties."""

from __future__ import annotations

import re

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from concert_binder.normalize import (
    NameKind,
    name_similarity,
    names_match,
    normalize,
    normalize_artist,
    normalize_genre,
    normalize_venue,
    stable_key,
)

CANONICAL = re.compile(r"^([a-z0-9]+(-[a-z0-9]+)*)?$")


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("The Art of Noise", "the-art-of-noise"),
        ("Echo & the Bunnymen", "echo-the-bunnymen"),
        ("Run-D.M.C.", "run-d-m-c"),
        ("Tone-Lōc", "tone-l-c"),
        ("AC/DC", "ac-dc"),
        ("  Duran   Duran ", "duran-duran"),
        ("!!!", ""),
        ("", ""),
    ],
)
def test_normalize_artist(name: str, expected: str):
    assert normalize_artist(name) == expected


def test_normalize_venue_and_genre():
    assert normalize_venue("9:30 Club") == "9-30-club"
    assert normalize_venue("Merriweather Post Pavilion") == "merriweather-post-pavilion"
    assert normalize_genre("New Wave/Synth-pop") == "new-wave-synth-pop"
    assert normalize(NameKind.GENRE, "Post-Punk") == "post-punk"


def test_stable_key():
    assert stable_key("1985-07-13", "duran-duran") == "1985-07-13-duran-duran"


def test_names_match():
    assert names_match("Duran Duran", "DURAN DURAN")
    assert names_match("The Cure", "Cure")
    assert names_match("B-52s", "The B-52's")
    assert not names_match("Yes", "")
    assert not names_match("Madness", "Metallica")


def test_name_similarity_bounds():
    assert name_similarity("Duran Duran", "Duran Duran") == 1.0
    assert 0.0 <= name_similarity("Duran Duran", "Durango") < 1.0
    assert name_similarity("", "") == 1.0


# Properties


@given(st.text(max_size=200))
@settings(max_examples=200)
def test_normalize_idempotent(text: str):
    """Normalizing a canonical key again leaves it unchanged."""
    once = normalize_artist(text)
    assert normalize_artist(once) == once


@given(st.text(max_size=200))
@settings(max_examples=200)
def test_normalize_output_alphabet(text: str):
    """Output is lowercase ASCII alphanumerics joined by single hyphens."""
    assert CANONICAL.match(normalize_artist(text))


@given(st.text(max_size=100), st.sampled_from(list(NameKind)))
@settings(max_examples=100)
def test_all_kinds_share_one_rule(text: str, kind: NameKind):
    assert normalize(kind, text) == normalize_artist(text)


@given(st.text(max_size=60))
@settings(max_examples=100)
def test_normalize_ignores_case_and_padding(text: str):
    assert normalize_artist(f"  {text.upper()}  ") == normalize_artist(text.upper())
