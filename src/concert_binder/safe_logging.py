"""Secret-safe logging utilities for concert-binder.

Provider requests carry API keys in query strings (Google, Last.fm,
TheAudioDB path segment) and bearer tokens in headers; httpx logs full
URLs at INFO/DEBUG. Everything that reaches a handler goes through
``SafeLogFormatter``, which masks those values.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

# Config keys whose values are credentials: exact names or name suffixes
SECRET_KEYS = ("authorization", "access_token", "token")
SECRET_SUFFIXES = ("_api_key", "_client_id", "_client_secret", "_secret", "_token")

# Regex patterns for secrets embedded in messages
PATTERNS = {
    # ?key=...&api_key=...  (Google, Last.fm)
    "query_key": re.compile(r"([?&](?:key|api_key|apikey|access_token)=)[^&\s\"']+", re.I),
    "bearer": re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.I),
    "basic": re.compile(r"(Basic\s+)[A-Za-z0-9+/=]+", re.I),
    # https://www.theaudiodb.com/api/v1/json/<key>/search.php
    "audiodb_path": re.compile(r"(/api/v1/json/)[^/\s]+(/)"),
}


def mask(secret: str, keep: int = 4) -> str:
    """``"AIzaSyD..."`` -> ``"AIza***"``; short values are hidden entirely."""
    return f"{secret[:keep]}***" if len(secret) > keep else "***"


def is_secret_key(name: str) -> bool:
    name = name.lower()
    return name in SECRET_KEYS or name.endswith(SECRET_SUFFIXES)


def redact_config(data: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of a config dump with every credential masked, for debug logging."""
    redacted: dict[str, Any] = {}
    for name, value in data.items():
        if isinstance(value, Mapping):
            redacted[name] = redact_config(value)
        elif isinstance(value, str) and value and is_secret_key(name):
            redacted[name] = mask(value)
        else:
            redacted[name] = value
    return redacted


def sanitize_message(message: str) -> str:
    """Mask API keys and tokens embedded in a log message."""
    result = PATTERNS["query_key"].sub(r"\1***", message)
    result = PATTERNS["bearer"].sub(r"\1***", result)
    result = PATTERNS["basic"].sub(r"\1***", result)
    result = PATTERNS["audiodb_path"].sub(r"\1***\2", result)
    return result


class SafeLogFormatter(logging.Formatter):
    """Formats the record, then masks secrets in the finished line."""

    def format(self, record: logging.LogRecord) -> str:
        # httpx logs the URL object as an argument, so mask after interpolation
        return sanitize_message(super().format(record))


def configure_rich_logging(
    level: int = logging.WARNING,
    format_string: str = "%(message)s",
    show_time: bool = True,
    show_path: bool = False,
) -> Console:
    """Route all logging through a Rich handler on stderr with secret masking.

    Replaces handlers installed by a previous call so repeated CLI
    invocations in one process do not duplicate output. Returns the
    console so the CLI can share it for its own output.
    """
    console = Console(stderr=True)
    handler = RichHandler(
        console=console,
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(SafeLogFormatter(format_string))

    root = logging.getLogger()
    for installed in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(installed)
    root.setLevel(level)
    root.addHandler(handler)
    return console


## Tests


def test_mask():
    assert mask("AIzaSyD-example") == "AIza***"
    assert mask("abc") == "***"


def test_redact_config():
    dump = {
        "providers": {
            "spotify_client_secret": "very-secret",
            "lastfm_api_key": "abcdef123",
            "google_maps_api_key": None,
            "rate_intervals": {"spotify": 0.1},
        },
        "paths": {"data_dir": "public/data"},
    }
    redacted = redact_config(dump)
    assert redacted["providers"]["spotify_client_secret"] == "very***"
    assert redacted["providers"]["lastfm_api_key"] == "abcd***"
    assert redacted["providers"]["google_maps_api_key"] is None
    assert redacted["providers"]["rate_intervals"] == {"spotify": 0.1}
    assert redacted["paths"] == {"data_dir": "public/data"}


def test_sanitize_message_masks_keys():
    msg = 'HTTP Request: GET https://maps.googleapis.com/maps/api/geocode/json?address=Red+Rocks&key=AIzaSECRET "HTTP/1.1 200 OK"'
    sanitized = sanitize_message(msg)
    assert "AIzaSECRET" not in sanitized
    assert "address=Red+Rocks" in sanitized
    assert sanitize_message("Authorization: Bearer abc.def") == "Authorization: Bearer ***"
    assert "123key" not in sanitize_message("https://www.theaudiodb.com/api/v1/json/123key/search.php?s=X")


def test_formatter_masks_interpolated_args():
    record = logging.makeLogRecord(
        {
            "name": "httpx",
            "levelno": logging.INFO,
            "msg": "HTTP Request: %s %s",
            "args": ("GET", "https://ws.audioscrobbler.com/2.0/?method=artist.getinfo&api_key=LASTSECRET"),
        }
    )
    formatted = SafeLogFormatter("%(message)s").format(record)
    assert "LASTSECRET" not in formatted
    assert "method=artist.getinfo" in formatted
