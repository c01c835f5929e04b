"""Provider contract for the enrichment waterfall.

Every provider client turns raw HTTP/JSON into one of four typed
outcomes at its own boundary, so the waterfall never inspects untyped
payloads:

- ``Found``: a plausible payload, with a confidence score
- ``NotFound``: the provider answered but has nothing usable
- ``Throttled``: HTTP 429, retryable after ``retry_after`` seconds
- ``Failed``: timeout, transport error, non-2xx, malformed response
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any, Generic, TypeVar

import httpx
from pydantic import BaseModel

log = logging.getLogger(__name__)

E = TypeVar("E")
P = TypeVar("P", bound=BaseModel)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class Found(Generic[P]):
    payload: P
    confidence: float
    definitive: bool = True


@dataclass(frozen=True)
class NotFound:
    reason: str = "no match"


@dataclass(frozen=True)
class Throttled:
    retry_after: float | None = None


@dataclass(frozen=True)
class Failed:
    detail: str


ProviderOutcome = Found[Any] | NotFound | Throttled | Failed


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def classify_response(response: httpx.Response) -> Throttled | Failed | None:
    """Map a non-2xx response to an outcome; None means the response is usable."""
    if response.status_code == 429:
        return Throttled(parse_retry_after(response.headers.get("Retry-After")))
    if not response.is_success:
        return Failed(f"HTTP {response.status_code}")
    return None


def request_json(
    client: httpx.Client,
    method: str,
    url: str,
    **kwargs: Any,
) -> dict[str, Any] | Throttled | Failed:
    """Issue a request and return its JSON object, or a failure outcome."""
    try:
        response = client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        return Failed(f"{type(e).__name__}: {e}")

    if (problem := classify_response(response)) is not None:
        return problem

    try:
        data = response.json()
    except ValueError as e:
        return Failed(f"malformed JSON: {e}")
    if not isinstance(data, dict):
        return Failed(f"expected a JSON object, got {type(data).__name__}")
    return data


class MetadataProvider(ABC, Generic[E, P]):
    """
    One source in a waterfall.

    Subclasses set ``name``, ``payload_type``, a base confidence and TTL,
    and implement ``lookup``. A provider without credentials reports
    ``is_configured = False`` and is skipped.
    """

    name: str
    payload_type: type[P]

    def __init__(self, base_confidence: float, ttl: timedelta):
        if not 0.0 <= base_confidence <= 1.0:
            raise ValueError(f"base_confidence must be within [0, 1], got {base_confidence}")
        self.base_confidence = base_confidence
        self.ttl = ttl

    @property
    def is_configured(self) -> bool:
        return True

    @property
    def missing_credentials(self) -> str:
        """Name of the missing setting when not configured."""
        return ""

    @abstractmethod
    def lookup(self, entity: E) -> ProviderOutcome:
        """Query the provider for ``entity``. Must not raise for ordinary failures."""

    def close(self) -> None:
        """Release network resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, configured={self.is_configured})"


class HttpProvider(MetadataProvider[E, P]):
    """Provider backed by an ``httpx.Client`` it may own."""

    def __init__(
        self,
        base_confidence: float,
        ttl: timedelta,
        client: httpx.Client | None = None,
    ):
        super().__init__(base_confidence, ttl)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=DEFAULT_TIMEOUT)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def days(n: float) -> timedelta:
    return timedelta(days=n)


## Tests


def test_parse_retry_after_seconds():
    assert parse_retry_after("5") == 5.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None


def test_classify_response():
    assert classify_response(httpx.Response(200)) is None
    throttled = classify_response(httpx.Response(429, headers={"Retry-After": "3"}))
    assert throttled == Throttled(3.0)
    assert classify_response(httpx.Response(503)) == Failed("HTTP 503")
