"""Per-provider rate limiting for concert-binder.

The pipeline is strictly sequential, so a provider's budget is expressed
as a minimum interval between two calls to it. Before each request the
waterfall waits for the provider's slot. The only other sleeps are the
backoff after a 429 and the pause between the two requests of a Places
details lookup.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

Sleep = Callable[[float], None]
Clock = Callable[[], float]


@dataclass
class IntervalLimiter:
    """Enforces ``min_interval`` seconds between consecutive calls.

    The first call never waits. ``sleep`` and ``clock`` are injectable so
    tests can run without real delays.
    """

    min_interval: float
    sleep: Sleep = field(default=time.sleep, repr=False)
    clock: Clock = field(default=time.monotonic, repr=False)
    _last_call: float | None = field(default=None, init=False, repr=False)

    def wait_time(self) -> float:
        """Seconds until the next call is allowed (0 if allowed now)."""
        if self._last_call is None or self.min_interval <= 0:
            return 0.0
        elapsed = self.clock() - self._last_call
        return max(0.0, self.min_interval - elapsed)

    def wait(self) -> float:
        """Block until the slot opens, claim it, and return the time slept."""
        delay = self.wait_time()
        if delay > 0:
            self.sleep(delay)
        self._last_call = self.clock()
        return delay


class RateLimiterRegistry:
    """One ``IntervalLimiter`` per provider name, owned by a single run."""

    # Minimum seconds between calls per provider.
    DEFAULT_INTERVALS: dict[str, float] = {
        "spotify": 0.35,  # ~3 req/sec
        "theaudiodb": 0.5,  # 2 req/sec on the free key
        "lastfm": 0.25,
        "google_geocoding": 0.02,  # 50 req/sec quota
        "google_places": 0.1,
        "google_places_details": 0.1,
        "city_centroid": 0.0,
    }

    def __init__(
        self,
        intervals: dict[str, float] | None = None,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ):
        self._intervals = {**self.DEFAULT_INTERVALS, **(intervals or {})}
        self._sleep = sleep
        self._clock = clock
        self._limiters: dict[str, IntervalLimiter] = {}

    def get_limiter(self, provider: str) -> IntervalLimiter:
        if provider not in self._limiters:
            self._limiters[provider] = IntervalLimiter(
                min_interval=self._intervals.get(provider, 0.5),
                sleep=self._sleep,
                clock=self._clock,
            )
        return self._limiters[provider]

    def configure(self, provider: str, min_interval: float) -> None:
        self._intervals[provider] = min_interval
        self._limiters.pop(provider, None)

    def wait(self, provider: str) -> float:
        return self.get_limiter(provider).wait()

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {"min_interval": limiter.min_interval, "wait_time": limiter.wait_time()}
            for name, limiter in self._limiters.items()
        }


## Tests


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.slept: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.now += seconds


def test_interval_limiter_first_call_free():
    clock = _FakeClock()
    limiter = IntervalLimiter(min_interval=0.5, sleep=clock.sleep, clock=clock)
    assert limiter.wait() == 0.0
    assert clock.slept == []


def test_interval_limiter_waits_remaining_interval():
    clock = _FakeClock()
    limiter = IntervalLimiter(min_interval=0.5, sleep=clock.sleep, clock=clock)
    limiter.wait()
    clock.now += 0.2
    slept = limiter.wait()
    assert abs(slept - 0.3) < 1e-9
    assert len(clock.slept) == 1


def test_interval_limiter_no_wait_after_interval():
    clock = _FakeClock()
    limiter = IntervalLimiter(min_interval=0.5, sleep=clock.sleep, clock=clock)
    limiter.wait()
    clock.now += 1.0
    assert limiter.wait() == 0.0


def test_registry_defaults_and_configure():
    clock = _FakeClock()
    registry = RateLimiterRegistry(sleep=clock.sleep, clock=clock)
    assert registry.get_limiter("theaudiodb").min_interval == 0.5
    assert registry.get_limiter("unknown").min_interval == 0.5

    registry.configure("theaudiodb", 2.0)
    assert registry.get_limiter("theaudiodb").min_interval == 2.0
    assert "theaudiodb" in registry.status()
