"""ProviderWaterfall: cache-first resolution, retries, confidence and negative caching."""

from __future__ import annotations

from datetime import timedelta

import pytest
from freezegun import freeze_time

from concert_binder.errors import ConfigurationError, ProviderConfigurationError
from concert_binder.keyed_cache import KeyedCache
from concert_binder.models import GeoPoint, VenueQuery
from concert_binder.providers.base import (
    Failed,
    Found,
    MetadataProvider,
    NotFound,
    ProviderOutcome,
    Throttled,
)
from concert_binder.rate_limiter import RateLimiterRegistry
from concert_binder.waterfall import ProviderWaterfall, WaterfallPolicy

RED_ROCKS = VenueQuery("Red Rocks Amphitheatre", "Morrison", "CO")


class ScriptedProvider(MetadataProvider[VenueQuery, GeoPoint]):
    """Answers from a list of outcomes, repeating the last one."""

    payload_type = GeoPoint

    def __init__(
        self,
        name: str,
        *outcomes: ProviderOutcome,
        configured: bool = True,
        ttl: timedelta = timedelta(days=30),
    ):
        super().__init__(0.9, ttl)
        self.name = name
        self.outcomes = list(outcomes)
        self.configured = configured
        self.calls = 0

    @property
    def is_configured(self) -> bool:
        return self.configured

    @property
    def missing_credentials(self) -> str:
        return "" if self.configured else f"{self.name.upper()}_API_KEY"

    def lookup(self, entity: VenueQuery) -> ProviderOutcome:
        self.calls += 1
        index = min(self.calls, len(self.outcomes)) - 1
        return self.outcomes[index]


def point(lat: float = 39.66, lng: float = -105.2) -> GeoPoint:
    return GeoPoint(lat=lat, lng=lng)


@pytest.fixture
def cache(tmp_path) -> KeyedCache:
    return KeyedCache(tmp_path / "geocode-cache.json")


def make_waterfall(cache, *providers, sleep=None, policy=None) -> ProviderWaterfall[GeoPoint]:
    sleep = sleep or (lambda seconds: None)
    return ProviderWaterfall(
        "geocode",
        providers,
        cache,
        GeoPoint,
        limiters=RateLimiterRegistry({p.name: 0.0 for p in providers}, sleep=sleep),
        policy=policy,
        sleep=sleep,
    )


def test_definitive_result_stops_chain(cache):
    primary = ScriptedProvider("primary", Found(point(), 0.95))
    fallback = ScriptedProvider("fallback", Found(point(1, 1), 0.8))
    waterfall = make_waterfall(cache, primary, fallback)

    result = waterfall.resolve(RED_ROCKS)

    assert result is not None
    assert result.provider_name == "primary"
    assert result.confidence == 0.95
    assert fallback.calls == 0


def test_falls_through_not_found_and_failure(cache):
    first = ScriptedProvider("first", NotFound())
    second = ScriptedProvider("second", Failed("HTTP 500"))
    third = ScriptedProvider("third", Found(point(), 0.5))
    waterfall = make_waterfall(cache, first, second, third)

    result = waterfall.resolve(RED_ROCKS)

    assert result is not None
    assert result.provider_name == "third"
    assert waterfall.stats.failures == 1
    assert [p.calls for p in (first, second, third)] == [1, 1, 1]


def test_best_tentative_candidate_wins(cache):
    low = ScriptedProvider("low", Found(point(1, 1), 0.4, definitive=False))
    high = ScriptedProvider("high", Found(point(2, 2), 0.7, definitive=False))
    none = ScriptedProvider("none", NotFound())
    waterfall = make_waterfall(cache, low, high, none)

    result = waterfall.resolve(RED_ROCKS)

    assert result is not None
    assert result.provider_name == "high"
    assert not result.is_definitive
    assert none.calls == 1


def test_tentative_result_cached_with_tentative_ttl(cache):
    with freeze_time("2024-03-01"):
        provider = ScriptedProvider("centroid", Found(point(), 0.3, definitive=False), ttl=timedelta(days=30))
        make_waterfall(cache, provider).resolve(RED_ROCKS)
        entry = cache.get(RED_ROCKS.cache_key())
        assert entry is not None
        assert entry.expires_at is not None
        assert entry.expires_at - entry.fetched_at == timedelta(days=7)


def test_definitive_result_cached_with_provider_ttl(cache):
    provider = ScriptedProvider("geo", Found(point(), 0.95), ttl=timedelta(days=365))
    make_waterfall(cache, provider).resolve(RED_ROCKS)
    entry = cache.get(RED_ROCKS.cache_key())
    assert entry is not None
    assert entry.expires_at is not None
    assert entry.expires_at - entry.fetched_at == timedelta(days=365)


def test_cache_hit_skips_providers(cache):
    provider = ScriptedProvider("geo", Found(point(), 0.95))
    make_waterfall(cache, provider).resolve(RED_ROCKS)

    again = make_waterfall(cache, provider)
    result = again.resolve(RED_ROCKS)

    assert provider.calls == 1
    assert result is not None
    assert result.from_cache
    assert result.payload == point()
    assert again.stats.cache_hits == 1


def test_negative_result_is_permanent(cache):
    """An entity nobody knows is looked up exactly once, however long ago."""
    provider = ScriptedProvider("geo", NotFound())
    with freeze_time("2020-01-01") as frozen:
        assert make_waterfall(cache, provider).resolve(RED_ROCKS) is None
        frozen.tick(timedelta(days=3 * 365))
        assert make_waterfall(cache, provider).resolve(RED_ROCKS) is None
    assert provider.calls == 1


def test_negative_ttl_can_be_configured(cache):
    provider = ScriptedProvider("geo", NotFound())
    policy = WaterfallPolicy(negative_ttl=timedelta(days=30))
    with freeze_time("2024-01-01") as frozen:
        make_waterfall(cache, provider, policy=policy).resolve(RED_ROCKS)
        frozen.tick(timedelta(days=31))
        make_waterfall(cache, provider, policy=policy).resolve(RED_ROCKS)
    assert provider.calls == 2


def test_refresh_bypasses_cache(cache):
    provider = ScriptedProvider("geo", NotFound(), Found(point(), 0.95))
    make_waterfall(cache, provider).resolve(RED_ROCKS)

    result = make_waterfall(cache, provider).resolve(RED_ROCKS, refresh=True)

    assert result is not None
    assert provider.calls == 2
    entry = cache.get(RED_ROCKS.cache_key())
    assert entry is not None
    assert not entry.is_negative


def test_throttle_retries_then_succeeds(cache, fake_sleep):
    provider = ScriptedProvider("geo", Throttled(5.0), Throttled(None), Found(point(), 0.95))
    waterfall = make_waterfall(cache, provider, sleep=fake_sleep)

    result = waterfall.resolve(RED_ROCKS)

    assert result is not None
    assert provider.calls == 3
    # retry_after + 1s margin; the default retry_after is 2s
    assert fake_sleep.calls == [6.0, 3.0]
    assert waterfall.stats.throttled_retries == 2


def test_throttle_gives_up_after_max_retries(cache, fake_sleep):
    throttled = ScriptedProvider("geo", Throttled(1.0))
    fallback = ScriptedProvider("fallback", Found(point(), 0.8))
    waterfall = make_waterfall(cache, throttled, fallback, sleep=fake_sleep)

    result = waterfall.resolve(RED_ROCKS)

    assert throttled.calls == 4  # first attempt + 3 retries
    assert fake_sleep.calls == [2.0, 2.0, 2.0]
    assert result is not None
    assert result.provider_name == "fallback"


def test_unconfigured_provider_is_skipped(cache):
    missing = ScriptedProvider("spotify", configured=False)
    present = ScriptedProvider("lastfm", Found(point(), 0.6))
    waterfall = make_waterfall(cache, missing, present)

    result = waterfall.resolve(RED_ROCKS)

    assert result is not None
    assert result.provider_name == "lastfm"
    assert missing.calls == 0
    assert waterfall.stats.skipped_unconfigured == 1


def test_nothing_cached_when_no_provider_configured(cache):
    waterfall = make_waterfall(cache, ScriptedProvider("spotify", configured=False))
    assert waterfall.resolve(RED_ROCKS) is None
    assert cache.get(RED_ROCKS.cache_key()) is None


def test_only_forces_single_provider(cache):
    first = ScriptedProvider("first", Found(point(), 0.95))
    second = ScriptedProvider("second", Found(point(1, 1), 0.8))
    waterfall = make_waterfall(cache, first, second)

    result = waterfall.resolve(RED_ROCKS, only="second")

    assert result is not None
    assert result.provider_name == "second"
    assert first.calls == 0


def test_only_ignores_answers_cached_from_other_providers(cache):
    first = ScriptedProvider("first", Found(point(), 0.95))
    second = ScriptedProvider("second", Found(point(1, 1), 0.8))
    waterfall = make_waterfall(cache, first, second)
    waterfall.resolve(RED_ROCKS)

    result = waterfall.resolve(RED_ROCKS, only="second")

    assert result is not None
    assert result.provider_name == "second"
    assert second.calls == 1
    # the forced provider's own answer is served from cache next time
    assert waterfall.resolve(RED_ROCKS, only="second").provider_name == "second"
    assert second.calls == 1


def test_only_ignores_cached_negative(cache):
    cache.put(RED_ROCKS.cache_key(), None)
    provider = ScriptedProvider("geo", Found(point(), 0.95))

    result = make_waterfall(cache, provider).resolve(RED_ROCKS, only="geo")

    assert result is not None
    assert provider.calls == 1


def test_only_does_not_cache_negative(cache):
    provider = ScriptedProvider("geo", NotFound())
    assert make_waterfall(cache, provider).resolve(RED_ROCKS, only="geo") is None
    assert cache.get(RED_ROCKS.cache_key()) is None


def test_only_unconfigured_provider_raises(cache):
    waterfall = make_waterfall(cache, ScriptedProvider("spotify", configured=False))
    with pytest.raises(ProviderConfigurationError, match="SPOTIFY_API_KEY"):
        waterfall.resolve(RED_ROCKS, only="spotify")


def test_only_unknown_provider_raises(cache):
    waterfall = make_waterfall(cache, ScriptedProvider("geo", NotFound()))
    with pytest.raises(ConfigurationError, match="Unknown geocode provider 'musicbrainz'"):
        waterfall.resolve(RED_ROCKS, only="musicbrainz")


def test_unreadable_cache_entry_refetches(cache):
    cache.put(RED_ROCKS.cache_key(), {"provider": "geo", "confidence": 0.9, "data": {"lat": "north"}})
    provider = ScriptedProvider("geo", Found(point(), 0.95))

    result = make_waterfall(cache, provider).resolve(RED_ROCKS)

    assert result is not None
    assert not result.from_cache
    assert provider.calls == 1


def test_rate_limit_waits_between_calls(cache, fake_sleep):
    clock_value = [0.0]
    provider = ScriptedProvider("geo", NotFound())
    limiters = RateLimiterRegistry({"geo": 0.5}, sleep=fake_sleep, clock=lambda: clock_value[0])
    waterfall = ProviderWaterfall("geocode", [provider], cache, GeoPoint, limiters=limiters, sleep=fake_sleep)

    waterfall.resolve(VenueQuery("A", "Denver", "CO"))
    clock_value[0] = 0.1
    waterfall.resolve(VenueQuery("B", "Denver", "CO"))

    assert fake_sleep.calls == [pytest.approx(0.4)]
