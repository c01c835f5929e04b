"""
Cache-first provider waterfall.

Resolves one entity (an artist or a venue) by trying providers in
priority order:

1. A fresh cache entry answers immediately, positive or negative.
2. Otherwise each configured provider is called after waiting for its
   rate-limit slot. A 429 is retried after ``retry_after + margin``
   seconds, up to ``max_retries`` times, before moving on.
3. A definitive ``Found`` stops the waterfall. A tentative one is kept
   as a candidate while later providers are tried; the best candidate
   wins when nothing definitive turns up.
4. The result is cached with the provider's TTL (definitive), the
   tentative TTL (candidate), or as a negative entry.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from concert_binder.errors import ConfigurationError, ProviderConfigurationError
from concert_binder.keyed_cache import KeyedCache
from concert_binder.providers.base import Failed, Found, MetadataProvider, NotFound, Throttled
from concert_binder.rate_limiter import RateLimiterRegistry

log = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_AFTER = 2.0
RETRY_MARGIN = 1.0
DEFAULT_TENTATIVE_TTL = timedelta(days=7)


@dataclass
class ProviderResult(Generic[P]):
    """An accepted answer for one entity."""

    provider_name: str
    confidence: float
    payload: P
    is_definitive: bool = True
    from_cache: bool = False

    def to_cache(self) -> dict[str, Any]:
        return {
            "provider": self.provider_name,
            "confidence": self.confidence,
            "definitive": self.is_definitive,
            "data": self.payload.model_dump(by_alias=True, exclude_none=True, mode="json"),
        }

    @classmethod
    def decode(cls, data: dict[str, Any], payload_type: type[P]) -> ProviderResult[P]:
        return cls(
            provider_name=str(data["provider"]),
            confidence=float(data["confidence"]),
            payload=payload_type.model_validate(data["data"]),
            is_definitive=bool(data.get("definitive", True)),
            from_cache=True,
        )


@dataclass
class WaterfallPolicy:
    """Retry and caching knobs shared by all waterfalls of a run."""

    max_retries: int = DEFAULT_MAX_RETRIES
    default_retry_after: float = DEFAULT_RETRY_AFTER
    retry_margin: float = RETRY_MARGIN
    # None keeps "nobody has this" forever; purge negatives to re-fetch.
    negative_ttl: timedelta | None = None
    tentative_ttl: timedelta = DEFAULT_TENTATIVE_TTL


@dataclass
class WaterfallStats:
    """Counters for one run of a waterfall."""

    resolved: int = 0
    cache_hits: int = 0
    lookups: int = 0
    found: int = 0
    not_found: int = 0
    throttled_retries: int = 0
    failures: int = 0
    skipped_unconfigured: int = 0
    per_provider: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProviderWaterfall(Generic[P]):
    """
    Ordered fallback over ``providers`` for one entity type.

    The cache and rate limiters are owned by the caller and passed in,
    so a run (or a test) gets isolated state.
    """

    def __init__(
        self,
        name: str,
        providers: Sequence[MetadataProvider[Any, P]],
        cache: KeyedCache,
        payload_type: type[P],
        limiters: RateLimiterRegistry | None = None,
        policy: WaterfallPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.name = name
        self.providers = list(providers)
        self.cache = cache
        self.payload_type = payload_type
        self.limiters = limiters or RateLimiterRegistry(sleep=sleep)
        self.policy = policy or WaterfallPolicy()
        self.sleep = sleep
        self.stats = WaterfallStats()

    @property
    def configured_providers(self) -> list[str]:
        return [p.name for p in self.providers if p.is_configured]

    def provider(self, name: str) -> MetadataProvider[Any, P]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        known = ", ".join(p.name for p in self.providers)
        raise ConfigurationError(f"Unknown {self.name} provider '{name}' (known: {known})")

    def cached(self, entity: Any) -> tuple[bool, ProviderResult[P] | None]:
        """
        Fresh cache answer for ``entity``.

        Returns ``(hit, result)``; a hit with ``result=None`` is a cached
        negative.
        """
        key = entity.cache_key()
        entry = self.cache.get(key)
        if entry is None or self.cache.is_expired(entry):
            return False, None
        if entry.payload is None:
            return True, None
        try:
            return True, ProviderResult.decode(entry.payload, self.payload_type)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            log.warning(f"{self.name}: unreadable cache entry {key!r} ({e}), refetching")
            return False, None

    def resolve(
        self,
        entity: Any,
        *,
        refresh: bool = False,
        only: str | None = None,
    ) -> ProviderResult[P] | None:
        """
        Resolve ``entity`` through the cache and the provider chain.

        Absence is a regular return value. Only forcing an unconfigured
        provider with ``only`` raises.

        Raises:
            ProviderConfigurationError: ``only`` names an unconfigured provider.
            ConfigurationError: ``only`` names an unknown provider.
        """
        if only is not None:
            forced = self.provider(only)
            if not forced.is_configured:
                raise ProviderConfigurationError(forced.name, forced.missing_credentials)
            chain = [forced]
        else:
            chain = self.providers

        self.stats.resolved += 1
        label = entity.display_name

        if not refresh:
            hit, result = self.cached(entity)
            # a forced provider only accepts its own cached answers
            if hit and only is not None:
                hit = result is not None and result.provider_name == chain[0].name
            if hit:
                self.stats.cache_hits += 1
                log.debug(f"{self.name}: cache hit for {label!r}")
                return result

        best: ProviderResult[P] | None = None
        attempted = False

        for provider in chain:
            if not provider.is_configured:
                self.stats.skipped_unconfigured += 1
                log.debug(f"  {provider.name}: skipped, missing {provider.missing_credentials}")
                continue

            attempted = True
            outcome = self._attempt(provider, entity)

            match outcome:
                case Found(payload=payload, confidence=confidence, definitive=definitive):
                    candidate = ProviderResult(
                        provider_name=provider.name,
                        confidence=confidence,
                        payload=payload,
                        is_definitive=definitive,
                    )
                    if definitive:
                        log.info(f"  {provider.name}: found {label!r} ({confidence:.2f})")
                        best = candidate
                        break
                    log.info(f"  {provider.name}: tentative match for {label!r} ({confidence:.2f})")
                    if best is None or candidate.confidence > best.confidence:
                        best = candidate
                case NotFound(reason=reason):
                    log.info(f"  {provider.name}: not found ({reason})")
                case Throttled():
                    self.stats.failures += 1
                    log.warning(f"  {provider.name}: still throttled after {self.policy.max_retries} retries")
                case Failed(detail=detail):
                    self.stats.failures += 1
                    log.warning(f"  {provider.name}: failed ({detail})")

        if not attempted:
            log.warning(f"{self.name}: no configured provider for {label!r}, nothing cached")
            return None

        key = entity.cache_key()
        if best is None:
            self.stats.not_found += 1
            if only is None:
                self.cache.put(key, None, self.policy.negative_ttl)
            log.info(f"{self.name}: no result for {label!r}")
            return None

        self.stats.found += 1
        self.stats.per_provider[best.provider_name] = self.stats.per_provider.get(best.provider_name, 0) + 1
        ttl = self.provider(best.provider_name).ttl if best.is_definitive else self.policy.tentative_ttl
        self.cache.put(key, best.to_cache(), ttl)
        return best

    def _attempt(self, provider: MetadataProvider[Any, P], entity: Any) -> Any:
        """Call ``provider`` with rate limiting and bounded 429 retries."""
        retries = 0
        while True:
            self.limiters.wait(provider.name)
            self.stats.lookups += 1
            outcome = provider.lookup(entity)
            if not isinstance(outcome, Throttled) or retries >= self.policy.max_retries:
                return outcome

            retries += 1
            self.stats.throttled_retries += 1
            retry_after = (
                outcome.retry_after if outcome.retry_after is not None else self.policy.default_retry_after
            )
            delay = retry_after + self.policy.retry_margin
            log.warning(
                f"  {provider.name}: rate limited, retry {retries}/{self.policy.max_retries} in {delay:.1f}s"
            )
            self.sleep(delay)

    def close(self) -> None:
        for provider in self.providers:
            provider.close()
