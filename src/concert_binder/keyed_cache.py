"""Disk-backed key/value cache with optional TTL.

One JSON document per cache domain (geocoding, places, artist
metadata). The whole document is read into memory on first use and
rewritten on ``flush()``. The cache is rebuildable, so it favours
availability over durability: a corrupt file loads as an empty cache and
a failed flush is logged instead of raised.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from concert_binder.backup import atomic_write_text

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class CacheEntry:
    """A cached provider answer. ``payload=None`` is a negative result."""

    key: str
    payload: dict[str, Any] | None
    fetched_at: datetime
    expires_at: datetime | None = None

    @property
    def is_negative(self) -> bool:
        return self.payload is None

    def to_json(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "payload": self.payload,
            "fetchedAt": _format_timestamp(self.fetched_at),
            "expiresAt": _format_timestamp(self.expires_at),
        }

    @classmethod
    def from_json(cls, key: str, data: dict[str, Any]) -> CacheEntry:
        fetched_at = _parse_timestamp(data.get("fetchedAt"))
        if fetched_at is None:
            raise ValueError("missing fetchedAt")
        payload = data.get("payload")
        if payload is not None and not isinstance(payload, dict):
            raise ValueError("payload must be an object or null")
        return cls(
            key=key,
            payload=payload,
            fetched_at=fetched_at,
            expires_at=_parse_timestamp(data.get("expiresAt")),
        )


class KeyedCache:
    """
    Persistent mapping from composite cache key to ``CacheEntry``.

    Loaded lazily on first access. Use as a context manager to get an
    explicit load on enter and a flush on exit::

        with KeyedCache(path) as cache:
            cache.put("red rocks|morrison|co", {"lat": 39.66, "lng": -105.2}, timedelta(days=30))
    """

    def __init__(self, path: Path, name: str | None = None):
        self.path = path
        self.name = name or path.stem
        self._entries: dict[str, CacheEntry] = {}
        self._loaded = False
        self.dirty = False

    def load(self) -> None:
        """Read the backing document. A missing file is an empty cache."""
        self._entries = {}
        self._loaded = True
        self.dirty = False

        if not self.path.exists():
            log.debug(f"Cache {self.name}: no file at {self.path}, starting empty")
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"Cache {self.name}: could not read {self.path} ({e}), starting empty")
            return

        if not isinstance(raw, dict):
            log.warning(f"Cache {self.name}: {self.path} is not a JSON object, starting empty")
            return

        skipped = 0
        for key, data in raw.items():
            try:
                self._entries[key] = CacheEntry.from_json(key, data)
            except (AttributeError, TypeError, ValueError):
                skipped += 1
        if skipped:
            log.warning(f"Cache {self.name}: skipped {skipped} malformed entries")
        log.debug(f"Cache {self.name}: loaded {len(self._entries)} entries")

    def flush(self) -> bool:
        """
        Write the whole in-memory map back to disk.

        Returns False (and keeps the cache dirty) when the write fails, so
        callers can try again before exiting.
        """
        self._ensure_loaded()
        document = {key: entry.to_json() for key, entry in sorted(self._entries.items())}
        try:
            atomic_write_text(self.path, json.dumps(document, indent=2, ensure_ascii=False) + "\n")
        except OSError as e:
            log.error(f"Cache {self.name}: could not write {self.path}: {e}")
            return False
        self.dirty = False
        log.debug(f"Cache {self.name}: flushed {len(self._entries)} entries")
        return True

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def get(self, key: str) -> CacheEntry | None:
        """Exact-match lookup. Expired entries are returned; check ``is_expired``."""
        self._ensure_loaded()
        return self._entries.get(key)

    def put(
        self,
        key: str,
        payload: dict[str, Any] | None,
        ttl: timedelta | None = None,
    ) -> CacheEntry:
        """Store ``payload`` under ``key``; ``ttl=None`` never expires."""
        self._ensure_loaded()
        fetched_at = _now()
        entry = CacheEntry(
            key=key,
            payload=payload,
            fetched_at=fetched_at,
            expires_at=fetched_at + ttl if ttl is not None else None,
        )
        self._entries[key] = entry
        self.dirty = True
        return entry

    @staticmethod
    def is_expired(entry: CacheEntry) -> bool:
        return entry.expires_at is not None and _now() > entry.expires_at

    def invalidate(self, key: str) -> bool:
        self._ensure_loaded()
        if self._entries.pop(key, None) is None:
            return False
        self.dirty = True
        return True

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        self._ensure_loaded()
        expired = [key for key, entry in self._entries.items() if self.is_expired(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            self.dirty = True
        return len(expired)

    def purge_negative(self) -> int:
        """Drop negative entries so their entities get looked up again."""
        self._ensure_loaded()
        negative = [key for key, entry in self._entries.items() if entry.is_negative]
        for key in negative:
            del self._entries[key]
        if negative:
            self.dirty = True
        return len(negative)

    def clear(self) -> None:
        self._ensure_loaded()
        if self._entries:
            self.dirty = True
        self._entries.clear()

    def stats(self) -> dict[str, int]:
        self._ensure_loaded()
        entries = list(self._entries.values())
        return {
            "total": len(entries),
            "positive": sum(1 for e in entries if not e.is_negative),
            "negative": sum(1 for e in entries if e.is_negative),
            "expired": sum(1 for e in entries if self.is_expired(e)),
        }

    def keys(self) -> list[str]:
        self._ensure_loaded()
        return list(self._entries)

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        self._ensure_loaded()
        return key in self._entries

    def __enter__(self) -> KeyedCache:
        self.load()
        return self

    def __exit__(self, *args: Any) -> None:
        if self.dirty:
            self.flush()


## Tests


def test_keyed_cache_put_get(tmp_path):
    cache = KeyedCache(tmp_path / "geocode-cache.json")
    cache.put("a|b|c", {"lat": 1.0, "lng": 2.0}, timedelta(days=1))

    entry = cache.get("a|b|c")
    assert entry is not None
    assert entry.payload == {"lat": 1.0, "lng": 2.0}
    assert not cache.is_expired(entry)
    assert cache.get("missing") is None


def test_keyed_cache_negative_never_expires(tmp_path):
    cache = KeyedCache(tmp_path / "cache.json")
    entry = cache.put("nobody", None)
    assert entry.is_negative
    assert entry.expires_at is None
    assert not cache.is_expired(entry)


def test_keyed_cache_missing_file_is_empty(tmp_path):
    cache = KeyedCache(tmp_path / "nope" / "cache.json")
    cache.load()
    assert len(cache) == 0
    assert not cache.dirty
