"""
Query Cache - process-wide memoization for datastore reads.

Entries are keyed by function name plus the JSON of its parameters, expire
after a TTL, and carry tags so a whole family (e.g. "institutions") can be
invalidated at once. Concurrent misses for the same key simply recompute.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Iterable

log = logging.getLogger(__name__)

_MISSING = object()


def make_cache_key(name: str, params: Any = None) -> str:
    """Canonical key: ``name-<json>`` with sorted keys."""
    if params is None:
        return name
    return f"{name}-{json.dumps(params, sort_keys=True, default=str, separators=(',', ':'))}"


class TTLCache:
    """Thread-safe key -> (value, expiry, tags) store.

    Expired entries are swept every ``sweep_interval`` writes, and when the
    store reaches ``max_entries`` the oldest writes are evicted first.
    """

    def __init__(
        self,
        default_ttl: int = 60,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 2048,
        sweep_interval: int = 256,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max(1, max_entries)
        self.sweep_interval = max(1, sweep_interval)
        self._clock = clock
        self._entries: dict[str, tuple[Any, float, frozenset[str]]] = {}
        self._writes = 0
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires_at, _tags = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl: int | None = None, tags: Iterable[str] = ()) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            self._writes += 1
            if self._writes % self.sweep_interval == 0 or len(self._entries) >= self.max_entries:
                self._sweep(now)
            # re-insert so dict order stays oldest-write first
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                del self._entries[next(iter(self._entries))]
            self._entries[key] = (value, now + ttl, frozenset(tags))

    def _sweep(self, now: float) -> int:
        """Drop expired entries. Caller holds the lock."""
        expired = [k for k, (_v, expires_at, _t) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            log.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def invalidate_tag(self, tag: str) -> int:
        """Drop every entry carrying ``tag``. Returns the number removed."""
        with self._lock:
            doomed = [k for k, (_v, _e, tags) in self._entries.items() if tag in tags]
            for key in doomed:
                del self._entries[key]
        log.info("Invalidated %d cache entries for tag=%s", len(doomed), tag)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __bool__(self) -> bool:
        return True


class NullCache:
    """Cache that never stores anything; used when caching is disabled and in tests."""

    def get(self, key: str, default: Any = None) -> Any:
        return default

    def set(self, key: str, value: Any, ttl: int | None = None, tags: Iterable[str] = ()) -> None:
        return None

    def invalidate_tag(self, tag: str) -> int:
        return 0

    def clear(self) -> None:
        return None


def cached_call(
    cache: TTLCache | NullCache,
    name: str,
    params: Any,
    fetch: Callable[[], Any],
    ttl: int | None = None,
    tags: Iterable[str] = (),
) -> Any:
    """Return the cached result for (name, params), calling ``fetch`` on a miss."""
    key = make_cache_key(name, params)
    hit = cache.get(key, _MISSING)
    if hit is not _MISSING:
        return hit
    log.debug("Cache miss for key: %s", key)
    value = fetch()
    cache.set(key, value, ttl=ttl, tags=tags)
    return value
