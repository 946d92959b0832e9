"""In-process TTL cache with single-flight loading.

One instance is built at application startup and handed to the services that
need it, so tests can use an isolated cache with a fake clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from observability.metrics import cache_hits_total, cache_misses_total, cache_type_for_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache:
    """Key/value cache whose entries expire after a per-call TTL.

    Concurrent misses on the same key share one loader invocation. Loader
    failures propagate to every waiter and leave nothing behind, so the next
    call retries.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}
        self._closed = False
        self.hits = 0
        self.misses = 0
        self.load_errors = 0

    async def cached(self, key: str, ttl_seconds: float, loader: Callable[[], Awaitable[T]]) -> T:
        entry = self._fresh(key)
        if entry is not None:
            self._record_hit(key)
            return entry.value

        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                # Another waiter may have filled the entry while we queued
                entry = self._fresh(key)
                if entry is not None:
                    self._record_hit(key)
                    return entry.value

                self._record_miss(key)
                try:
                    value = await loader()
                except Exception:
                    self.load_errors += 1
                    raise

                if ttl_seconds > 0 and not self._closed:
                    self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
                return value
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def get(self, key: str) -> Optional[Any]:
        entry = self._fresh(key)
        return entry.value if entry is not None else None

    def clear_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"[TTLCache] Cleared {len(doomed)} entries under '{prefix}'")
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def close(self) -> None:
        """Drop all entries; later calls still load but no longer store."""
        self._closed = True
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "load_errors": self.load_errors,
            "in_flight": len(self._locks),
            "closed": self._closed,
        }

    def _fresh(self, key: str) -> Optional[CacheEntry[Any]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _record_hit(self, key: str) -> None:
        self.hits += 1
        cache_hits_total.labels(cache_type=cache_type_for_key(key)).inc()

    def _record_miss(self, key: str) -> None:
        self.misses += 1
        cache_misses_total.labels(cache_type=cache_type_for_key(key)).inc()
