"""Time-bounded in-memory cache for resolved secrets."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


class SecretCache(Generic[V]):
    """
    TTL cache with per-key write locks.

    Reads take no lock. Writes (a new resolution or an invalidation) lock
    only the affected key, so concurrent resolutions of one data source
    load the secret once.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _key_lock(self, key: Hashable) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock():
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, key: Hashable, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._key_lock(key):
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        """Return the cached value or load it once under the key lock."""
        value = self.get(key)
        if value is not None:
            return value

        self.cleanup()
        try:
            with self._key_lock(key):
                entry = self._entries.get(key)
                if entry is not None and entry.expires_at > self._clock():
                    return entry.value
                value = loader()
                self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
                return value
        except Exception:
            self._release_lock(key)
            raise

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._key_lock(key):
            removed = self._entries.pop(key, None) is not None
        self._release_lock(key)
        return removed

    def cleanup(self) -> int:
        """Remove expired entries and their locks. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in list(self._entries.items()) if e.expires_at <= now]
        removed = 0
        for key in expired:
            with self._key_lock(key):
                entry = self._entries.get(key)
                if entry is not None and entry.expires_at <= now:
                    del self._entries[key]
                    removed += 1
            self._release_lock(key)
        return removed

    def _release_lock(self, key: Hashable) -> None:
        # a held lock belongs to a loader that is about to write the key
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is not None and not lock.locked() and key not in self._entries:
                del self._locks[key]

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.expires_at > self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "locks": len(self._locks),
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
        }
