from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import threading
import time
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


class MemoryCache(Generic[K, V]):
    """Thread-safe in-memory cache with LRU eviction and per-entry TTL."""

    def __init__(
        self,
        max_size: int,
        default_ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be greater than 0")
        self._max_size = max_size
        self._default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[K, CacheEntry[V]] = OrderedDict()

    def get(self, key: K) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    def put(self, key: K, value: V, ttl_seconds: float | None = None) -> None:
        ttl = self._default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._entries.popitem(last=False)
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            self._entries.move_to_end(key)

    def remove(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, key: K) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._is_expired(entry)

    def cleanup_expired(self) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def get_or_put(self, key: K, provider: Callable[[], V], ttl_seconds: float | None = None) -> V:
        cached = self.get(key)
        if cached is not None:
            return cached

        value = provider()
        self.put(key, value, ttl_seconds)
        return value

    def _is_expired(self, entry: CacheEntry[V]) -> bool:
        return self._clock() > entry.expires_at
