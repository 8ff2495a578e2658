"""Bounded, age-aware LRU mapping used for caller-owned client caches."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

DEFAULT_CACHE_MAX_SIZE = 16

K = TypeVar("K")
V = TypeVar("V")


class LRUDict(Generic[K, V]):
    """
    A mapping with least-recently-used eviction and optional idle expiry.

    When the mapping exceeds max_size, the least recently accessed entries
    are evicted. Entries untouched for longer than max_age seconds are
    dropped by evict_stale(). Every eviction is reported to on_evict so
    owners can release resources held by the value.

    Thread-safe for concurrent access.

    Example:
        cache = LRUDict(max_size=2, on_evict=lambda k, v: v.close())
        cache["a"] = client_a
        cache["b"] = client_b
        cache["c"] = client_c  # client_a.close() is called
    """

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        max_age: float | None = None,
        on_evict: Callable[[K, V], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._max_age = max_age
        self._on_evict = on_evict
        self._clock = clock
        self._data: OrderedDict[K, tuple[V, float]] = OrderedDict()
        self._lock = threading.RLock()

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __setitem__(self, key: K, value: V) -> None:
        with self._lock:
            previous = self._data.pop(key, None)
            self._data[key] = (value, self._clock())
            if previous is not None and previous[0] is not value:
                self._notify(key, previous[0])
            self._evict_if_needed()

    def __getitem__(self, key: K) -> V:
        """Get item, mark it recently used and refresh its age."""
        with self._lock:
            value, _ = self._data[key]
            self._data[key] = (value, self._clock())
            self._data.move_to_end(key)
            return value

    def __delitem__(self, key: K) -> None:
        with self._lock:
            value, _ = self._data.pop(key)
        self._notify(key, value)

    def __iter__(self) -> Iterator[K]:
        """Iterate over keys from oldest to newest."""
        with self._lock:
            return iter(list(self._data.keys()))

    def get(self, key: K, default: V | None = None) -> V | None:
        """Peek at an item without updating access order."""
        with self._lock:
            entry = self._data.get(key)
            return entry[0] if entry is not None else default

    def pop(self, key: K, default: V | None = None) -> V | None:
        """Remove an item without invoking on_evict."""
        with self._lock:
            entry = self._data.pop(key, None)
            return entry[0] if entry is not None else default

    def clear(self) -> None:
        """Evict every entry."""
        with self._lock:
            entries = list(self._data.items())
            self._data.clear()
        for key, (value, _) in entries:
            self._notify(key, value)

    def evict_stale(self) -> int:
        """Drop entries idle for longer than max_age.

        Returns:
            Number of entries evicted.
        """
        if self._max_age is None:
            return 0
        now = self._clock()
        with self._lock:
            stale = [k for k, (_, touched) in self._data.items() if now - touched > self._max_age]
            evicted = [(k, self._data.pop(k)[0]) for k in stale]
        for key, value in evicted:
            self._notify(key, value)
        return len(evicted)

    def _evict_if_needed(self) -> None:
        while len(self._data) > self._max_size:
            oldest_key, (value, _) = self._data.popitem(last=False)
            self._notify(oldest_key, value)

    def _notify(self, key: K, value: V) -> None:
        if self._on_evict is not None:
            self._on_evict(key, value)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._data),
                "max_size": self._max_size,
                "max_age": self._max_age,
                "utilization": len(self._data) / self._max_size,
            }
