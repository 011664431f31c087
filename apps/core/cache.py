"""Small key/value cache interface with a TTL + LRU in-process implementation."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional


class CacheBackend(ABC):
    """Key/value cache with per-entry expiry."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...


class TTLCache(CacheBackend):
    """
    In-process cache.

    Entries expire ``ttl_seconds`` after their last write. Once ``max_entries``
    is exceeded the least recently used entry is evicted. ``clock`` returns
    seconds and can be swapped for a fake in tests.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[str, tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._data[key] = (self._clock() + ttl, value)
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every expired entry, return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (expires_at, _) in self._data.items() if now >= expires_at]
            for k in stale:
                del self._data[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
