"""In-process TTL cache with stale fallback.

Uses cachetools.TTLCache, no shared infrastructure: each process keeps its own
copy and the coordinator invalidates keys after every queue mutation it makes.
Clients poll queue listings, so a short TTL absorbs most of that traffic.

When the database is unavailable, reads fall back to the last-known value
(stale store) rather than failing the poll.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not in cache" from cached None values
_MISSING = object()

T = TypeVar("T")


class AsyncTTLCache:
    """Async-aware TTL cache with a stale fallback store.

    Two tiers:
      1. ``_cache`` (TTLCache) - fresh data, governed by *ttl*.
      2. ``_stale`` (OrderedDict, LRU, bounded by *maxsize*) - last-known-good
         values that survive TTL expiry and invalidation. Used **only** when
         the loader raises.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 2.0):
        self._maxsize = maxsize
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._stale: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            if len(self._locks) > self._maxsize * 2:
                for k in list(self._locks):
                    if k not in self._stale and k not in self._cache:
                        del self._locks[k]
        return self._locks[key]

    def get(self, key: str) -> Any:
        """Return the fresh value or ``_MISSING``."""
        return self._cache.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        """Write to both the fresh cache and the stale store."""
        self._cache[key] = value
        self._stale[key] = value
        self._stale.move_to_end(key)
        while len(self._stale) > self._maxsize:
            self._stale.popitem(last=False)

    def invalidate(self, key: str) -> None:
        """Drop the fresh value; the stale store keeps it."""
        self._cache.pop(key, None)

    def get_stale(self, key: str) -> Any:
        """Return the last-known-good value or ``_MISSING``."""
        value = self._stale.get(key, _MISSING)
        if value is not _MISSING:
            self._stale.move_to_end(key)
        return value

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value for *key*, loading it once on a miss.

        Concurrent misses on the same key share a single load. If the loader
        raises and a stale value exists, the stale value is returned with a
        warning; otherwise the error propagates.
        """
        result = self.get(key)
        if result is not _MISSING:
            return result

        async with self._get_lock(key):
            result = self.get(key)
            if result is not _MISSING:
                return result
            try:
                result = await loader()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                stale = self.get_stale(key)
                if stale is _MISSING:
                    raise
                logger.warning("Returning stale data for %s (%s)", key, type(exc).__name__)
                return stale
            self.set(key, result)
            return result

    @property
    def size(self) -> int:
        return len(self._cache)
