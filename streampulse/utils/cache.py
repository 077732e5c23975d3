"""In-process TTL memoization for fetch results.

Uses cachetools.TTLCache so a result is reused until its staleness window
expires. Each key gets its own asyncio.Lock, so concurrent callers asking for
the same key share a single upstream call.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Generic, Optional, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

from streampulse.utils.logging import get_logger

logger = get_logger(__name__, category="system")

T = TypeVar("T")

# Sentinel object to distinguish "not in cache" from cached None values
_MISSING = object()


class AsyncTTLMemo(Generic[T]):
    """Async-aware TTL cache keyed by any hashable value.

    ``should_cache`` decides whether a freshly computed value is stored; failed
    fetches are usually not, so the next caller retries instead of seeing a
    cached failure for the whole window.
    """

    def __init__(
        self,
        ttl: float,
        maxsize: int = 128,
        timer: Callable[[], float] = time.monotonic,
        should_cache: Optional[Callable[[T], bool]] = None,
    ):
        self.ttl = ttl
        self._maxsize = maxsize
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._should_cache = should_cache

    def _get_lock(self, key: Hashable) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            # Prune locks whose entries have expired
            if len(self._locks) > self._maxsize * 2:
                for k in list(self._locks):
                    if k not in self._cache and not self._locks[k].locked():
                        del self._locks[k]
        return self._locks[key]

    def get(self, key: Hashable) -> Any:
        """Return the fresh value or ``_MISSING``."""
        return self._cache.get(key, _MISSING)

    def peek(self, key: Hashable) -> Optional[T]:
        value = self.get(key)
        return None if value is _MISSING else value

    def set(self, key: Hashable, value: T) -> None:
        self._cache[key] = value

    def invalidate(self, key: Hashable) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    @property
    def size(self) -> int:
        return len(self._cache)

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[T]],
        *,
        force: bool = False,
    ) -> T:
        """Return a fresh cached value for ``key`` or await ``loader`` and cache it.

        With ``force=True`` the cached value is ignored and replaced.
        """
        if not force:
            result = self.get(key)
            if result is not _MISSING:
                return result

        async with self._get_lock(key):
            # Double-checked: another caller may have filled it while we waited
            if not force:
                result = self.get(key)
                if result is not _MISSING:
                    return result

            result = await loader()
            if self._should_cache is None or self._should_cache(result):
                self.set(key, result)
            else:
                logger.debug("Not caching result for %s", key)
            return result
