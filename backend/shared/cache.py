"""In-process TTL caches for Rolegate services.

Uses cachetools.TTLCache for zero-infrastructure caching. Each process
creates its own cache instances; there is no cross-process sharing, so a
cached entry is only as fresh as its TTL plus the writes this process saw.
"""

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Sentinel object to distinguish "not in cache" from cached None values
_MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """Async-aware TTL cache with per-key fill locks."""

    def __init__(self, maxsize: int = 128, ttl: float = 60.0, timer: Callable[[], float] | None = None):
        self._maxsize = maxsize
        if timer is None:
            self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        else:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            # Prune locks whose entries have expired
            if len(self._locks) > self._maxsize * 2:
                for k in list(self._locks):
                    if k not in self._cache and not self._locks[k].locked():
                        del self._locks[k]
        return self._locks[key]

    def get(self, key: str) -> Any:
        """Return the live value or ``_MISSING``."""
        return self._cache.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value

    def pop(self, key: str) -> Any:
        """Remove and return the live value, or ``_MISSING``.

        Expired entries are never returned, which makes this suitable for
        single-use tokens.
        """
        self._locks.pop(key, None)
        return self._cache.pop(key, _MISSING)

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    def expire(self) -> None:
        """Drop every entry whose TTL has elapsed."""
        self._cache.expire()

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    @property
    def ttl(self) -> float:
        return self._cache.ttl

    @property
    def size(self) -> int:
        return len(self._cache)


def cached(cache: AsyncTTLCache, key_func: Callable[..., str]):
    """Decorator for caching async function results.

    Parameters
    ----------
    cache : AsyncTTLCache
        The cache instance to use.
    key_func : callable
        Receives the same ``(*args, **kwargs)`` as the decorated function
        and returns the cache key string.

    Concurrent misses on the same key are collapsed into one call. Failures
    are not cached and propagate to every waiter.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            cache_key = key_func(*args, **kwargs)

            result = cache.get(cache_key)
            if result is not _MISSING:
                return result

            async with cache._get_lock(cache_key):
                result = cache.get(cache_key)
                if result is not _MISSING:
                    return result

                result = await func(*args, **kwargs)
                cache.set(cache_key, result)
                logger.debug("Cache fill for %s", cache_key)
                return result

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
