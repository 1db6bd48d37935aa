"""
Unified caching for rawsql.

Holds per-type metadata (materialization field tables) so that reflection
over a target type happens once rather than once per row. Uses cachetools
TTLCache for automatic expiration.
"""
import functools
import logging
import threading

import cachetools

logger = logging.getLogger(__name__)


class Cache:
    """Unified cache manager for the rawsql package.

    Thread-safe singleton that manages all TTL caches.
    """

    _instance = None
    _caches: dict[str, cachetools.TTLCache] = {}
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_cache(self, name: str, maxsize: int = 100, ttl: int = 300) -> cachetools.TTLCache:
        """Get or create a TTL cache with the given name.

        Args:
            name: Name of the cache
            maxsize: Maximum cache size
            ttl: Time-to-live in seconds

        Returns
            TTLCache instance
        """
        if name not in self._caches:
            with self._lock:
                if name not in self._caches:
                    self._caches[name] = cachetools.TTLCache(maxsize=maxsize, ttl=ttl)
        return self._caches[name]

    def clear_all(self) -> None:
        """Clear all managed caches."""
        with self._lock:
            for cache in self._caches.values():
                cache.clear()


def cacheable_by_type(cache_name: str, ttl: int = 3600, maxsize: int = 256):
    """Decorator for caching results computed from a single type argument.

    The decorated callable takes the type as its last positional argument,
    which makes it usable on plain functions and on classmethods.

    Args:
        cache_name: Name of the cache
        ttl: Time-to-live in seconds
        maxsize: Maximum cache size
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args):
            target = args[-1]
            cache = Cache.get_instance().get_cache(cache_name, ttl=ttl, maxsize=maxsize)
            with Cache._lock:
                if target in cache:
                    return cache[target]
            logger.debug(f'Cache miss for {func.__name__}({target.__qualname__})')
            result = func(*args)
            with Cache._lock:
                cache[target] = result
            return result

        return wrapper
    return decorator
