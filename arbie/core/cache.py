"""
Caching utilities for Arbie.

Provides TTL-based caching for slow-changing on-chain lookups
(pool addresses, token ordering) to cut RPC calls per cycle.
Prices are never cached: every cycle must observe fresh quotes.
"""

from typing import Any, Optional

from cachetools import TTLCache

from arbie.core.logging import get_logger

logger = get_logger("cache")


class CacheManager:
    """
    TTL-based cache manager.

    Features:
    - Configurable TTL per cache
    - Manual invalidation
    - Hit/miss statistics
    """

    def __init__(self, maxsize: int = 1000, ttl: int = 3600):
        self.ttl = ttl
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._stats = {"hits": 0, "misses": 0}

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        value = self._cache.get(key)
        if value is not None:
            self._stats["hits"] += 1
            logger.debug(f"Cache hit: {key}")
        else:
            self._stats["misses"] += 1
        return value

    def set(self, key: str, value: Any) -> None:
        """Set value in cache."""
        self._cache[key] = value
        logger.debug(f"Cache set: {key}")

    @property
    def stats(self) -> dict[str, int]:
        """Get cache statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total if total > 0 else 0
        return {
            **self._stats,
            "total": total,
            "hit_rate": round(hit_rate, 3),
            "size": len(self._cache),
        }


_pool_caches: dict[str, CacheManager] = {}


def get_pool_cache(venue: str, ttl: int = 3600) -> CacheManager:
    """Get the pool-address cache for a venue."""
    cache = _pool_caches.get(venue)
    if cache is None:
        cache = CacheManager(maxsize=500, ttl=ttl)
        _pool_caches[venue] = cache
    return cache
