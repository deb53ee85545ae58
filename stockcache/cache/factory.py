"""
Construction of the tiered cache from settings.

L1 is always an in-process :class:`MemoryStore`.  L2 is a Redis store when
``redis.url`` is configured, otherwise a second, larger in-process store.
"""

import logging
from typing import Optional

from stockcache.cache.base import CacheStore
from stockcache.cache.memory import MemoryStore
from stockcache.cache.redis_backend import RedisStore
from stockcache.cache.tiered import TieredCache
from stockcache.config import Settings, get_settings
from stockcache.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)


def build_l2(settings: Settings) -> CacheStore:
    """Return the L2 store selected by *settings*."""
    if settings.redis.url:
        try:
            store = RedisStore(
                redis_url=settings.redis.url,
                default_ttl_seconds=settings.cache.l2_ttl_seconds,
                key_prefix=settings.redis.key_prefix,
                name="l2",
            )
            logger.info("L2 cache tier using Redis", extra={"key_prefix": settings.redis.key_prefix})
            return store
        except (CacheUnavailableError, ValueError) as exc:
            logger.warning(
                "Redis L2 tier unavailable, using in-process store",
                extra={"error": str(exc)},
            )

    return MemoryStore(
        max_entries=settings.cache.l2_max_entries,
        default_ttl_seconds=settings.cache.l2_ttl_seconds,
        name="l2",
    )


def build_tiered_cache(settings: Optional[Settings] = None) -> TieredCache:
    """Build an L1/L2 :class:`TieredCache` from *settings* (or the global ones)."""
    settings = settings or get_settings()
    l1 = MemoryStore(
        max_entries=settings.cache.l1_max_entries,
        default_ttl_seconds=settings.cache.l1_ttl_seconds,
        name="l1",
    )
    return TieredCache(l1, build_l2(settings))
