"""Tiered caching (L1 in-process / L2 in-process or Redis)."""

from stockcache.cache.base import CacheStore, StoreStats
from stockcache.cache.memory import CacheEntry, MemoryStore
from stockcache.cache.redis_backend import RedisStore
from stockcache.cache.tiered import TieredCache, TieredStats
from stockcache.cache.service import CacheOptions, CacheService, ServiceStats
from stockcache.cache.factory import build_tiered_cache

__all__ = [
    "CacheStore",
    "StoreStats",
    "CacheEntry",
    "MemoryStore",
    "RedisStore",
    "TieredCache",
    "TieredStats",
    "CacheOptions",
    "CacheService",
    "ServiceStats",
    "build_tiered_cache",
]
