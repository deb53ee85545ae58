"""
Cache façade used by request handlers.

:class:`CacheService` wraps a :class:`~stockcache.cache.base.CacheStore`
(normally a :class:`~stockcache.cache.tiered.TieredCache`) and adds key
namespacing, instrumentation and resilience: an unreachable backend
turns reads into misses and writes into no-ops, and every cache
infrastructure error is logged and swallowed.  Errors raised by data
fetchers passed to :meth:`CacheService.get_or_set` always propagate.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from stockcache.cache.base import CacheStore, StoreStats, hit_rate
from stockcache.cache.tiered import Fetcher, OverallStats, TieredCache, TieredStats, call_fetcher
from stockcache.config import get_settings
from stockcache.exceptions import CacheSerializationError
from stockcache.observability.metrics import CacheMetrics

logger = logging.getLogger(__name__)


class CacheOptions(BaseModel):
    """Per-call cache options.

    Attributes:
        ttl: Lifetime in seconds, overriding each tier's default.
        prefix: Key namespace replacing the service's default prefix.
    """

    ttl: Optional[int] = Field(default=None, ge=1)
    prefix: Optional[str] = None


class ServiceStats(BaseModel):
    """Façade counters plus a snapshot of the backend."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0
    evictions: int = 0
    hit_rate: float = 0.0
    available: bool = True
    backend: StoreStats = Field(default_factory=StoreStats)


class CacheService:
    """Resilient ``get/set/delete/get_or_set`` API over a cache store.

    Args:
        backend: The store to wrap.
        key_prefix: Namespace prepended to every key; defaults to
            ``cache.key_prefix``.
        scan_batch_size: Keys examined per ``SCAN`` step in
            :meth:`del_pattern`; defaults to ``cache.scan_batch_size``.
        availability_check_seconds: How long a backend ping result is
            reused before pinging again.
        metrics: Optional collector receiving per-operation outcomes.
        clock: Monotonic clock used for the availability cache.
    """

    def __init__(
        self,
        backend: CacheStore,
        key_prefix: Optional[str] = None,
        scan_batch_size: Optional[int] = None,
        availability_check_seconds: Optional[float] = None,
        metrics: Optional[CacheMetrics] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        cache_settings = get_settings().cache
        self._backend = backend
        self._key_prefix = key_prefix if key_prefix is not None else cache_settings.key_prefix
        self._scan_batch_size = scan_batch_size or cache_settings.scan_batch_size
        self._availability_ttl = (
            availability_check_seconds
            if availability_check_seconds is not None
            else cache_settings.availability_check_seconds
        )
        self._metrics = metrics
        self._clock = clock or time.monotonic

        self._available: Optional[bool] = None
        self._checked_at = 0.0
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._errors = 0

    @property
    def backend(self) -> CacheStore:
        return self._backend

    @property
    def metrics(self) -> Optional[CacheMetrics]:
        return self._metrics

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _full_key(self, key: str, options: Optional[CacheOptions] = None) -> str:
        prefix = options.prefix if options is not None and options.prefix is not None else self._key_prefix
        return f"{prefix}{key}"

    def _record(self, operation: str, result: str) -> None:
        if self._metrics is not None:
            self._metrics.record_operation(operation, result)

    async def _unavailable(self, operation: str, full_key: str) -> bool:
        """Return ``True`` (and log) when *operation* must be skipped."""
        if await self.is_available():
            return False
        logger.warning(
            "Cache backend unavailable, skipping %s",
            operation,
            extra={"cache_key": full_key},
        )
        self._record(operation, "unavailable")
        return True

    def _handle_error(self, operation: str, full_key: str, exc: Exception) -> None:
        self._errors += 1
        if isinstance(exc, CacheSerializationError):
            logger.warning(
                "Cache value serialization failed",
                extra={"operation": operation, "cache_key": full_key, "error": str(exc)},
            )
        else:
            logger.error(
                "Cache %s error",
                operation,
                extra={"cache_key": full_key, "error": str(exc)},
                exc_info=True,
            )
        self._record(operation, "error")
        if self._metrics is not None:
            self._metrics.record_error(operation, type(exc).__name__)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        """Return whether the backend answers, reusing a recent ping result."""
        now = self._clock()
        if self._available is not None and now - self._checked_at < self._availability_ttl:
            return self._available
        return await self.refresh_availability()

    async def refresh_availability(self) -> bool:
        """Ping the backend now and remember the result."""
        try:
            available = bool(await self._backend.ping())
        except Exception as exc:
            logger.warning("Cache availability check failed", extra={"error": str(exc)})
            available = False

        if self._available is not None and available != self._available:
            if available:
                logger.info("Cache backend available again")
            else:
                logger.warning("Cache backend became unavailable")
        self._available = available
        self._checked_at = self._clock()
        return available

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get(self, key: str, options: Optional[CacheOptions] = None) -> Optional[Any]:
        """Return the cached value for *key*, or ``None`` on a miss or error."""
        full_key = self._full_key(key, options)
        if await self._unavailable("get", full_key):
            self._misses += 1
            return None
        try:
            value = await self._backend.get(full_key)
        except Exception as exc:
            self._handle_error("get", full_key, exc)
            self._misses += 1
            return None

        if value is None:
            self._misses += 1
            self._record("get", "miss")
        else:
            self._hits += 1
            self._record("get", "hit")
        return value

    async def set(self, key: str, value: Any, options: Optional[CacheOptions] = None) -> None:
        """Store *value*; failures are logged, never raised."""
        full_key = self._full_key(key, options)
        if await self._unavailable("set", full_key):
            return
        ttl = options.ttl if options is not None else None
        try:
            await self._backend.set(full_key, value, ttl)
        except Exception as exc:
            self._handle_error("set", full_key, exc)
            return
        self._sets += 1
        self._record("set", "ok")

    async def delete(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        """Remove *key*; returns ``False`` when nothing was removed or on error."""
        full_key = self._full_key(key, options)
        if await self._unavailable("delete", full_key):
            return False
        try:
            deleted = await self._backend.delete(full_key)
        except Exception as exc:
            self._handle_error("delete", full_key, exc)
            return False
        if deleted:
            self._deletes += 1
        self._record("delete", "ok")
        return deleted

    async def exists(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        full_key = self._full_key(key, options)
        if await self._unavailable("exists", full_key):
            return False
        try:
            return await self._backend.exists(full_key)
        except Exception as exc:
            self._handle_error("exists", full_key, exc)
            return False

    async def get_or_set(
        self, key: str, fetcher: Fetcher, options: Optional[CacheOptions] = None
    ) -> Any:
        """Return the cached value, or call *fetcher* and cache its result.

        Concurrent misses for the same key are not coalesced; each caller
        runs *fetcher*.  Exceptions raised by *fetcher* propagate.
        """
        cached = await self.get(key, options)
        if cached is not None:
            return cached

        fresh = await call_fetcher(fetcher)
        await self.set(key, fresh, options)
        return fresh

    async def del_pattern(self, pattern: str, options: Optional[CacheOptions] = None) -> int:
        """Delete every key matching the glob *pattern*.

        Walks the backend with ``scan`` in batches of ``scan_batch_size``
        and yields to the event loop between batches, so invalidating a
        large namespace never stalls other requests.

        Returns:
            Number of keys removed.
        """
        full_pattern = self._full_key(pattern, options)
        if await self._unavailable("del_pattern", full_pattern):
            return 0

        removed = 0
        cursor = 0
        try:
            while True:
                cursor, batch = await self._backend.scan(
                    cursor, match=full_pattern, count=self._scan_batch_size
                )
                for full_key in batch:
                    if await self._backend.delete(full_key):
                        removed += 1
                if cursor == 0:
                    break
                await asyncio.sleep(0)
        except Exception as exc:
            self._handle_error("del_pattern", full_pattern, exc)

        self._deletes += removed
        if removed:
            logger.info(
                "Cache keys invalidated",
                extra={"pattern": full_pattern, "count": removed},
            )
        self._record("del_pattern", "ok")
        return removed

    async def incr(
        self, key: str, ttl_seconds: Optional[int] = None, options: Optional[CacheOptions] = None
    ) -> int:
        """Increment a counter, creating it at 1; returns ``0`` when unavailable."""
        full_key = self._full_key(key, options)
        if await self._unavailable("incr", full_key):
            return 0
        try:
            value = await self._backend.incr(full_key, ttl_seconds)
        except Exception as exc:
            self._handle_error("incr", full_key, exc)
            return 0
        self._sets += 1
        self._record("incr", "ok")
        return value

    async def ttl(self, key: str, options: Optional[CacheOptions] = None) -> int:
        """Remaining lifetime of *key* in seconds, ``-1`` if absent or unknown."""
        full_key = self._full_key(key, options)
        if await self._unavailable("ttl", full_key):
            return -1
        try:
            return await self._backend.ttl(full_key)
        except Exception as exc:
            self._handle_error("ttl", full_key, exc)
            return -1

    async def mget(
        self, keys: Sequence[str], options: Optional[CacheOptions] = None
    ) -> List[Optional[Any]]:
        return [await self.get(key, options) for key in keys]

    async def mset(self, entries: Mapping[str, Any], options: Optional[CacheOptions] = None) -> None:
        for key, value in entries.items():
            await self.set(key, value, options)

    async def clear(self) -> int:
        """Empty every tier and reset the façade counters.

        Returns:
            Number of entries removed, ``0`` when the backend failed.
        """
        if await self._unavailable("clear", "*"):
            return 0
        try:
            removed = await self._backend.clear()
        except Exception as exc:
            self._handle_error("clear", "*", exc)
            return 0
        self._reset_counters()
        logger.info("Cache cleared", extra={"entries_removed": removed})
        self._record("clear", "ok")
        return removed

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def stats(self) -> ServiceStats:
        """Return façade counters and the backend's own statistics."""
        try:
            backend_stats = await self._backend.stats()
        except Exception as exc:
            logger.warning("Cache backend stats failed", extra={"error": str(exc)})
            backend_stats = StoreStats()
        return ServiceStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            deletes=self._deletes,
            errors=self._errors,
            evictions=backend_stats.evictions,
            hit_rate=hit_rate(self._hits, self._misses),
            available=bool(self._available) if self._available is not None else True,
            backend=backend_stats,
        )

    async def tier_stats(self) -> TieredStats:
        """Return L1/L2/overall statistics.

        A single-store backend is reported as L1 with an empty L2.  A
        backend that cannot report yields zeroed statistics.
        """
        try:
            if isinstance(self._backend, TieredCache):
                return await self._backend.tier_stats()
            single = await self._backend.stats()
        except Exception as exc:
            logger.warning("Cache tier stats failed", extra={"error": str(exc)})
            return TieredStats(l1=StoreStats(), l2=StoreStats(), overall=OverallStats())
        return TieredStats(
            l1=single,
            l2=StoreStats(),
            overall=OverallStats(hits=single.hits, misses=single.misses, hit_rate=single.hit_rate),
        )

    def counters(self) -> Dict[str, int]:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "sets": self._sets,
            "deletes": self._deletes,
            "errors": self._errors,
        }
