"""
Two-level cache composed of a small fast tier (L1) and a larger tier (L2).

Reads check L1, then L2, copying L2 hits into L1 (promotion).  Writes go
to both tiers.  Each tier holds its own deep copy of a value, so mutating
a returned value never leaks into the other tier.  A failing tier degrades the cache to the other tier
instead of failing the call; the call only fails when both tiers fail.
"""

import copy
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar, Union

from pydantic import BaseModel

from stockcache.cache.base import CacheStore, StoreStats, hit_rate
from stockcache.exceptions import CacheError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Callback producing a value on a cache miss; may be sync or async.
Fetcher = Callable[[], Union[T, Awaitable[T]]]


async def call_fetcher(fetcher: Fetcher) -> Any:
    """Invoke *fetcher*, awaiting its result when it is a coroutine."""
    result = fetcher()
    if inspect.isawaitable(result):
        result = await result
    return result


class OverallStats(BaseModel):
    """Hit/miss counters for the tiered cache as a whole."""

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    promotions: int = 0


class TieredStats(BaseModel):
    """Per-tier and combined statistics."""

    l1: StoreStats
    l2: StoreStats
    overall: OverallStats


class TieredCache(CacheStore):
    """Read-through L1/L2 cache.

    Each tier keeps its own entries; a promoted value is written into L1
    with L1's default TTL.

    Args:
        l1: Fast, small tier (usually an in-process store).
        l2: Slower, larger tier (in-process or Redis).
    """

    name = "tiered"

    def __init__(self, l1: CacheStore, l2: CacheStore) -> None:
        self.l1 = l1
        self.l2 = l2
        self._hits = 0
        self._misses = 0
        self._promotions = 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _tier_get(self, tier: CacheStore, key: str) -> Optional[Any]:
        try:
            return await tier.get(key)
        except CacheError as exc:
            logger.warning(
                "Cache tier read failed, treating as miss",
                extra={"tier": tier.name, "cache_key": key, "error": str(exc)},
            )
            return None

    async def _on_both(
        self, operation: str, key: str, call: Callable[[CacheStore], Awaitable[T]]
    ) -> List[Optional[T]]:
        """Run *call* on L1 then L2, tolerating one failing tier.

        Returns:
            The per-tier results, ``None`` for a tier that failed.

        Raises:
            CacheError: If both tiers failed (the L2 error is re-raised).
        """
        results: List[Optional[T]] = []
        errors: List[CacheError] = []
        for tier in (self.l1, self.l2):
            try:
                results.append(await call(tier))
            except CacheError as exc:
                logger.warning(
                    "Cache tier %s failed",
                    operation,
                    extra={"tier": tier.name, "cache_key": key, "error": str(exc)},
                )
                errors.append(exc)
                results.append(None)
        if len(errors) == 2:
            raise errors[-1]
        return results

    # ------------------------------------------------------------------
    # CacheStore interface
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """Return the value from L1, else from L2 (promoting it into L1)."""
        value = await self._tier_get(self.l1, key)
        if value is not None:
            self._hits += 1
            return value

        value = await self._tier_get(self.l2, key)
        if value is None:
            self._misses += 1
            return None

        self._hits += 1
        value = copy.deepcopy(value)
        try:
            await self.l1.set(key, value)
            self._promotions += 1
        except CacheError as exc:
            logger.warning(
                "Promotion to L1 failed",
                extra={"cache_key": key, "error": str(exc)},
            )
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Write to both tiers; each falls back to its own default TTL."""
        await self._on_both(
            "set", key, lambda tier: tier.set(key, copy.deepcopy(value), ttl_seconds)
        )

    async def delete(self, key: str) -> bool:
        results = await self._on_both("delete", key, lambda tier: tier.delete(key))
        return any(results)

    async def exists(self, key: str) -> bool:
        for tier in (self.l1, self.l2):
            try:
                if await tier.exists(key):
                    return True
            except CacheError as exc:
                logger.warning(
                    "Cache tier exists failed",
                    extra={"tier": tier.name, "cache_key": key, "error": str(exc)},
                )
        return False

    async def clear(self) -> int:
        results = await self._on_both("clear", "*", lambda tier: tier.clear())
        self._hits = 0
        self._misses = 0
        self._promotions = 0
        return sum(r or 0 for r in results)

    async def keys(self, pattern: str = "*") -> List[str]:
        results = await self._on_both("keys", pattern, lambda tier: tier.keys(pattern))
        merged = set()
        for found in results:
            merged.update(found or [])
        return sorted(merged)

    async def scan(
        self, cursor: int = 0, match: str = "*", count: int = 100
    ) -> Tuple[int, List[str]]:
        """Scan L1 and then L2 under a single cursor.

        Even cursors address L1 (``2 * c``), odd cursors address L2
        (``2 * c + 1``).  A key held by both tiers may be returned twice.
        """
        if cursor % 2 == 0:
            next_cursor, batch = await self.l1.scan(cursor // 2, match, count)
            if next_cursor == 0:
                return 1, batch
            return next_cursor * 2, batch

        next_cursor, batch = await self.l2.scan((cursor - 1) // 2, match, count)
        if next_cursor == 0:
            return 0, batch
        return next_cursor * 2 + 1, batch

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """Increment the counter held in L2, dropping the stale L1 copy.

        Falls back to an L1 counter while L2 is failing.
        """
        try:
            value = await self.l2.incr(key, ttl_seconds)
        except CacheError as exc:
            logger.warning(
                "L2 increment failed, counting in L1",
                extra={"cache_key": key, "error": str(exc)},
            )
            return await self.l1.incr(key, ttl_seconds)
        try:
            await self.l1.delete(key)
        except CacheError as exc:
            logger.warning(
                "Dropping L1 counter copy failed",
                extra={"cache_key": key, "error": str(exc)},
            )
        return value

    async def ttl(self, key: str) -> int:
        for tier in (self.l1, self.l2):
            try:
                remaining = await tier.ttl(key)
            except CacheError:
                continue
            if remaining >= 0:
                return remaining
        return -1

    async def cleanup(self) -> int:
        results = await self._on_both("cleanup", "*", lambda tier: tier.cleanup())
        return sum(r or 0 for r in results)

    async def ping(self) -> bool:
        """Available while at least one tier answers."""
        return await self.l1.ping() or await self.l2.ping()

    async def stats(self) -> StoreStats:
        """Combined counters: overall hits/misses, summed writes and sizes."""
        tiers = await self.tier_stats()
        return StoreStats(
            hits=tiers.overall.hits,
            misses=tiers.overall.misses,
            sets=tiers.l1.sets + tiers.l2.sets,
            deletes=tiers.l1.deletes + tiers.l2.deletes,
            evictions=tiers.l1.evictions + tiers.l2.evictions,
            size=tiers.l1.size + tiers.l2.size,
            hit_rate=tiers.overall.hit_rate,
        )

    async def tier_stats(self) -> TieredStats:
        """Return statistics for each tier and for the cache as a whole."""
        return TieredStats(
            l1=await self.l1.stats(),
            l2=await self.l2.stats(),
            overall=OverallStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=hit_rate(self._hits, self._misses),
                promotions=self._promotions,
            ),
        )

    async def close(self) -> None:
        for tier in (self.l1, self.l2):
            await tier.close()

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    async def get_or_set(
        self, key: str, fetcher: Fetcher, ttl_seconds: Optional[int] = None
    ) -> Any:
        """Return the cached value or fetch, store, and return a fresh one.

        Concurrent misses on the same key each call *fetcher*; the last
        write wins.  Errors raised by *fetcher* propagate unchanged.

        Raises:
            CacheError: If both tiers fail while storing the fresh value.
        """
        value = await self.get(key)
        if value is not None:
            return value

        value = await call_fetcher(fetcher)
        await self.set(key, value, ttl_seconds)
        return value
