"""
Bounded in-process TTL store.

Holds values under string keys with a per-entry expiry and a hard
capacity.  Expiry is lazy: reads compare the clock against the stored
deadline and drop stale entries on the spot, while :meth:`cleanup`
sweeps everything that was written but never read again.  When the
store is full, inserting a new key evicts exactly one entry: the first
expired entry found, else the entry with the lowest hit count (the least
recently used among equals).
"""

import json
import logging
import math
import time
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from stockcache.cache.base import CacheStore, StoreStats, hit_rate
from stockcache.config import get_settings
from stockcache.exceptions import CacheSerializationError

logger = logging.getLogger(__name__)


def _encoded_value(value: Any) -> bytes:
    """Encode *value* for size estimates; falls back to ``repr`` for non-JSON values."""
    try:
        return json.dumps(value, default=str).encode("utf-8")
    except (TypeError, ValueError):
        return repr(value).encode("utf-8")


class CacheEntry(BaseModel):
    """A single stored value.

    Attributes:
        value: The cached payload.
        expires_at: Epoch milliseconds at which the entry becomes absent.
        hit_count: Number of reads served since the last write.
        sequence: Insertion order, stable across overwrites; drives scan cursors.
    """

    value: Any = None
    expires_at: float
    hit_count: int = 0
    sequence: int = 0


class MemoryStore(CacheStore):
    """In-memory store with TTL expiry and hit-count based eviction.

    Every method completes without suspending, so a single call is atomic
    with respect to other coroutines on the event loop.

    Args:
        max_entries: Capacity; defaults to ``cache.l1_max_entries``.
        default_ttl_seconds: TTL used when a write does not pass one;
            defaults to ``cache.l1_ttl_seconds``.
        name: Label used in logs and stats.
        clock: Returns the current time in seconds (``time.time`` by default).
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        default_ttl_seconds: Optional[int] = None,
        name: str = "memory",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if max_entries is None or default_ttl_seconds is None:
            cache_settings = get_settings().cache
            if max_entries is None:
                max_entries = cache_settings.l1_max_entries
            if default_ttl_seconds is None:
                default_ttl_seconds = cache_settings.l1_ttl_seconds
        self.name = name
        self._max_entries = max_entries
        self._default_ttl = default_ttl_seconds
        if self._max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._clock = clock or time.time
        self._store: Dict[str, CacheEntry] = {}
        self._next_sequence = 0
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._evictions = 0

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for *key*, deleting it first if it has expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._now_ms() >= entry.expires_at:
            del self._store[key]
            return None
        return entry

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """Look up *key*.

        A missing or expired entry counts as a miss (expired entries are
        deleted).  A hit increments the entry's ``hit_count``.
        """
        entry = self._live_entry(key)
        if entry is None:
            self._misses += 1
            return None

        entry.hit_count += 1
        self._hits += 1
        self._touch(key)
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Insert or overwrite *key*, evicting one entry if the store is full.

        The entry is stored with ``hit_count = 0`` and
        ``expires_at = now + ttl * 1000``.
        """
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        existing = self._store.get(key)

        if existing is None and len(self._store) >= self._max_entries:
            self._evict_one()

        if existing is not None:
            sequence = existing.sequence
            del self._store[key]
        else:
            self._next_sequence += 1
            sequence = self._next_sequence

        self._store[key] = CacheEntry(
            value=value,
            expires_at=self._now_ms() + ttl * 1000,
            hit_count=0,
            sequence=sequence,
        )
        self._sets += 1

    async def delete(self, key: str) -> bool:
        if key in self._store:
            del self._store[key]
            self._deletes += 1
            return True
        return False

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def clear(self) -> int:
        """Remove all entries and reset the counters.

        Returns:
            Number of entries removed.
        """
        count = len(self._store)
        self._store.clear()
        self._reset_counters()
        logger.info("Cache cleared", extra={"store": self.name, "entries_removed": count})
        return count

    async def keys(self, pattern: str = "*") -> List[str]:
        """Return live keys matching *pattern* (``*``, ``?`` and ``[...]`` globs)."""
        self._sweep()
        return [key for key in self._store if fnmatchcase(key, pattern)]

    async def scan(
        self, cursor: int = 0, match: str = "*", count: int = 100
    ) -> Tuple[int, List[str]]:
        """Examine up to *count* entries after *cursor* and return the matches.

        The cursor is the insertion sequence of the last examined entry,
        so deleting keys between calls never makes the scan skip others.
        """
        now = self._now_ms()
        pending = sorted(
            (entry.sequence, key)
            for key, entry in self._store.items()
            if entry.sequence > cursor
        )
        batch = pending[:max(count, 1)]
        matched = [
            key
            for _, key in batch
            if now < self._store[key].expires_at and fnmatchcase(key, match)
        ]
        next_cursor = batch[-1][0] if len(pending) > len(batch) else 0
        return next_cursor, matched

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """Increment the counter at *key*.

        An absent key is created at 1 with *ttl_seconds* (or the store
        default); an existing counter keeps its expiry.

        Raises:
            CacheSerializationError: If the stored value is not an integer.
        """
        entry = self._live_entry(key)
        if entry is None:
            await self.set(key, 1, ttl_seconds)
            return 1

        if isinstance(entry.value, bool) or not isinstance(entry.value, int):
            raise CacheSerializationError(f"Value at {key!r} is not an integer counter")
        entry.value += 1
        self._sets += 1
        self._touch(key)
        return entry.value

    async def ttl(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None:
            return -1
        return math.ceil((entry.expires_at - self._now_ms()) / 1000.0)

    async def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        removed = self._sweep()
        if removed:
            logger.info(
                "Expired entries cleaned up",
                extra={"store": self.name, "count": removed},
            )
        return removed

    async def ping(self) -> bool:
        return True

    async def stats(self) -> StoreStats:
        return StoreStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            deletes=self._deletes,
            evictions=self._evictions,
            size=len(self._store),
            hit_rate=hit_rate(self._hits, self._misses),
            memory_usage=self.memory_usage(),
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        """Current number of entries in the store."""
        return len(self._store)

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def top_keys(self, limit: int = 10) -> List[Tuple[str, int]]:
        """Return the *limit* most-read keys as ``(key, hit_count)`` pairs."""
        ranked = sorted(
            ((key, entry.hit_count) for key, entry in self._store.items()),
            key=lambda item: item[1],
            reverse=True,
        )
        return ranked[:limit]

    def memory_usage(self) -> str:
        """Estimate the footprint of keys and JSON-encoded values."""
        total = 0
        for key, entry in self._store.items():
            total += len(key.encode("utf-8"))
            total += len(_encoded_value(entry.value))

        if total < 1024:
            return f"{total} bytes"
        if total < 1024 * 1024:
            return f"{round(total / 1024)} KB"
        return f"{round(total / (1024 * 1024))} MB"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _evict_one(self) -> Optional[str]:
        """Evict a single entry to make room for a new key.

        The scan stops at the first expired entry; otherwise the entry
        with the lowest ``hit_count`` goes.  Ties go to the entry met
        first, and iteration runs from least to most recently used.
        """
        now = self._now_ms()
        victim: Optional[str] = None
        victim_hits = 0

        for key, entry in self._store.items():
            if now >= entry.expires_at:
                victim = key
                break
            if victim is None or entry.hit_count < victim_hits:
                victim = key
                victim_hits = entry.hit_count

        if victim is None:
            return None

        del self._store[victim]
        self._evictions += 1
        logger.debug("Cache entry evicted", extra={"store": self.name, "cache_key": victim})
        return victim

    def _touch(self, key: str) -> None:
        """Move *key* to the end of the iteration order (most recently used)."""
        self._store[key] = self._store.pop(key)

    def _sweep(self) -> int:
        now = self._now_ms()
        expired = [key for key, entry in self._store.items() if now >= entry.expires_at]
        for key in expired:
            del self._store[key]
        return len(expired)
