"""
Store interface shared by every cache tier.

A :class:`CacheStore` is a key/value container with per-entry expiry.
The in-process bounded store, the Redis-backed store and the two-level
tiered cache all implement it, so the façade and the warmer never depend
on a concrete backend.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel


class StoreStats(BaseModel):
    """Counters for a single store.

    Attributes:
        hits: Reads that returned a live value.
        misses: Reads that found nothing or an expired entry.
        sets: Writes (including counter increments).
        deletes: Successful explicit deletions.
        evictions: Entries removed to make room for a new key.
        size: Entries currently held (expired ones may not be swept yet).
        hit_rate: ``hits / (hits + misses)``, ``0.0`` before any read.
        memory_usage: Human-readable footprint estimate when known.
    """

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    size: int = 0
    hit_rate: float = 0.0
    memory_usage: Optional[str] = None


def hit_rate(hits: int, misses: int) -> float:
    """Return the hit ratio, or ``0.0`` when nothing was read yet."""
    total = hits + misses
    return hits / total if total > 0 else 0.0


class CacheStore(ABC):
    """Asynchronous key/value store with TTL semantics.

    ``None`` doubles as the "absent" marker: a stored ``None`` reads back
    as a miss.  Infrastructure failures surface as
    :class:`~stockcache.exceptions.CacheError` subclasses.
    """

    name: str = "store"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the live value for *key*, or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store *value* under *key*; ``ttl_seconds=None`` uses the store default."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove *key*; return ``True`` if something was removed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return whether *key* holds a live value, without touching hit counters."""

    @abstractmethod
    async def clear(self) -> int:
        """Remove every entry, reset counters, return the number removed."""

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        """Return live keys matching a glob *pattern*."""

    @abstractmethod
    async def scan(
        self, cursor: int = 0, match: str = "*", count: int = 100
    ) -> Tuple[int, List[str]]:
        """Return one batch of matching keys and the cursor for the next one.

        Cursor ``0`` starts a scan and a returned ``0`` ends it.
        """

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """Increment an integer counter, creating it at 1 with *ttl_seconds*."""

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Return the remaining lifetime in whole seconds, ``-1`` if absent."""

    @abstractmethod
    async def cleanup(self) -> int:
        """Sweep expired entries; return the number removed."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return whether the store is reachable."""

    @abstractmethod
    async def stats(self) -> StoreStats:
        """Return a snapshot of the store counters."""

    async def mget(self, keys: Iterable[str]) -> List[Optional[Any]]:
        """Read several keys; values come back in key order."""
        return [await self.get(key) for key in keys]

    async def mset(self, entries: Iterable[Mapping[str, Any]]) -> None:
        """Write several ``{"key", "value", "ttl"?}`` entries."""
        for entry in entries:
            await self.set(entry["key"], entry["value"], entry.get("ttl"))

    async def close(self) -> None:
        """Release connections held by the store."""
