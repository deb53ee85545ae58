"""
Redis-backed cache tier for stockcache.

Implements the same :class:`~stockcache.cache.base.CacheStore` interface
as the in-process store so the tiered cache can use either as L2.
Values travel as JSON; expiry and capacity are left to Redis itself
(``SET ... EX`` and the server's ``maxmemory`` policy).
Keys: ``{key_prefix}:{cache_key}``.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

import redis.asyncio as aioredis
from pydantic_core import PydanticSerializationError, to_json
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from stockcache.cache.base import CacheStore, StoreStats, hit_rate
from stockcache.config import get_settings
from stockcache.exceptions import CacheError, CacheSerializationError, CacheUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _serialize(key: str, value: Any) -> str:
    """Encode *value* as JSON (datetimes, decimals and models included)."""
    try:
        return to_json(value).decode("utf-8")
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise CacheSerializationError(
            f"Value for {key!r} is not JSON serializable: {exc}"
        ) from exc


class RedisStore(CacheStore):
    """Networked cache tier on top of ``redis.asyncio``.

    Hit/miss counters are kept in-process, like the in-memory store's,
    and are reset by :meth:`clear`.

    Args:
        redis_url: Redis connection URL (e.g. redis://localhost:6379/0);
            defaults to ``redis.url`` from settings.
        default_ttl_seconds: TTL used when a write does not pass one;
            defaults to ``cache.l2_ttl_seconds``.
        key_prefix: Prefix for all keys (default ``stockcache:l2``).
        name: Label used in logs and stats.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        default_ttl_seconds: Optional[int] = None,
        key_prefix: Optional[str] = None,
        name: str = "redis",
        _redis_client: Optional[Any] = None,
    ) -> None:
        settings = get_settings()
        if _redis_client is not None:
            self._client = _redis_client
        else:
            url = redis_url or settings.redis.url
            if not url:
                raise CacheUnavailableError("No Redis URL configured for RedisStore")
            self._client = aioredis.from_url(url, decode_responses=True)
        self.name = name
        self._default_ttl = (
            default_ttl_seconds if default_ttl_seconds is not None else settings.cache.l2_ttl_seconds
        )
        self._key_prefix = (key_prefix or settings.redis.key_prefix).rstrip(":")
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

    def _key(self, cache_key: str) -> str:
        """Return full Redis key for a cache key."""
        return f"{self._key_prefix}:{cache_key}"

    def _strip(self, redis_key: str) -> str:
        return redis_key[len(self._key_prefix) + 1:]

    async def _execute(
        self, operation: str, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Run a Redis command, translating client errors into cache errors."""
        try:
            return await func(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise CacheUnavailableError(f"Redis {operation} failed: {exc}") from exc
        except RedisError as exc:
            raise CacheError(f"Redis {operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """Look up *key*.

        Returns:
            The decoded value on a hit, or ``None`` on a miss.  Entries
            that cannot be decoded are deleted and reported as misses.
        """
        rkey = self._key(key)
        data = await self._execute("GET", self._client.get, rkey)
        return await self._decode(key, data)

    async def _decode(self, key: str, data: Optional[str]) -> Optional[Any]:
        if data is None:
            self._misses += 1
            return None

        try:
            value = json.loads(data)
        except ValueError as exc:
            logger.warning(
                "Redis entry deserialize failed",
                extra={"cache_key": key, "error": str(exc)},
            )
            await self._execute("DEL", self._client.delete, self._key(key))
            self._misses += 1
            return None

        self._hits += 1
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store *value* under *key* with ``SET ... EX``.

        Raises:
            CacheSerializationError: If the value cannot be encoded.
            CacheUnavailableError: If Redis cannot be reached.
        """
        payload = _serialize(key, value)
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        await self._execute("SET", self._client.set, self._key(key), payload, ex=ttl)
        self._sets += 1

    async def delete(self, key: str) -> bool:
        deleted = await self._execute("DEL", self._client.delete, self._key(key))
        if deleted:
            self._deletes += 1
        return bool(deleted)

    async def exists(self, key: str) -> bool:
        return bool(await self._execute("EXISTS", self._client.exists, self._key(key)))

    async def clear(self) -> int:
        """Remove every key under our prefix and reset the counters.

        Returns:
            Number of keys removed.
        """
        removed = 0
        cursor = 0
        while True:
            cursor, batch = await self._execute(
                "SCAN", self._client.scan, cursor=cursor, match=f"{self._key_prefix}:*", count=100
            )
            if batch:
                removed += await self._execute("DEL", self._client.delete, *batch)
            if int(cursor) == 0:
                break
        self._reset_counters()
        logger.info("Cache cleared", extra={"store": self.name, "entries_removed": removed})
        return removed

    async def keys(self, pattern: str = "*") -> List[str]:
        found: List[str] = []
        cursor = 0
        while True:
            cursor, batch = await self.scan(cursor, match=pattern, count=100)
            found.extend(batch)
            if cursor == 0:
                return found

    async def scan(
        self, cursor: int = 0, match: str = "*", count: int = 100
    ) -> Tuple[int, List[str]]:
        next_cursor, batch = await self._execute(
            "SCAN", self._client.scan, cursor=cursor, match=self._key(match), count=count
        )
        return int(next_cursor), [self._strip(k) for k in batch]

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        """``INCR`` the counter and apply the TTL when it was just created."""
        rkey = self._key(key)
        value = await self._execute("INCR", self._client.incr, rkey)
        if value == 1:
            ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
            await self._execute("EXPIRE", self._client.expire, rkey, ttl)
        self._sets += 1
        return int(value)

    async def ttl(self, key: str) -> int:
        remaining = await self._execute("TTL", self._client.ttl, self._key(key))
        return int(remaining) if remaining is not None and remaining >= 0 else -1

    async def mget(self, keys: Iterable[str]) -> List[Optional[Any]]:
        """Read several keys with a single ``MGET``."""
        key_list = list(keys)
        if not key_list:
            return []
        raw = await self._execute("MGET", self._client.mget, [self._key(k) for k in key_list])
        return [await self._decode(key, data) for key, data in zip(key_list, raw)]

    async def cleanup(self) -> int:
        # Redis expires keys on its own.
        return 0

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.debug("Redis ping failed", extra={"store": self.name, "error": str(exc)})
            return False

    async def stats(self) -> StoreStats:
        """Return counters plus the number of keys under our prefix.

        The key count is ``0`` when Redis cannot be reached.
        """
        try:
            size = len(await self.keys("*"))
        except CacheError:
            size = 0
        return StoreStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            deletes=self._deletes,
            evictions=0,
            size=size,
            hit_rate=hit_rate(self._hits, self._misses),
        )

    async def close(self) -> None:
        await self._client.aclose()
