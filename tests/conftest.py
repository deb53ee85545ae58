"""Shared fixtures for the stockcache test suite."""

import pytest

from stockcache.cache.memory import MemoryStore
from stockcache.cache.tiered import TieredCache
from stockcache.config import reset_settings
from stockcache.exceptions import CacheUnavailableError


class FakeClock:
    """Manually advanced clock returning seconds, like ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    """Isolate every test from the host's Redis and cached settings."""
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("STOCKCACHE_REDIS_URL", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FlakyStore(MemoryStore):
    """In-process store whose listed operations fail as if unreachable."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail_ops = set()

    def _check(self, operation: str) -> None:
        if operation in self.fail_ops or "*" in self.fail_ops:
            raise CacheUnavailableError(f"{self.name} {operation} unavailable")

    async def get(self, key):
        self._check("get")
        return await super().get(key)

    async def set(self, key, value, ttl_seconds=None):
        self._check("set")
        await super().set(key, value, ttl_seconds)

    async def delete(self, key):
        self._check("delete")
        return await super().delete(key)

    async def exists(self, key):
        self._check("exists")
        return await super().exists(key)

    async def clear(self):
        self._check("clear")
        return await super().clear()

    async def keys(self, pattern="*"):
        self._check("keys")
        return await super().keys(pattern)

    async def scan(self, cursor=0, match="*", count=100):
        self._check("scan")
        return await super().scan(cursor, match, count)

    async def incr(self, key, ttl_seconds=None):
        self._check("incr")
        return await super().incr(key, ttl_seconds)

    async def ttl(self, key):
        self._check("ttl")
        return await super().ttl(key)

    async def ping(self):
        return not ({"ping", "*"} & self.fail_ops)


@pytest.fixture
def l1(clock) -> FlakyStore:
    return FlakyStore(max_entries=10, default_ttl_seconds=60, name="l1", clock=clock)


@pytest.fixture
def l2(clock) -> FlakyStore:
    return FlakyStore(max_entries=100, default_ttl_seconds=600, name="l2", clock=clock)


@pytest.fixture
def tiered(l1: FlakyStore, l2: FlakyStore) -> TieredCache:
    return TieredCache(l1, l2)
