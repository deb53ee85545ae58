"""
Tests for the cache façade.
"""

import pytest
from pydantic import ValidationError

from stockcache.cache.service import CacheOptions, CacheService
from stockcache.cache.tiered import TieredCache
from stockcache.observability.metrics import CacheMetrics


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def metrics() -> CacheMetrics:
    return CacheMetrics()


@pytest.fixture
def service(tiered: TieredCache, metrics: CacheMetrics) -> CacheService:
    return CacheService(
        tiered,
        key_prefix="cache:",
        scan_batch_size=2,
        availability_check_seconds=0,
        metrics=metrics,
    )


class TestCacheOptions:
    def test_ttl_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            CacheOptions(ttl=0)

    def test_defaults(self) -> None:
        options = CacheOptions()
        assert options.ttl is None
        assert options.prefix is None


class TestBasicOperations:
    async def test_set_get_round_trip(self, service: CacheService) -> None:
        await service.set("stores:list", [{"id": 1}])
        assert await service.get("stores:list") == [{"id": 1}]

    async def test_keys_are_namespaced(self, service: CacheService, l1) -> None:
        await service.set("brands:list", ["acme"])
        assert await l1.exists("cache:brands:list")

    async def test_prefix_option_overrides_namespace(self, service: CacheService, l1) -> None:
        options = CacheOptions(prefix="tenant42:")
        await service.set("brands:list", ["acme"], options)
        assert await l1.exists("tenant42:brands:list")
        assert await service.get("brands:list") is None
        assert await service.get("brands:list", options) == ["acme"]

    async def test_ttl_option(self, service: CacheService) -> None:
        await service.set("k", "v", CacheOptions(ttl=5))
        assert await service.ttl("k") == 5

    async def test_delete_and_exists(self, service: CacheService) -> None:
        await service.set("k", "v")
        assert await service.exists("k") is True
        assert await service.delete("k") is True
        assert await service.exists("k") is False

    async def test_mget_mset(self, service: CacheService) -> None:
        await service.mset({"a": 1, "b": 2})
        assert await service.mget(["a", "b", "c"]) == [1, 2, None]

    async def test_incr(self, service: CacheService) -> None:
        assert await service.incr("rate:ip", ttl_seconds=60) == 1
        assert await service.incr("rate:ip") == 2

    async def test_stats_counters(self, service: CacheService) -> None:
        await service.set("k", "v")
        await service.get("k")
        await service.get("missing")
        stats = await service.stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.sets == 1
        assert stats.hit_rate == pytest.approx(0.5)
        assert stats.available is True

    async def test_clear_resets_counters(self, service: CacheService, l1, l2) -> None:
        await service.set("k", "v")
        await service.get("k")
        assert await service.clear() == 2
        stats = await service.stats()
        assert stats.hits == 0
        assert stats.sets == 0
        assert l1.size == 0 and l2.size == 0


class TestGetOrSet:
    async def test_fetcher_runs_once(self, service: CacheService) -> None:
        calls = []

        async def fetch():
            calls.append("first")
            return {"featured": [1, 2]}

        async def fetch_again():
            calls.append("second")
            return {"featured": []}

        assert await service.get_or_set("products:featured", fetch) == {"featured": [1, 2]}
        assert await service.get_or_set("products:featured", fetch_again) == {"featured": [1, 2]}
        assert calls == ["first"]

    async def test_fetcher_errors_propagate(self, service: CacheService) -> None:
        async def fetch():
            raise RuntimeError("database unavailable")

        with pytest.raises(RuntimeError, match="database unavailable"):
            await service.get_or_set("k", fetch)

    async def test_fetcher_used_when_backend_down(self, service: CacheService, l1, l2) -> None:
        l1.fail_ops = {"*"}
        l2.fail_ops = {"*"}
        assert await service.get_or_set("k", lambda: 42) == 42


class TestDelPattern:
    async def test_removes_only_matching_keys(self, service: CacheService) -> None:
        await service.set("products:1", 1)
        await service.set("products:2", 2)
        await service.set("other:1", 3)

        assert await service.del_pattern("products:*") == 2
        assert await service.get("products:1") is None
        assert await service.get("products:2") is None
        assert await service.get("other:1") == 3

    async def test_many_keys_across_batches(self, service: CacheService) -> None:
        for i in range(25):
            await service.set(f"products:{i}", i)
        await service.set("brands:list", [])
        assert await service.del_pattern("products:*") == 25
        assert await service.exists("brands:list")

    async def test_no_match(self, service: CacheService) -> None:
        assert await service.del_pattern("nothing:*") == 0


class TestUnavailableBackend:
    @pytest.fixture(autouse=True)
    def _break_backend(self, l1, l2) -> None:
        l1.fail_ops = {"*"}
        l2.fail_ops = {"*"}

    async def test_is_available_false(self, service: CacheService) -> None:
        assert await service.is_available() is False

    async def test_operations_never_raise(self, service: CacheService) -> None:
        assert await service.get("k") is None
        await service.set("k", "v")
        assert await service.delete("k") is False
        assert await service.exists("k") is False
        assert await service.incr("k") == 0
        assert await service.ttl("k") == -1
        assert await service.del_pattern("*") == 0
        assert await service.clear() == 0

    async def test_unavailable_calls_recorded(
        self, service: CacheService, metrics: CacheMetrics
    ) -> None:
        await service.get("k")
        assert metrics.get_operation_count("get", "unavailable") == 1


class TestPartialFailure:
    async def test_infrastructure_errors_swallowed(self, service: CacheService, l1, l2) -> None:
        # Backend answers pings but both tiers reject writes.
        l1.fail_ops = {"set"}
        l2.fail_ops = {"set"}
        await service.set("k", "v")
        stats = await service.stats()
        assert stats.errors == 1
        assert stats.sets == 0


class TestTierStats:
    async def test_non_json_value_does_not_break_stats(self, service: CacheService) -> None:
        await service.set("analytics:by_store_sku", {("store-1", "sku-9"): 12})
        stats = await service.tier_stats()
        assert stats.l1.size == 1
        assert stats.l2.size == 1

    async def test_failing_backend_yields_zeroed_stats(
        self, service: CacheService, l1, monkeypatch
    ) -> None:
        async def broken_stats():
            raise TypeError("cannot size value")

        monkeypatch.setattr(l1, "stats", broken_stats)
        stats = await service.tier_stats()
        assert stats.l1.size == 0
        assert stats.overall.hits == 0


class TestAvailabilityCache:
    async def test_ping_result_reused_within_interval(self, tiered: TieredCache, l1, l2) -> None:
        clock = _Clock()
        service = CacheService(tiered, availability_check_seconds=5, clock=clock)
        assert await service.is_available() is True

        l1.fail_ops = {"*"}
        l2.fail_ops = {"*"}
        assert await service.is_available() is True

        clock.now = 6
        assert await service.is_available() is False

    async def test_refresh_forces_ping(self, tiered: TieredCache, l1, l2) -> None:
        service = CacheService(tiered, availability_check_seconds=60)
        assert await service.is_available() is True
        l1.fail_ops = {"ping"}
        l2.fail_ops = {"ping"}
        assert await service.refresh_availability() is False
