"""
Tests for the cancellable background tasks.
"""

import asyncio

import pytest

from stockcache.cache.memory import MemoryStore
from stockcache.cache.service import CacheService
from stockcache.scheduling import CacheJanitor, HealthMonitor, PeriodicTask


class TestPeriodicTask:
    async def test_runs_repeatedly_until_stopped(self) -> None:
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("tick", 0.01, tick)
        handle = task.start()
        assert isinstance(handle, asyncio.Task)
        await asyncio.sleep(0.1)
        await task.stop()

        assert len(calls) >= 2
        assert task.is_running is False
        assert handle.done()

    async def test_start_is_idempotent(self) -> None:
        async def tick():
            pass

        task = PeriodicTask("tick", 10, tick)
        first = task.start()
        second = task.start()
        assert first is second
        await task.stop()

    async def test_stop_when_not_running(self) -> None:
        async def tick():
            pass

        task = PeriodicTask("tick", 10, tick)
        await task.stop()
        assert task.is_running is False

    async def test_run_immediately(self) -> None:
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("tick", 10, tick, run_immediately=True)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()
        assert calls == [1]

    async def test_failure_does_not_stop_schedule(self) -> None:
        calls = []

        async def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        task = PeriodicTask("flaky", 0.01, flaky)
        task.start()
        await asyncio.sleep(0.1)
        assert task.is_running is True
        await task.stop()

        stats = task.stats()
        assert stats["failures"] == stats["runs"]
        assert stats["runs"] >= 2
        assert stats["last_run_at"] is not None

    async def test_run_once_reports_outcome(self) -> None:
        async def ok():
            pass

        async def bad():
            raise ValueError("nope")

        assert await PeriodicTask("ok", 1, ok).run_once() is True
        assert await PeriodicTask("bad", 1, bad).run_once() is False

    def test_interval_must_be_positive(self) -> None:
        async def tick():
            pass

        with pytest.raises(ValueError):
            PeriodicTask("tick", 0, tick)


class TestCacheJanitor:
    async def test_sweeps_expired_entries(self, clock) -> None:
        store = MemoryStore(max_entries=10, default_ttl_seconds=1, clock=clock)
        await store.set("a", 1)
        await store.set("b", 2, ttl_seconds=100)
        clock.advance(2)

        janitor = CacheJanitor(store, interval_seconds=300)
        assert await janitor.run_once() is True
        assert store.size == 1
        assert janitor.stats()["removed_total"] == 1

    def test_interval_defaults_to_settings(self) -> None:
        janitor = CacheJanitor(MemoryStore(max_entries=1, default_ttl_seconds=1))
        assert janitor._interval == 300


class TestHealthMonitor:
    async def test_tracks_transitions(self, tiered, l1, l2) -> None:
        service = CacheService(tiered, availability_check_seconds=60)
        monitor = HealthMonitor(service, interval_seconds=30)

        await monitor.run_once()
        assert monitor.healthy is True

        l1.fail_ops = {"ping"}
        l2.fail_ops = {"ping"}
        await monitor.run_once()
        assert monitor.healthy is False
        # The façade sees the outage without waiting for its own recheck.
        assert await service.is_available() is False

        l1.fail_ops = set()
        await monitor.run_once()
        assert monitor.healthy is True
