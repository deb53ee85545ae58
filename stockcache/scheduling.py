"""
Cancellable background tasks for the cache layer.

:class:`PeriodicTask` runs an async callback on a fixed interval inside
the event loop and hands back its ``asyncio.Task`` on :meth:`start`.
Two concrete schedules are built on it: :class:`CacheJanitor`, which
sweeps expired entries, and :class:`HealthMonitor`, which pings the
backing store and logs availability transitions.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from stockcache.cache.base import CacheStore
from stockcache.cache.service import CacheService
from stockcache.config import get_settings

logger = logging.getLogger(__name__)

TaskCallback = Callable[[], Awaitable[Any]]


class PeriodicTask:
    """Run *callback* every *interval_seconds* until stopped.

    A failing callback is logged and counted; the schedule keeps going.

    Args:
        name: Label used in logs and stats.
        interval_seconds: Delay between the end of one run and the next.
        callback: Coroutine function invoked on every tick.
        run_immediately: Run once as soon as the task starts instead of
            waiting one interval first.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: TaskCallback,
        run_immediately: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self._interval = interval_seconds
        self._callback = callback
        self._run_immediately = run_immediately

        self._task: Optional[asyncio.Task] = None
        self._runs = 0
        self._failures = 0
        self._last_run_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop.

        Calling ``start`` while already running returns the existing handle.
        """
        if self.is_running:
            return self._task
        self._task = asyncio.create_task(self._run_loop(), name=f"stockcache-{self.name}")
        logger.info(
            "Periodic task started",
            extra={"task": self.name, "interval_seconds": self._interval},
        )
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish.  Safe when not running."""
        task = self._task
        if task is None:
            return
        self._task = None
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Periodic task stopped", extra={"task": self.name})

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_once(self) -> bool:
        """Invoke the callback a single time.

        Returns:
            ``True`` when the callback completed, ``False`` if it raised.
        """
        self._runs += 1
        self._last_run_at = time.time()
        try:
            await self._callback()
        except Exception as exc:
            self._failures += 1
            logger.error(
                "Periodic task run failed",
                extra={"task": self.name, "error": str(exc)},
                exc_info=True,
            )
            return False
        return True

    async def _run_loop(self) -> None:
        if self._run_immediately:
            await self.run_once()
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "runs": self._runs,
            "failures": self._failures,
            "last_run_at": self._last_run_at,
        }


class CacheJanitor(PeriodicTask):
    """Periodically drop expired entries from every tier of *store*."""

    def __init__(self, store: CacheStore, interval_seconds: Optional[float] = None) -> None:
        interval = interval_seconds or get_settings().cache.cleanup_interval_seconds
        super().__init__("cache-janitor", interval, self._sweep)
        self._store = store
        self._removed_total = 0

    async def _sweep(self) -> None:
        removed = await self._store.cleanup()
        self._removed_total += removed
        logger.debug(
            "Cache janitor sweep",
            extra={"removed": removed, "removed_total": self._removed_total},
        )

    def stats(self) -> Dict[str, Any]:
        stats = super().stats()
        stats["removed_total"] = self._removed_total
        return stats


class HealthMonitor(PeriodicTask):
    """Ping the cache backend on an interval and log up/down transitions.

    The façade's availability flag is refreshed on every tick, so requests
    pick up a recovered backend without waiting for their own check.
    """

    def __init__(self, cache: CacheService, interval_seconds: Optional[float] = None) -> None:
        interval = interval_seconds or get_settings().redis.health_check_interval_seconds
        super().__init__("cache-health", interval, self._check, run_immediately=True)
        self._cache = cache
        self._healthy: Optional[bool] = None

    @property
    def healthy(self) -> Optional[bool]:
        """Last observed state, ``None`` before the first check."""
        return self._healthy

    async def _check(self) -> None:
        healthy = await self._cache.refresh_availability()
        if self._healthy is None:
            logger.info("Cache backend health", extra={"healthy": healthy})
        elif healthy and not self._healthy:
            logger.info("Cache backend recovered")
        elif not healthy and self._healthy:
            logger.error("Cache backend health check failed")
        self._healthy = healthy
