"""
Cache warmer: keeps designated hot keys populated ahead of requests.

Each hot key is paired with a fetcher that produces its value.  A warm
pass checks every hot key through the cache façade and fetches only the
absent ones.  Per-key failures are logged and reported, never raised.
"""

import importlib
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from stockcache.cache.service import CacheOptions, CacheService
from stockcache.cache.tiered import Fetcher, call_fetcher
from stockcache.config import get_settings
from stockcache.exceptions import ConfigurationError
from stockcache.scheduling import PeriodicTask

logger = logging.getLogger(__name__)


class WarmReport(BaseModel):
    """Outcome of one warm pass.

    Attributes:
        warmed: Keys fetched and stored during the pass.
        skipped: Keys already present in the cache.
        failed: Keys whose check, fetch, or write failed.
        deferred: Keys not attempted because the cache was unavailable.
        duration_ms: Wall-clock duration of the pass.
    """

    warmed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    deferred: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0


class CacheWarmer:
    """Populate hot keys immediately on start and then on a fixed interval.

    Args:
        cache: Façade through which keys are checked and written.
        fetchers: Mapping of hot key to the callable producing its value.
        interval_seconds: Delay between passes; defaults to
            ``warmer.interval_seconds``.
        options: Per-key :class:`CacheOptions` (TTL or prefix overrides).
        hot_keys: Restrict warming to these keys; defaults to every key
            in *fetchers*.

    Raises:
        ConfigurationError: If a hot key has no fetcher.
    """

    def __init__(
        self,
        cache: CacheService,
        fetchers: Mapping[str, Fetcher],
        interval_seconds: Optional[float] = None,
        options: Optional[Mapping[str, CacheOptions]] = None,
        hot_keys: Optional[Sequence[str]] = None,
    ) -> None:
        self._cache = cache
        self._fetchers: Dict[str, Fetcher] = dict(fetchers)
        self._options: Dict[str, CacheOptions] = dict(options or {})
        self._hot_keys: List[str] = list(hot_keys) if hot_keys is not None else list(self._fetchers)

        missing = [key for key in self._hot_keys if key not in self._fetchers]
        if missing:
            raise ConfigurationError(f"No fetcher registered for hot keys: {', '.join(missing)}")

        interval = interval_seconds or get_settings().warmer.interval_seconds
        self._task = PeriodicTask("cache-warmer", interval, self._scheduled_pass)
        self._started = False
        self._passes = 0
        self._last_report: Optional[WarmReport] = None

    @property
    def hot_keys(self) -> List[str]:
        return list(self._hot_keys)

    @property
    def is_running(self) -> bool:
        return self._started

    @property
    def last_report(self) -> Optional[WarmReport]:
        return self._last_report

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run one warm pass now, then schedule recurring passes.

        Calling ``start`` on a running warmer does nothing.
        """
        if self._started:
            return
        self._started = True
        logger.info(
            "Cache warmer starting",
            extra={"hot_keys": self._hot_keys},
        )
        await self.warm_pass()
        # stop() may have been called while the first pass was running
        if self._started:
            self._task.start()

    async def stop(self) -> None:
        """Cancel the recurring pass.  Safe to call when not running."""
        if not self._started:
            return
        self._started = False
        await self._task.stop()
        logger.info("Cache warmer stopped")

    # ------------------------------------------------------------------
    # Warming
    # ------------------------------------------------------------------

    async def _scheduled_pass(self) -> None:
        await self.warm_pass()

    async def warm_pass(self) -> WarmReport:
        """Populate every absent hot key, attempting each independently.

        When the cache is unavailable no fetcher runs and every hot key
        is reported as deferred.
        """
        started = time.perf_counter()
        report = WarmReport()

        if await self._cache.is_available():
            for key in self._hot_keys:
                await self._warm_hot_key(key, report)
        else:
            report.deferred.extend(self._hot_keys)
            logger.warning(
                "Cache unavailable; warm pass deferred",
                extra={"hot_keys": self._hot_keys},
            )

        report.duration_ms = round((time.perf_counter() - started) * 1000, 2)
        self._passes += 1
        self._last_report = report
        logger.info(
            "Cache warm pass complete",
            extra={
                "warmed": len(report.warmed),
                "skipped": len(report.skipped),
                "failed": len(report.failed),
                "deferred": len(report.deferred),
                "duration_ms": report.duration_ms,
            },
        )
        return report

    async def _warm_hot_key(self, key: str, report: WarmReport) -> None:
        options = self._options.get(key)
        try:
            if await self._cache.exists(key, options):
                report.skipped.append(key)
                return
            value = await call_fetcher(self._fetchers[key])
            await self._cache.set(key, value, options)
            report.warmed.append(key)
        except Exception as exc:
            report.failed.append(key)
            logger.error(
                "Cache warm failed for key",
                extra={"cache_key": key, "error": str(exc)},
                exc_info=True,
            )

    async def warm_key(
        self, key: str, fetcher: Fetcher, options: Optional[CacheOptions] = None
    ) -> bool:
        """Warm a single key on demand through ``get_or_set``.

        Returns:
            ``True`` if the key is now cached, ``False`` if fetching failed.
        """
        try:
            await self._cache.get_or_set(key, fetcher, options)
        except Exception as exc:
            logger.error(
                "Cache warm failed for key",
                extra={"cache_key": key, "error": str(exc)},
                exc_info=True,
            )
            return False
        logger.debug("Cache key warmed", extra={"cache_key": key})
        return True

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self._started,
            "hot_keys": len(self._hot_keys),
            "passes": self._passes,
            "last_report": self._last_report.model_dump() if self._last_report else None,
        }


def load_fetchers(path: str) -> Dict[str, Fetcher]:
    """Import the fetcher mapping named by ``"package.module:ATTRIBUTE"``.

    Raises:
        ConfigurationError: If the path is malformed, cannot be imported,
            or does not name a mapping of hot key to callable.
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Fetchers path must look like 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import fetchers module {module_name!r}: {exc}") from exc

    fetchers = getattr(module, attribute, None)
    if not isinstance(fetchers, Mapping):
        raise ConfigurationError(f"{path!r} is not a mapping of hot key to fetcher")
    not_callable = [key for key, fetcher in fetchers.items() if not callable(fetcher)]
    if not_callable:
        raise ConfigurationError(f"Fetchers are not callable for: {', '.join(not_callable)}")
    return dict(fetchers)
