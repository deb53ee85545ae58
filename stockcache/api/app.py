"""
FastAPI application factory for the stockcache caching layer.

Builds the tiered cache, its façade, metrics and background tasks
explicitly and stores them on ``app.state``; the lifespan context starts
the janitor, health monitor and warmer and stops them on shutdown.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Mapping, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from stockcache.api.schemas import (
    CacheStatsResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
)
from stockcache.cache.factory import build_tiered_cache
from stockcache.cache.service import CacheService
from stockcache.cache.tiered import Fetcher
from stockcache.config import Settings, get_settings
from stockcache.exceptions import (
    CacheError,
    CacheSerializationError,
    CacheUnavailableError,
    ConfigurationError,
    StockCacheException,
)
from stockcache.observability.metrics import CacheMetrics
from stockcache.scheduling import CacheJanitor, HealthMonitor
from stockcache.warmer import CacheWarmer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: start background tasks.  Shutdown: stop them, close the cache."""
    state = app.state
    settings: Settings = state.settings

    state.janitor.start()
    if state.health_monitor is not None:
        state.health_monitor.start()
    if state.warmer is not None and settings.warmer.enabled:
        await state.warmer.start()

    yield

    if state.warmer is not None:
        await state.warmer.stop()
    if state.health_monitor is not None:
        await state.health_monitor.stop()
    await state.janitor.stop()
    await state.cache.backend.close()
    logger.info("Cache layer shut down")


def _build_warmer(
    cache: CacheService, fetchers: Mapping[str, Fetcher], settings: Settings
) -> Optional[CacheWarmer]:
    hot_keys = [key for key in settings.warmer.hot_keys if key in fetchers]
    unserved = [key for key in settings.warmer.hot_keys if key not in fetchers]
    if unserved:
        logger.warning("Hot keys without a fetcher are not warmed", extra={"hot_keys": unserved})
    if not hot_keys:
        return None
    return CacheWarmer(
        cache,
        fetchers,
        interval_seconds=settings.warmer.interval_seconds,
        hot_keys=hot_keys,
    )


def create_app(
    cache: Optional[CacheService] = None,
    warm_fetchers: Optional[Mapping[str, Fetcher]] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        cache: Pre-built cache façade; built from settings when omitted.
        warm_fetchers: Mapping of hot key to the fetcher producing its value.
        settings: Settings to use instead of the global ones.

    Returns:
        Configured FastAPI instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="stockcache",
        description="Tiered cache for the inventory API",
        version=settings.api.version,
        lifespan=lifespan,
    )

    if cache is not None and cache.metrics is not None:
        metrics = cache.metrics
    else:
        metrics = CacheMetrics()
    if cache is None:
        cache = CacheService(
            build_tiered_cache(settings),
            key_prefix=settings.cache.key_prefix,
            scan_batch_size=settings.cache.scan_batch_size,
            availability_check_seconds=settings.cache.availability_check_seconds,
            metrics=metrics,
        )

    app.state.settings = settings
    app.state.cache = cache
    app.state.metrics = metrics
    app.state.janitor = CacheJanitor(
        cache.backend, interval_seconds=settings.cache.cleanup_interval_seconds
    )
    app.state.health_monitor = (
        HealthMonitor(cache, interval_seconds=settings.redis.health_check_interval_seconds)
        if settings.redis.url
        else None
    )
    app.state.warmer = _build_warmer(cache, warm_fetchers, settings) if warm_fetchers else None
    app.state.start_time = time.time()
    app.state.version = settings.api.version

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=settings.api.cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Request-ID middleware --
    @app.middleware("http")
    async def add_request_id(request: Request, call_next: Any) -> Response:
        """Attach a unique request ID to every request."""
        request_id = request.headers.get("X-Request-Id", uuid.uuid4().hex[:12])
        request.state.request_id = request_id
        response: Response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    # -- Global exception handlers --
    @app.exception_handler(StockCacheException)
    async def stockcache_exception_handler(
        request: Request, exc: StockCacheException
    ) -> Response:
        """Handle all StockCacheException subclasses with consistent JSON."""
        request_id = getattr(request.state, "request_id", "unknown")

        status_map = {
            CacheUnavailableError: 503,
            CacheSerializationError: 500,
            CacheError: 500,
            ConfigurationError: 400,
        }
        status_code = status_map.get(type(exc), 500)
        error_type = exc.__class__.__name__.replace("Error", "").lower()

        logger.warning(
            "Request failed",
            extra={"request_id": request_id, "error_type": error_type, "error": str(exc)},
        )
        return Response(
            content=ErrorResponse(
                error=error_type, message=str(exc), request_id=request_id
            ).model_dump_json(),
            status_code=status_code,
            media_type="application/json",
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> Response:
        """Catch-all handler for unhandled exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "Unhandled exception",
            extra={"request_id": request_id, "error": str(exc)},
            exc_info=True,
        )
        return Response(
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
                request_id=request_id,
            ).model_dump_json(),
            status_code=500,
            media_type="application/json",
        )

    # -- Routes --

    @app.get("/health", response_model=HealthResponse, summary="Service health check")
    async def health(request: Request) -> HealthResponse:
        """Return service health and the cache backend's availability."""
        cache_service: CacheService = request.app.state.cache
        warmer: Optional[CacheWarmer] = request.app.state.warmer
        available = await cache_service.is_available()
        components = {"cache": "healthy" if available else "degraded"}
        if warmer is not None:
            components["warmer"] = "running" if warmer.is_running else "stopped"
        return HealthResponse(
            status="healthy",
            version=request.app.state.version,
            uptime_seconds=round(time.time() - request.app.state.start_time, 1),
            components=components,
        )

    @app.get(
        "/api/cache/stats",
        response_model=CacheStatsResponse,
        responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        summary="Per-tier cache statistics",
    )
    async def cache_stats(request: Request) -> CacheStatsResponse:
        cache_service: CacheService = request.app.state.cache
        return CacheStatsResponse.from_tiers(await cache_service.tier_stats())

    @app.post(
        "/api/cache/warm",
        response_model=MessageResponse,
        responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        summary="Run a warm pass now",
    )
    async def cache_warm(request: Request) -> MessageResponse:
        warmer: Optional[CacheWarmer] = request.app.state.warmer
        if warmer is None:
            return MessageResponse(message="No hot keys configured; nothing to warm")
        report = await warmer.warm_pass()
        return MessageResponse(
            message=(
                f"Cache warming completed: {len(report.warmed)} warmed, "
                f"{len(report.skipped)} already cached, {len(report.failed)} failed, "
                f"{len(report.deferred)} deferred"
            )
        )

    @app.post(
        "/api/cache/clear",
        response_model=MessageResponse,
        responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        summary="Clear every cache tier",
    )
    async def cache_clear(request: Request) -> MessageResponse:
        cache_service: CacheService = request.app.state.cache
        removed = await cache_service.clear()
        return MessageResponse(message=f"Cache cleared successfully ({removed} entries removed)")

    @app.get("/metrics", response_class=PlainTextResponse, summary="Prometheus metrics")
    async def prometheus_metrics(request: Request) -> PlainTextResponse:
        cache_service: CacheService = request.app.state.cache
        collector: CacheMetrics = request.app.state.metrics
        return PlainTextResponse(
            collector.get_prometheus_metrics(await cache_service.tier_stats()),
            media_type="text/plain; version=0.0.4",
        )

    return app
