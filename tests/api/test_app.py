"""
Tests for the FastAPI REST API layer.

Uses FastAPI's TestClient (backed by httpx); entering the client as a
context manager runs the application lifespan.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from stockcache.api.app import create_app
from stockcache.cache.service import CacheService
from stockcache.config import Settings
from stockcache.exceptions import CacheUnavailableError
from stockcache.observability.metrics import CacheMetrics


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def service(tiered) -> CacheService:
    return CacheService(
        tiered, key_prefix="cache:", availability_check_seconds=0, metrics=CacheMetrics()
    )


@pytest.fixture
def fetch_log():
    return []


@pytest.fixture
def fetchers(fetch_log):
    async def brands():
        fetch_log.append("brands:list")
        return [{"id": 1, "name": "Acme"}]

    def stores():
        fetch_log.append("stores:list")
        return [{"id": 10, "city": "Lyon"}]

    return {"brands:list": brands, "stores:list": stores}


@pytest.fixture
def client(service, fetchers, settings):
    app = create_app(cache=service, warm_fetchers=fetchers, settings=settings)
    with TestClient(app) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


class TestHealth:
    """Tests for GET /health."""

    def test_health_returns_200(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_contains_status_and_version(self, client: TestClient) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "2.0.0"
        assert data["uptime_seconds"] >= 0

    def test_health_includes_components(self, client: TestClient) -> None:
        data = client.get("/health").json()
        assert data["components"]["cache"] == "healthy"
        assert data["components"]["warmer"] == "running"

    def test_health_reports_degraded_cache(self, client: TestClient, l1, l2) -> None:
        l1.fail_ops = {"ping"}
        l2.fail_ops = {"ping"}
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["components"]["cache"] == "degraded"

    def test_request_id_echoed(self, client: TestClient) -> None:
        resp = client.get("/health", headers={"X-Request-Id": "abc123"})
        assert resp.headers["X-Request-Id"] == "abc123"

    def test_request_id_generated(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert len(resp.headers["X-Request-Id"]) == 12


# ---------------------------------------------------------------------------
# Cache administration endpoints
# ---------------------------------------------------------------------------


class TestCacheStats:
    """Tests for GET /api/cache/stats."""

    def test_stats_shape(self, client: TestClient) -> None:
        data = client.get("/api/cache/stats").json()
        assert set(data) == {"l1", "l2", "overall"}
        assert set(data["l1"]) == {"hits", "misses", "hitRate", "size", "evictions"}
        assert set(data["overall"]) == {"hits", "misses", "hitRate"}

    def test_stats_reflect_warmed_keys(self, client: TestClient) -> None:
        data = client.get("/api/cache/stats").json()
        assert data["l1"]["size"] == 2
        assert data["l2"]["size"] == 2

    def test_hit_rate_rounded(self, client: TestClient, service: CacheService) -> None:
        async def reads():
            await service.get("brands:list")
            await service.get("missing:1")
            await service.get("missing:2")

        asyncio.run(reads())
        data = client.get("/api/cache/stats").json()
        assert data["overall"]["hitRate"] == 0.3333

    def test_stats_with_non_json_value(self, client: TestClient, service: CacheService) -> None:
        asyncio.run(service.set("analytics:by_store_sku", {("store-1", "sku-9"): 12}))
        assert client.get("/api/cache/stats").status_code == 200
        assert client.get("/metrics").status_code == 200


class TestCacheWarm:
    """Tests for POST /api/cache/warm and start-up warming."""

    def test_startup_warms_hot_keys(self, client: TestClient, fetch_log) -> None:
        assert sorted(fetch_log) == ["brands:list", "stores:list"]

    def test_warm_endpoint_runs_pass(self, client: TestClient, fetch_log) -> None:
        client.post("/api/cache/clear")
        resp = client.post("/api/cache/warm")
        assert resp.status_code == 200
        assert "2 warmed" in resp.json()["message"]
        assert fetch_log.count("brands:list") == 2

    def test_warm_skips_cached_keys(self, client: TestClient) -> None:
        resp = client.post("/api/cache/warm")
        assert "2 already cached" in resp.json()["message"]

    def test_disabled_warmer_does_not_run_at_startup(
        self, service, fetchers, fetch_log, settings
    ) -> None:
        settings.warmer.enabled = False
        app = create_app(cache=service, warm_fetchers=fetchers, settings=settings)
        with TestClient(app) as test_client:
            assert fetch_log == []
            test_client.post("/api/cache/warm")
        assert sorted(fetch_log) == ["brands:list", "stores:list"]

    def test_without_fetchers(self, service, settings) -> None:
        app = create_app(cache=service, settings=settings)
        with TestClient(app) as test_client:
            resp = test_client.post("/api/cache/warm")
        assert resp.status_code == 200
        assert "nothing to warm" in resp.json()["message"]


class TestCacheClear:
    """Tests for POST /api/cache/clear."""

    def test_clear_empties_tiers(self, client: TestClient) -> None:
        resp = client.post("/api/cache/clear")
        assert resp.status_code == 200
        assert "cleared" in resp.json()["message"]
        data = client.get("/api/cache/stats").json()
        assert data["l1"]["size"] == 0
        assert data["l2"]["size"] == 0


class TestMetricsEndpoint:
    def test_prometheus_text(self, client: TestClient) -> None:
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert 'stockcache_cache_operations_total{operation="set",result="ok"}' in resp.text
        assert 'stockcache_cache_entries{tier="l1"} 2' in resp.text


class TestErrorHandling:
    def test_cache_error_maps_to_503(self, client: TestClient, service, monkeypatch) -> None:
        async def failing():
            raise CacheUnavailableError("stats backend gone")

        monkeypatch.setattr(service, "tier_stats", failing)
        resp = client.get("/api/cache/stats", headers={"X-Request-Id": "req-1"})
        assert resp.status_code == 503
        body = resp.json()
        assert body["error"] == "cacheunavailable"
        assert set(body) == {"error", "message", "request_id"}
        assert body["request_id"] == "req-1"


class TestDefaultApp:
    def test_builds_in_process_cache(self, settings) -> None:
        app = create_app(settings=settings)
        with TestClient(app) as test_client:
            assert test_client.get("/health").status_code == 200
            assert test_client.get("/api/cache/stats").json()["l1"]["size"] == 0
        assert app.state.janitor.is_running is False
