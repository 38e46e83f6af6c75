"""
Tests for the telemetry REST API.

Uses FastAPI's TestClient (backed by httpx) for synchronous testing.
"""

import pytest
from fastapi.testclient import TestClient

from profile_guard.api.app import create_app
from profile_guard.cache.entry import CacheStats
from profile_guard.observability.metrics import MetricsAggregator, MetricsConfig
from profile_guard.recovery.orchestrator import RecoveryStats


class StubSource:
    def __init__(self, stats) -> None:
        self._stats = stats

    def stats(self):
        return self._stats


@pytest.fixture
def client() -> TestClient:
    cache = CacheStats(tier_hits={"memory": 9, "session": 0, "durable": 0}, misses=1)
    recovery = RecoveryStats(
        total_operations=10, successful_operations=10, success_rate=100.0, average_latency_ms=5.0,
    )
    aggregator = MetricsAggregator(StubSource(cache), StubSource(recovery), MetricsConfig())
    return TestClient(create_app(aggregator, version="9.9.9"))


class TestHealth:
    def test_health_returns_200(self, client: TestClient) -> None:
        assert client.get("/health").status_code == 200

    def test_health_contains_status_and_version(self, client: TestClient) -> None:
        data = client.get("/health").json()
        assert data["status"] == "EXCELLENT"
        assert data["version"] == "9.9.9"
        assert "uptime_seconds" in data

    def test_health_includes_snapshot(self, client: TestClient) -> None:
        snapshot = client.get("/health").json()["snapshot"]
        assert snapshot["cache"]["hit_rate_pct"] == 90.0
        assert snapshot["gates"]["circuit_closed"] is True


class TestMetrics:
    def test_metrics_plain_text(self, client: TestClient) -> None:
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert 'profile_cache_hits_total{tier="memory"} 9.0' in resp.text
