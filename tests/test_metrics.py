"""Tests for the metrics collector and endpoints."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from distlimit.app.api.metrics import MetricsCollector, get_metrics_collector, router


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    @pytest.mark.asyncio
    async def test_summary(self):
        collector = MetricsCollector()
        await collector.record_check("user_id", True, 0.002)
        await collector.record_check("user_id", False, 0.004)
        await collector.record_decision(True)
        await collector.record_decision(False)
        await collector.record_store_failure("StoreUnavailable")
        await collector.record_uncertain("r1")
        await collector.record_uncertain("r1")

        summary = await collector.get_summary()

        assert summary["decisions"] == {"total": 2, "allowed": 1, "denied": 1, "denied_rate": 0.5}
        assert summary["dimensions"]["user_id"] == {"allowed": 1, "denied": 1, "avg_store_ms": 3.0}
        assert summary["store_failures"] == {"StoreUnavailable": 1}
        assert summary["uncertain"] == {"r1": 2}
        assert await collector.get_uncertain_total() == 2

    @pytest.mark.asyncio
    async def test_empty_summary(self):
        summary = await MetricsCollector().get_summary()
        assert summary["decisions"]["denied_rate"] == 0
        assert summary["dimensions"] == {}

    @pytest.mark.asyncio
    async def test_prometheus_format(self):
        collector = MetricsCollector()
        await collector.record_decision(False)
        await collector.record_check("ip", False, 0.001)
        await collector.record_uncertain("ip-rule")
        await collector.record_fail_closed("admin-rule")
        await collector.record_clock_skew("ip-rule")

        output = await collector.get_prometheus_metrics()

        assert "# TYPE ratelimit_decisions_total counter" in output
        assert 'ratelimit_decisions_total{result="denied"} 1' in output
        assert 'ratelimit_checks_total{dimension="ip",result="denied"} 1' in output
        assert 'ratelimit_uncertain_total{rule="ip-rule"} 1' in output
        assert 'ratelimit_fail_closed_total{rule="admin-rule"} 1' in output
        assert 'ratelimit_clock_skew_total{rule="ip-rule"} 1' in output
        assert output.endswith("\n")


class TestMetricsEndpoints:
    """Tests for the /metrics and /stats routes."""

    def test_endpoints(self):
        app = FastAPI()
        app.include_router(router)
        client = TestClient(app)

        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "ratelimit_uptime_seconds" in response.text

        response = client.get("/stats")
        assert response.status_code == 200
        assert response.json()["decisions"]["total"] == 0

    def test_global_collector_is_shared(self):
        assert get_metrics_collector() is get_metrics_collector()
