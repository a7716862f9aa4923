"""Tests for the health route."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi.testclient import TestClient

from spamwatch.api.app import create_app
from spamwatch.api.dependencies import get_health_aggregator
from spamwatch.providers import DependencyHealth
from spamwatch.services.health import ServiceHealth


class _StubAggregator:
    def __init__(self, snapshot: ServiceHealth) -> None:
        self.snapshot_value = snapshot

    async def snapshot(self) -> ServiceHealth:
        return self.snapshot_value


def _client(make_settings, dependencies) -> tuple[TestClient, object]:
    status = "up" if all(health.is_up for health in dependencies.values()) else "degraded"
    snapshot = ServiceHealth(status=status, dependencies=dependencies, checked_at=datetime.now(timezone.utc))
    app = create_app(make_settings(api={"rate_limit_per_minute": 0}))
    app.dependency_overrides[get_health_aggregator] = lambda: _StubAggregator(snapshot)
    return TestClient(app), app


def test_health_up_returns_200(make_settings) -> None:
    client, app = _client(
        make_settings,
        {
            "moralis": DependencyHealth.up("moralis", latency_ms=12.5),
            "classifier": DependencyHealth.up("classifier", latency_ms=0.0),
        },
    )

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "up"
    assert body["dependencies"]["moralis"] == {"status": "up", "reason": None, "latency_ms": 12.5}
    app.dependency_overrides.clear()


def test_health_degraded_returns_503(make_settings) -> None:
    client, app = _client(
        make_settings,
        {
            "moralis": DependencyHealth.up("moralis"),
            "pinax": DependencyHealth.down("pinax", "timed out after 5s"),
        },
    )

    response = client.get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "degraded"
    assert body["dependencies"]["pinax"]["reason"] == "timed out after 5s"
    app.dependency_overrides.clear()
