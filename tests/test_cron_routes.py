"""Cron monitor trigger tests"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from services.notification_service import PaymentNotificationService
from services.payment_container import build_container
from webhook_server import create_app


@pytest.fixture
def container(session_factory, provider):
    return build_container(
        session_factory=session_factory,
        provider=provider,
        notifications=PaymentNotificationService(callback_url=""),
    )


@pytest.fixture
def client(container):
    app = create_app(container=container, enable_scheduler=False)
    app.state.cron_secret = "cron-test-secret"
    with TestClient(app) as test_client:
        yield test_client


class TestCronMonitor:

    def test_missing_secret_is_rejected(self, client):
        assert client.get("/api/cron/monitor").status_code == 401

    def test_wrong_secret_is_rejected(self, client):
        response = client.get("/api/cron/monitor", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_sweep_runs_with_valid_secret(self, client):
        response = client.get("/api/cron/monitor", headers={"Authorization": "Bearer cron-test-secret"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["timestamp"].endswith("Z")
        assert set(body["results"]) == {
            "expired_pending",
            "expiring_soon",
            "abandoned_orders",
            "stuck_payments",
            "stuck_poll_failures",
        }

    def test_sweep_failure_returns_500(self, client, container):
        container.monitor.run_sweep = AsyncMock(side_effect=RuntimeError("boom"))

        response = client.get("/api/cron/monitor", headers={"Authorization": "Bearer cron-test-secret"})

        assert response.status_code == 500
        assert response.json()["success"] is False

    def test_server_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
