"""Tests for the API process health endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from service_monitor.main import app
from service_monitor.middleware import CORRELATION_ID_HEADER


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_returns_healthy_with_db_connected(self, client):
        with patch(
            "service_monitor.routers.health.check_database_connection",
            new_callable=AsyncMock,
        ) as mock_db:
            mock_db.return_value = True

            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"

    @pytest.mark.asyncio
    async def test_returns_degraded_when_db_disconnected(self, client):
        with patch(
            "service_monitor.routers.health.check_database_connection",
            new_callable=AsyncMock,
        ) as mock_db:
            mock_db.return_value = False

            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_reports_active_escalations(self, client):
        engine = MagicMock()
        engine.active_runs = 3
        app.state.escalation_engine = engine
        try:
            with patch(
                "service_monitor.routers.health.check_database_connection",
                new_callable=AsyncMock,
                return_value=True,
            ):
                response = await client.get("/health")
        finally:
            del app.state.escalation_engine

        assert response.json()["active_escalations"] == 3


class TestProbes:
    @pytest.mark.asyncio
    async def test_liveness_never_checks_database(self, client):
        with patch(
            "service_monitor.routers.health.check_database_connection",
            new_callable=AsyncMock,
        ) as mock_db:
            response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}
        mock_db.assert_not_called()

    @pytest.mark.asyncio
    async def test_readiness_fails_without_database(self, client):
        with patch(
            "service_monitor.routers.health.check_database_connection",
            new_callable=AsyncMock,
            return_value=False,
        ):
            response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestCorrelationId:
    @pytest.mark.asyncio
    async def test_incoming_correlation_id_is_echoed(self, client):
        response = await client.get(
            "/health/live", headers={CORRELATION_ID_HEADER: "req-42"}
        )

        assert response.headers[CORRELATION_ID_HEADER] == "req-42"

    @pytest.mark.asyncio
    async def test_correlation_id_generated_when_missing(self, client):
        response = await client.get("/health/live")

        assert response.headers[CORRELATION_ID_HEADER]
