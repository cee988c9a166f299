"""
Tests for health check endpoint.
"""
from unittest.mock import MagicMock

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError

from contract_auditor.core.database import get_db
from contract_auditor.main import app


def test_health_endpoint_returns_ok(client):
    """Test that /api/v1/health returns ok when DB is healthy."""
    response = client.get("/api/v1/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["ok"] is True
    assert data["db"] is True
    assert "environment" in data
    assert data["engine"] == {"provider": "chaingpt", "configured": False}
    assert data["event_store"]["mode"] == "ephemeral"
    assert data["event_store"]["buffer_capacity"] == 100


def test_health_reports_buffer_occupancy(client, event_store):
    event_store.append_start("a@example.com", "Vault", 10, "req_1")
    response = client.get("/api/v1/health")
    assert response.json()["event_store"]["buffered_events"] == 1


def test_health_endpoint_with_db_failure(client):
    """Test that /api/v1/health returns 503 when DB is down."""
    def failing_get_db():
        session = MagicMock()
        session.execute.side_effect = SQLAlchemyError("Simulated DB failure")
        yield session

    app.dependency_overrides[get_db] = failing_get_db

    response = client.get("/api/v1/health")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["detail"] == "Database connection failed"


def test_health_endpoint_trace_id_header(client):
    """Test that responses carry the trace id set by RequestLoggingMiddleware."""
    response = client.get("/api/v1/health")

    assert "X-Trace-ID" in response.headers
    assert len(response.headers["X-Trace-ID"]) > 0


def test_root(client):
    response = client.get("/")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Contract Auditor API"
