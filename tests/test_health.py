"""
Health endpoint tests.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import StubLanguageModel


@pytest.fixture
def client(api):
    """Create a test client for the FastAPI app."""
    with TestClient(api.app) as client:
        yield client


def test_health_endpoint(client):
    """Test that the /health endpoint returns 200 OK."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert "data" in data
    assert data["data"]["status"] == "healthy"
    assert "timestamp" in data["data"]
    assert "version" in data["data"]
    assert "service" in data["data"]


def test_health_ready_endpoint(client):
    """Recognizer and model both configured: ready."""
    response = client.get("/health/ready")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "ready"
    assert data["checks"] == {
        "speech_recognizer": "configured",
        "language_model": "configured",
        "live_sessions": 0,
    }


def test_health_ready_degraded_without_language_model(api):
    from clinicstream.api import deps

    api.app.dependency_overrides[deps.get_language_model] = lambda: StubLanguageModel(["{}"], configured=False)
    with TestClient(api.app) as client:
        response = client.get("/health/ready")

    data = response.json()
    assert response.status_code == 200
    assert data["data"]["status"] == "degraded"
    assert data["data"]["checks"]["language_model"] == "not_configured"
    assert data["message"] == "Some services unavailable"


def test_root_endpoint(client):
    """Test that the root endpoint returns API information."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "service" in data
    assert "version" in data
    assert data["status"] == "running"
    assert data["endpoints"]["stream"] == "WS /ws/consultations/{consultation_id}"
