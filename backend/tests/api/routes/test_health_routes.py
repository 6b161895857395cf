"""Tests for the health route and the application-level error handlers."""

from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from clinica.api.deps import get_current_user
from clinica.api.routes import health
from clinica.core.circuit_breaker import CircuitBreakerOpen
from clinica.core.exceptions import DatabaseError
from clinica.db.clinic_repository import get_clinic_repository, get_supabase_circuit_breaker
from clinica.main import app


def create_test_app() -> FastAPI:
    """Create minimal FastAPI app for testing."""
    test_app = FastAPI()
    test_app.include_router(health.router, prefix="/api/v1")
    return test_app


@pytest.fixture(autouse=True)
def closed_breaker() -> Any:
    breaker = get_supabase_circuit_breaker()
    breaker.record_success()
    yield breaker
    breaker.record_success()


@pytest.fixture
def app_client(repository: Any) -> TestClient:
    """Full application client with mocked authentication."""
    user = MagicMock()
    user.id = "test-user-123"

    async def override_get_current_user() -> MagicMock:
        return user

    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_clinic_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


# --- Health ---


def test_health_reports_closed_breaker() -> None:
    response = TestClient(create_test_app()).get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["store"]["supabase"]["state"] == "closed"
    assert data["store"]["supabase"]["retry_in_seconds"] is None
    assert data["version"] == "0.1.0"
    assert data["uptime_seconds"] >= 0


def test_health_degraded_while_breaker_open(closed_breaker: Any) -> None:
    for _ in range(closed_breaker.failure_threshold):
        closed_breaker.record_failure()

    response = TestClient(create_test_app()).get("/api/v1/health")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "degraded"
    assert data["store"]["supabase"]["state"] == "open"
    assert data["store"]["supabase"]["consecutive_failures"] == closed_breaker.failure_threshold


def test_root_liveness() -> None:
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


# --- Error handlers ---


def test_database_error_detail_is_sanitized(app_client: TestClient, repository: Any) -> None:
    repository.fail_on["get_profile"] = DatabaseError("connection to 10.0.0.5 refused")

    response = app_client.get("/api/v1/integrity/me")

    assert response.status_code == 500
    data = response.json()
    assert data["code"] == "DATABASE_ERROR"
    assert data["detail"] == "A database error occurred. Please try again."
    assert "10.0.0.5" not in response.text
    assert data["request_id"]


def test_open_circuit_maps_to_503(app_client: TestClient, repository: Any) -> None:
    repository.fail_on["get_profile"] = CircuitBreakerOpen("supabase")

    response = app_client.get("/api/v1/integrity/me")

    assert response.status_code == 503
    assert response.json()["code"] == "SERVICE_UNAVAILABLE"


def test_error_response_echoes_request_id(app_client: TestClient, repository: Any) -> None:
    repository.fail_on["get_profile"] = DatabaseError("boom")

    response = app_client.get("/api/v1/integrity/me", headers={"X-Request-ID": "req-42"})

    assert response.json()["request_id"] == "req-42"
    assert response.headers["X-Request-ID"] == "req-42"
