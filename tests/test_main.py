"""
Test suite for the FastAPI main application.

Tests cover health endpoints, middleware, engine and global exception
handlers, CORS configuration, and application lifecycle.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import Depends, FastAPI, status
from fastapi.testclient import TestClient
from httpx import AsyncClient
from pydantic import BaseModel

from autoservice.core.exceptions import (
    EligibilityError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from autoservice.main import app


def _handler_app() -> FastAPI:
    """Bare app carrying the main application's exception handlers."""
    test_app = FastAPI()
    for handler in app.exception_handlers:
        test_app.add_exception_handler(handler, app.exception_handlers[handler])
    return test_app


# ============================================================================
# UNIT TESTS - Health Endpoints
# ============================================================================


class TestHealthEndpoints:
    """Test suite for health, readiness and liveness endpoints."""

    def test_health_check_returns_200(self, test_client: TestClient):
        """Health endpoint returns 200 with service metadata."""
        response = test_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["environment"] == "test"
        assert all(key in data for key in ["service", "version"])

    def test_liveness_check_returns_alive(self, test_client: TestClient):
        """Liveness never touches the database."""
        response = test_client.get("/live")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "alive"

    @patch("autoservice.main.check_database_health", new_callable=AsyncMock)
    def test_readiness_check_returns_200_when_database_up(
        self, mock_health: AsyncMock, test_client: TestClient
    ):
        """
        Readiness reports ready when the database answers.

        The database check is made with a single attempt so that orchestration is
        not held up by retries.
        """
        mock_health.return_value = True

        response = test_client.get("/ready")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ready"
        assert data["dependencies_ready"] is True
        assert data["database"] == "healthy"
        mock_health.assert_awaited_once_with(max_retries=1)

    @patch("autoservice.main.check_database_health", new_callable=AsyncMock)
    def test_readiness_check_returns_503_when_database_down(
        self, mock_health: AsyncMock, test_client: TestClient
    ):
        """Readiness reports 503 while the database is unreachable."""
        mock_health.return_value = False

        response = test_client.get("/ready")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        data = response.json()
        assert data["status"] == "not_ready"
        assert data["dependencies_ready"] is False


# ============================================================================
# INTEGRATION TESTS - Async Client
# ============================================================================


class TestAsyncHealthEndpoints:
    """Test suite for async health endpoint access."""

    @pytest.mark.asyncio
    async def test_health_check_async(self, async_client: AsyncClient):
        """Health endpoint works through the ASGI transport."""
        response = await async_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_concurrent_health_checks(self, async_client: AsyncClient):
        """Concurrent requests keep their own request ids."""
        tasks = [async_client.get("/health") for _ in range(10)]
        responses = await asyncio.gather(*tasks)

        assert all(r.status_code == status.HTTP_200_OK for r in responses)
        request_ids = {r.headers["X-Request-ID"] for r in responses}
        assert len(request_ids) == 10


# ============================================================================
# UNIT TESTS - Middleware
# ============================================================================


class TestRequestLoggingMiddleware:
    """Test suite for request logging middleware functionality."""

    def test_middleware_adds_request_id_header(self, test_client: TestClient):
        """Every response carries a correlation id."""
        response = test_client.get("/health")

        assert len(response.headers["X-Request-ID"]) > 0

    def test_middleware_preserves_custom_request_id(self, test_client: TestClient):
        """A client-supplied request id is echoed back."""
        response = test_client.get("/health", headers={"X-Request-ID": "test-request-123"})

        assert response.headers["X-Request-ID"] == "test-request-123"

    def test_middleware_generates_unique_request_ids(self, test_client: TestClient):
        response1 = test_client.get("/health")
        response2 = test_client.get("/health")

        assert response1.headers["X-Request-ID"] != response2.headers["X-Request-ID"]

    @patch("autoservice.main.logger")
    def test_middleware_logs_request_received(
        self, mock_logger: MagicMock, test_client: TestClient
    ):
        """Incoming requests are logged with method, path and client."""
        test_client.get("/health")

        mock_logger.info.assert_any_call(
            "Request received",
            method="GET",
            path="/health",
            client_host="testclient",
        )

    @patch("autoservice.main.logger")
    def test_middleware_logs_request_completed(
        self, mock_logger: MagicMock, test_client: TestClient
    ):
        test_client.get("/health")

        mock_logger.info.assert_any_call(
            "Request completed",
            method="GET",
            path="/health",
            status_code=200,
        )

    @patch("autoservice.main.set_actor")
    def test_middleware_sets_normalized_actor(
        self, mock_set_actor: MagicMock, test_client: TestClient
    ):
        """The X-Actor header is trimmed and lowercased for log correlation."""
        test_client.get("/health", headers={"X-Actor": "  Advisor@Garage.com "})

        mock_set_actor.assert_called_with("advisor@garage.com")


# ============================================================================
# UNIT TESTS - Exception Handlers
# ============================================================================


class TestExceptionHandlers:
    """Test suite for validation, engine and global exception handling."""

    def test_validation_error_response_structure(self):
        """
        Request validation errors return 422 with details and request id.
        """
        test_app = _handler_app()

        class Payload(BaseModel):
            required_field: str

        @test_app.post("/test")
        async def endpoint(data: Payload):
            return {"status": "ok"}

        with TestClient(test_app) as client:
            response = client.post("/test", json={})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        data = response.json()
        assert data["error"] == "Validation Error"
        assert data["details"][0]["loc"] == ["body", "required_field"]
        assert "request_id" in data

    @pytest.mark.parametrize(
        "error,expected_status",
        [
            (ValidationError("Missing job order number"), 400),
            (NotFoundError("Job order not found"), 404),
            (EligibilityError("Order is not eligible for an exit permit"), 409),
            (StoreError("Failed to save job order: connection reset"), 503),
        ],
    )
    def test_engine_error_handler_maps_status(self, error, expected_status):
        """Engine errors escaping a route are mapped to their HTTP status."""
        test_app = _handler_app()

        def failing_dependency():
            raise error

        @test_app.get("/fail")
        async def endpoint(_: None = Depends(failing_dependency)):
            return {"status": "ok"}

        with TestClient(test_app) as client:
            response = client.get("/fail")

        assert response.status_code == expected_status
        data = response.json()
        assert data["error"] == type(error).__name__
        assert data["message"] == error.message

    @patch("autoservice.main.logger")
    def test_global_exception_handler_logs_error(self, mock_logger: MagicMock):
        """Unexpected exceptions are logged with their type."""
        test_app = _handler_app()

        @test_app.get("/error")
        async def endpoint():
            raise ValueError("Test error")

        with TestClient(test_app, raise_server_exceptions=False) as client:
            client.get("/error")

        mock_logger.error.assert_called_once()
        assert "Unhandled exception" in mock_logger.error.call_args[0]

    def test_global_exception_handler_hides_details(self):
        """Unexpected exceptions return a generic 500 body."""
        test_app = _handler_app()

        @test_app.get("/error")
        async def endpoint():
            raise ValueError("Test error")

        with TestClient(test_app, raise_server_exceptions=False) as client:
            response = client.get("/error")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        data = response.json()
        assert data["error"] == "Internal Server Error"
        assert "Test error" not in data["message"]


# ============================================================================
# INTEGRATION TESTS - CORS Configuration
# ============================================================================


class TestCORSConfiguration:
    """Test suite for CORS middleware configuration."""

    def _preflight(self, client: TestClient, method: str = "GET"):
        return client.options(
            "/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": method,
            },
        )

    def test_cors_allows_configured_origins(self, test_client: TestClient):
        response = self._preflight(test_client)

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert response.headers.get("access-control-allow-credentials") == "true"

    def test_cors_exposes_request_id_header(self, test_client: TestClient):
        """The correlation id is readable by browser clients."""
        response = test_client.get("/health", headers={"Origin": "http://localhost:3000"})

        assert "X-Request-ID" in response.headers.get("access-control-expose-headers", "")

    def test_cors_allows_post(self, test_client: TestClient):
        response = self._preflight(test_client, "POST")

        allowed_methods = response.headers.get("access-control-allow-methods", "")
        assert "POST" in allowed_methods or "*" in allowed_methods


# ============================================================================
# INTEGRATION TESTS - Application Lifecycle
# ============================================================================


class TestApplicationLifecycle:
    """Test suite for application startup and shutdown."""

    @patch("autoservice.main.close_database_connections", new_callable=AsyncMock)
    @patch("autoservice.main.logger")
    def test_lifespan_logs_and_closes_connections(
        self, mock_logger: MagicMock, mock_close: AsyncMock
    ):
        """Startup is logged; shutdown disposes of the database engine."""
        with TestClient(app):
            pass

        messages = [call.args[0] for call in mock_logger.info.call_args_list if call.args]
        assert "Application starting" in messages
        assert "Application shutting down" in messages
        mock_close.assert_awaited_once()

    def test_application_metadata(self):
        assert app.title == "AutoService Job Orders API"
        assert app.docs_url == "/docs"
        assert app.redoc_url == "/redoc"

    def test_routers_mounted_under_v1_prefix(self):
        """Job order, payment and approval routes live under /api/v1."""
        paths = {route.path for route in app.routes}

        assert "/api/v1/job-orders" in paths
        assert "/api/v1/job-orders/{order_number}/payments/refund" in paths
        assert "/api/v1/approvals/{request_id}/decision" in paths
