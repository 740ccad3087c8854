"""Unit tests for RequestLoggingMiddleware."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from starlette.middleware.base import BaseHTTPMiddleware

from soundmate.infrastructure.observability.middleware import RequestLoggingMiddleware

MIDDLEWARE = "soundmate.infrastructure.observability.middleware"


class TestRequestLoggingMiddleware:
    """Test suite for RequestLoggingMiddleware."""

    @pytest.fixture
    def app(self) -> FastAPI:
        """Create a FastAPI app with middleware for testing."""
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware, log_request_body=False)

        @app.get("/test")
        async def test_endpoint():
            return {"message": "test"}

        @app.post("/test")
        async def test_post_endpoint():
            return {"message": "post test"}

        @app.get("/missing")
        async def missing_endpoint():
            raise HTTPException(status_code=404, detail="nope")

        @app.get("/health")
        async def health_endpoint():
            return {"status": "healthy"}

        @app.get("/error")
        async def error_endpoint():
            raise ValueError("Test error")

        return app

    @pytest.fixture
    def client(self, app: FastAPI) -> TestClient:
        """Create a test client."""
        return TestClient(app)

    def test_middleware_initialization_default(self) -> None:
        """Test middleware initialization with default parameters."""
        middleware = RequestLoggingMiddleware(app=FastAPI())

        assert middleware.log_request_body is False
        assert middleware.skip_paths == ("/health",)
        assert isinstance(middleware, BaseHTTPMiddleware)

    def test_successful_request_logs_completion(self, client: TestClient) -> None:
        """Successful requests log one line with status and duration."""
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            response = client.get("/test")

            assert response.status_code == 200
            assert mock_logger.info.call_count == 1

            # "✓ GET /test → 200 (Xms)"
            log_message = mock_logger.info.call_args_list[0][0][0]
            assert log_message.startswith("✓")
            assert "GET /test" in log_message
            assert "200" in log_message
            assert "ms)" in log_message

    def test_client_error_is_marked(self, client: TestClient) -> None:
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            response = client.get("/missing")

            assert response.status_code == 404
            log_message = mock_logger.info.call_args_list[0][0][0]
            assert log_message.startswith("✗")
            assert "404" in log_message

    def test_health_checks_are_not_logged(self, client: TestClient) -> None:
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            response = client.get("/health")

            assert response.status_code == 200
            assert mock_logger.info.call_count == 0
            # still gets a correlation ID
            assert "X-Correlation-ID" in response.headers

    def test_request_with_correlation_id_header(self, client: TestClient) -> None:
        """Test request with X-Correlation-ID header."""
        with (
            patch(f"{MIDDLEWARE}.set_correlation_id") as mock_set_correlation_id,
            patch(f"{MIDDLEWARE}.get_correlation_id", return_value="test-correlation-id"),
        ):
            response = client.get(
                "/test", headers={"X-Correlation-ID": "custom-correlation-id"}
            )

            assert response.status_code == 200
            mock_set_correlation_id.assert_called_once_with("custom-correlation-id")
            assert response.headers["X-Correlation-ID"] == "test-correlation-id"

    def test_request_without_correlation_id_header(self, client: TestClient) -> None:
        """Without a header, None is passed so a fresh ID gets generated."""
        with patch(f"{MIDDLEWARE}.set_correlation_id") as mock_set_correlation_id:
            client.get("/test")

            mock_set_correlation_id.assert_called_once_with(None)

    def test_generated_correlation_id_is_echoed(self, client: TestClient) -> None:
        response = client.get("/test")

        assert len(response.headers["X-Correlation-ID"]) == 36

    def test_error_request_logs_exception(self, client: TestClient) -> None:
        """Test that failed requests log exception details."""
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            with pytest.raises(ValueError):
                client.get("/error")

            assert mock_logger.exception.call_count == 1
            exception_call = mock_logger.exception.call_args
            log_message = exception_call[0][0]
            assert "GET" in log_message
            assert "/error" in log_message
            assert exception_call.kwargs["extra"]["error_type"] == "ValueError"

    def test_multiple_requests_independent_logging(self, client: TestClient) -> None:
        """Test that multiple requests are logged independently."""
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            client.get("/test")
            client.post("/test")
            client.get("/test?param=value")

            assert mock_logger.info.call_count == 3
            assert "POST" in mock_logger.info.call_args_list[1][0][0]


class TestRequestBodyLogging:
    """log_request_body=True writes bodies at DEBUG level."""

    def test_post_body_is_logged(self) -> None:
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware, log_request_body=True)

        @app.post("/echo")
        async def echo_endpoint():
            return {"ok": True}

        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            response = TestClient(app).post("/echo", json={"lat": 52.52})

            assert response.status_code == 200
            assert mock_logger.debug.call_count == 1
            assert '"lat"' in mock_logger.debug.call_args.kwargs["extra"]["body"]

    def test_get_body_is_not_logged(self) -> None:
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware, log_request_body=True)

        @app.get("/echo")
        async def echo_endpoint():
            return {"ok": True}

        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            TestClient(app).get("/echo")

            assert mock_logger.debug.call_count == 0
