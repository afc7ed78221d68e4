"""
Tests for infrastructure endpoints and the DRF exception handler.
"""

from unittest.mock import MagicMock, patch

from rest_framework.exceptions import NotAuthenticated

from core.exception_handler import application_exception_handler
from core.exceptions import NotFoundError


class TestHealthCheck:
    def test_healthy_with_local_backends(self, db, client):
        response = client.get("/health/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["cache"] == "connected"
        assert body["channel_layer"] == "connected"

    def test_database_failure_returns_503(self, db, client):
        with patch("core.views.connection") as mock_connection:
            mock_connection.cursor.side_effect = Exception("db down")
            response = client.get("/health/")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"

    def test_cache_failure_is_degraded_not_fatal(self, db, client):
        """
        Why it matters: Without the cache, realtime delivery degrades but
        messages still persist, so the instance should stay in rotation.
        """
        with patch("core.views.cache") as mock_cache:
            mock_cache.set.side_effect = Exception("redis down")
            response = client.get("/health/")

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"


class TestApplicationExceptionHandler:
    def test_renders_application_errors(self):
        exc = NotFoundError(
            "Conversation not found",
            error_code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": 3},
        )

        response = application_exception_handler(exc, {"view": MagicMock()})

        assert response.status_code == 404
        assert response.data == {
            "error": "Conversation not found",
            "error_code": "CONVERSATION_NOT_FOUND",
            "details": {"conversation_id": 3},
        }

    def test_delegates_drf_exceptions(self):
        response = application_exception_handler(NotAuthenticated(), {"view": None})

        assert response.status_code == 401

    def test_unknown_exceptions_are_not_handled(self):
        assert application_exception_handler(ValueError("x"), {}) is None
