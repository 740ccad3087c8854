"""Integration tests for the health endpoint and generic HTTP errors."""

import httpx
import pytest

from soundmate import __version__

pytestmark = pytest.mark.integration


class TestHealth:
    async def test_healthy(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["checks"] == {
            "store": True,
            "refresh_scheduler": False,
            "feature_worker": None,
        }
        assert data["store"]["backend"] == "memory"
        assert data["store"]["playback_events"] == 0

    async def test_not_under_api_prefix(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/health")

        assert response.status_code == 404


class TestGenericErrors:
    async def test_unknown_route_uses_envelope(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/nothing-here")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"

    async def test_wrong_method(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/music/playback")

        assert response.status_code == 405
        assert response.json()["error"]["code"] == "METHOD_NOT_ALLOWED"

    async def test_correlation_id_is_echoed(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/map/hexagons",
            params={"north": 1, "south": 0, "east": 1, "west": 0},
            headers={"X-Correlation-ID": "trace-123"},
        )

        assert response.headers["X-Correlation-ID"] == "trace-123"
