"""Integration tests for the location endpoints."""

import h3
import httpx
import pytest
from fastapi import FastAPI

pytestmark = pytest.mark.integration


class TestLocationUpdate:
    """POST /api/location/update"""

    async def test_resolves_cell_and_creates_row(
        self, app: FastAPI, client: httpx.AsyncClient
    ) -> None:
        response = await client.post(
            "/api/location/update", json={"lat": 52.5219, "lng": 13.4132}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["hex_id"] == h3.latlng_to_cell(52.5219, 13.4132, 9)
        assert data["resolution"] == 9
        assert data["input_coordinates"] == {"lat": 52.5219, "lng": 13.4132}

        async with app.state.store.transaction() as repo:
            aggregate = await repo.get_cell_aggregate(data["hex_id"])
        assert aggregate is not None
        assert aggregate.total_plays == 0

    async def test_rejects_out_of_range(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/location/update", json={"lat": 52.5, "lng": 190})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["field"] == "lng"


class TestNearbyHexes:
    """GET /api/location/hex/nearby"""

    async def test_lists_whole_disk(
        self, client: httpx.AsyncClient, colored_cell: str
    ) -> None:
        response = await client.get(
            "/api/location/hex/nearby", params={"lat": 52.5219, "lng": 13.4132, "rings": 1}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["center_hex"] == colored_cell
        assert data["total"] == 7
        # the only active cell sorts first
        assert data["nearby_hexes"][0]["hex_id"] == colored_cell
        assert data["nearby_hexes"][0]["total_plays"] == 1
        assert all(h["total_plays"] == 0 for h in data["nearby_hexes"][1:])

    async def test_missing_coordinates(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/location/hex/nearby", params={"lng": 13.4})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_COORDINATES"

    async def test_rings_are_bounded(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/location/hex/nearby", params={"lat": 52.5, "lng": 13.4, "rings": 9}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
