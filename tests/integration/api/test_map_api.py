"""Integration tests for the map endpoints."""

from typing import Any

import httpx
import pytest

from soundmate.domain.entities import User

pytestmark = pytest.mark.integration

BERLIN_BOUNDS = {"north": 52.6, "south": 52.4, "east": 13.6, "west": 13.2}


class TestHexagonsByBounds:
    """GET /api/map/hexagons"""

    async def test_returns_colored_cells(
        self, client: httpx.AsyncClient, colored_cell: str
    ) -> None:
        response = await client.get("/api/map/hexagons", params=BERLIN_BOUNDS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total_hexes_found"] == 1
        assert data["bounds"] == BERLIN_BOUNDS
        hexagon = data["hexagons"][0]
        assert hexagon["hex_id"] == colored_cell
        assert hexagon["color_hex"].startswith("#")
        assert hexagon["activity_level"] == "low"
        assert hexagon["top_tracks"][0]["spotify_track_id"] == "4uLU6hMCjMI75M1A2tKUQC"

    async def test_cells_outside_viewport_are_excluded(
        self, client: httpx.AsyncClient, colored_cell: str
    ) -> None:
        # San Francisco
        params = {"north": 37.9, "south": 37.6, "east": -122.3, "west": -122.6}

        response = await client.get("/api/map/hexagons", params=params)

        assert response.json()["data"]["hexagons"] == []

    async def test_missing_bounds(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/map/hexagons", params={"north": 52.6})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "MISSING_BOUNDS"

    async def test_inverted_bounds(self, client: httpx.AsyncClient) -> None:
        params = {**BERLIN_BOUNDS, "north": 52.4, "south": 52.6}

        response = await client.get("/api/map/hexagons", params=params)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_BOUNDS"
        assert error["details"] == {"north": 52.4, "south": 52.6}

    async def test_out_of_range_bound(self, client: httpx.AsyncClient) -> None:
        params = {**BERLIN_BOUNDS, "north": 95}

        response = await client.get("/api/map/hexagons", params=params)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestMapData:
    """GET /api/map/data"""

    async def test_center_query(self, client: httpx.AsyncClient, colored_cell: str) -> None:
        response = await client.get(
            "/api/map/data", params={"lat": 52.5219, "lng": 13.4132, "zoom": 15}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [h["hex_id"] for h in data["hexes"]] == [colored_cell]
        assert data["users_count"] == 1
        assert len(data["tracks"]) == 1
        assert data["search_area"]["center_hex"] == colored_cell
        assert data["search_area"]["disk_radius"] == 1
        assert data["search_area"]["total_hexes_searched"] == 7

    async def test_missing_coordinates(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/map/data", params={"lat": 52.52})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_COORDINATES"


class TestHexDetail:
    """GET /api/map/hex/{hex_id} and its track list."""

    async def test_detail(self, client: httpx.AsyncClient, colored_cell: str) -> None:
        response = await client.get(f"/api/map/hex/{colored_cell}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["hex_info"]["hex_id"] == colored_cell
        assert data["hex_info"]["total_plays"] == 1
        assert len(data["hex_info"]["boundary"]) >= 6
        assert isinstance(data["hex_info"]["mood_tags"], list)
        assert data["recent_activity"] == {"plays_24h": 1}
        assert len(data["top_tracks"]) == 1

    async def test_upper_case_id_is_accepted(
        self, client: httpx.AsyncClient, colored_cell: str
    ) -> None:
        response = await client.get(f"/api/map/hex/{colored_cell.upper()}")

        assert response.status_code == 200
        assert response.json()["data"]["hex_info"]["hex_id"] == colored_cell

    async def test_invalid_hex_id(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/map/hex/not-a-hex")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_HEX_ID"

    async def test_oversized_hex_id(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/map/hex/8928308280fffffff")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_HEX_ID"

    async def test_unknown_hex(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/map/hex/8928308280fffff")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "HEX_NOT_FOUND"

    async def test_track_pagination(
        self, client: httpx.AsyncClient, colored_cell: str
    ) -> None:
        first = await client.get(
            f"/api/map/hex/{colored_cell}/tracks", params={"limit": 1, "offset": 0}
        )
        second = await client.get(
            f"/api/map/hex/{colored_cell}/tracks", params={"limit": 1, "offset": 1}
        )

        assert first.status_code == 200
        assert first.json()["data"]["total"] == 1
        assert len(first.json()["data"]["tracks"]) == 1
        assert second.json()["data"]["tracks"] == []

    async def test_track_limit_is_bounded(
        self, client: httpx.AsyncClient, colored_cell: str
    ) -> None:
        response = await client.get(
            f"/api/map/hex/{colored_cell}/tracks", params={"limit": 500}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestUncoloredCells:
    """GET /api/map/hexagons?include_uncolored=true"""

    async def test_cell_without_features_is_hidden_by_default(
        self,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        await client.post("/api/music/playback", json=playback_body, headers=auth_headers)

        hidden = await client.get("/api/map/hexagons", params=BERLIN_BOUNDS)
        shown = await client.get(
            "/api/map/hexagons", params={**BERLIN_BOUNDS, "include_uncolored": "true"}
        )

        assert hidden.json()["data"]["hexagons"] == []
        hexagons = shown.json()["data"]["hexagons"]
        assert len(hexagons) == 1
        assert hexagons[0]["color_hex"] is None
        assert hexagons[0]["total_plays"] == 1


class TestActivityBounds:
    """GET /api/map/bounds"""

    async def test_empty_map(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/map/bounds")

        assert response.status_code == 200
        assert response.json()["data"] == {"bounds": None, "center": None, "total_hexes": 0}

    async def test_single_cell(self, client: httpx.AsyncClient, colored_cell: str) -> None:
        response = await client.get("/api/map/bounds")

        data = response.json()["data"]
        assert data["total_hexes"] == 1
        bounds = data["bounds"]
        assert bounds["north"] == bounds["south"]
        assert bounds["east"] == bounds["west"]
        assert BERLIN_BOUNDS["south"] < bounds["north"] < BERLIN_BOUNDS["north"]
        assert data["center"] == {"lat": bounds["north"], "lng": bounds["east"]}
