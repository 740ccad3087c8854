"""Integration tests for the music endpoints."""

from typing import Any

import h3
import httpx
import pytest
from fastapi import FastAPI

from soundmate.domain.entities import User

pytestmark = pytest.mark.integration

BERLIN_CELL = h3.latlng_to_cell(52.5219, 13.4132, 9)


class TestRecordPlayback:
    """Happy path and duplicate handling."""

    async def test_records_playback(
        self,
        app: FastAPI,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        response = await client.post(
            "/api/music/playback", json=playback_body, headers=auth_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert "timestamp" in body
        data = body["data"]
        assert data["message"] == "Playback recorded successfully"
        assert data["hex_id"] == BERLIN_CELL
        assert data["playback_id"]
        # feature fetching is switched off in the test settings
        assert data["features_processing"] is False

        async with app.state.store.transaction() as repo:
            aggregate = await repo.get_cell_aggregate(BERLIN_CELL)
            ranked = await repo.get_top_tracks(BERLIN_CELL, 10)
        assert aggregate is not None
        assert aggregate.total_plays == 1
        assert [r.track.external_id for r in ranked] == ["4uLU6hMCjMI75M1A2tKUQC"]

    async def test_duplicate_is_acknowledged_but_ignored(
        self,
        app: FastAPI,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        await client.post("/api/music/playback", json=playback_body, headers=auth_headers)

        response = await client.post(
            "/api/music/playback", json=playback_body, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["message"] == "Duplicate playback ignored"
        async with app.state.store.transaction() as repo:
            aggregate = await repo.get_cell_aggregate(BERLIN_CELL)
        assert aggregate is not None
        assert aggregate.total_plays == 1

    async def test_explicit_hex_id_is_normalised(
        self,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        playback_body["hex_id"] = BERLIN_CELL.upper()

        response = await client.post(
            "/api/music/playback", json=playback_body, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["hex_id"] == BERLIN_CELL


class TestPlaybackErrors:
    """Error envelopes."""

    async def test_missing_token(
        self, client: httpx.AsyncClient, playback_body: dict[str, Any]
    ) -> None:
        response = await client.post("/api/music/playback", json=playback_body)

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "MISSING_TOKEN"

    async def test_unknown_token(
        self, client: httpx.AsyncClient, playback_body: dict[str, Any]
    ) -> None:
        response = await client.post(
            "/api/music/playback",
            json=playback_body,
            headers={"Authorization": "Bearer nobody"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "USER_NOT_FOUND"

    async def test_invalid_location(
        self,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        playback_body["location"]["lat"] = 123.0

        response = await client.post(
            "/api/music/playback", json=playback_body, headers=auth_headers
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert [d["field"] for d in error["details"]] == ["location.lat"]

    async def test_missing_track_name(
        self,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        del playback_body["track_data"]["name"]

        response = await client.post(
            "/api/music/playback", json=playback_body, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize(
        ("hex_id", "code"),
        [
            ("zzzz", "VALIDATION_ERROR"),
            ("abc", "INVALID_HEX_ID"),
            # wider than a 64-bit index
            ("8928308280fffffff", "INVALID_HEX_ID"),
        ],
    )
    async def test_bad_hex_id(
        self,
        app: FastAPI,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
        hex_id: str,
        code: str,
    ) -> None:
        playback_body["hex_id"] = hex_id

        response = await client.post(
            "/api/music/playback", json=playback_body, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == code
        async with app.state.store.transaction() as repo:
            assert await repo.query_active_cells(10) == []


class TestHistory:
    """GET /api/music/history"""

    async def test_returns_own_plays(
        self,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        await client.post("/api/music/playback", json=playback_body, headers=auth_headers)

        response = await client.get("/api/music/history", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["limit"] == 20
        assert data["offset"] == 0
        entry = data["tracks"][0]
        assert entry["spotify_track_id"] == "4uLU6hMCjMI75M1A2tKUQC"
        assert entry["name"] == "Mr. Brightside"
        assert entry["hex_id"] == BERLIN_CELL
        assert entry["progress_ms"] == 15_000

    async def test_empty_history(
        self, client: httpx.AsyncClient, api_listener: User, auth_headers: dict[str, str]
    ) -> None:
        response = await client.get("/api/music/history", headers=auth_headers)

        assert response.json()["data"]["tracks"] == []
        assert response.json()["data"]["total"] == 0

    async def test_missing_token(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/music/history")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "MISSING_TOKEN"

    async def test_limit_is_bounded(
        self, client: httpx.AsyncClient, api_listener: User, auth_headers: dict[str, str]
    ) -> None:
        response = await client.get(
            "/api/music/history", params={"limit": 101}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestTrackDetail:
    """GET /api/music/tracks/{track_id}"""

    async def test_by_spotify_id(self, client: httpx.AsyncClient, colored_cell: str) -> None:
        response = await client.get("/api/music/tracks/4uLU6hMCjMI75M1A2tKUQC")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["track"]["spotify_track_id"] == "4uLU6hMCjMI75M1A2tKUQC"
        assert data["track"]["audio_features"]["energy"] == pytest.approx(0.85)
        stats = data["playback_stats"]
        assert stats["total_plays"] == 1
        assert stats["unique_users"] == 1
        assert stats["unique_locations"] == 1
        assert stats["top_hex"]["hex_id"] == colored_cell
        assert [p["hex_id"] for p in data["hex_performance"]] == [colored_cell]

    async def test_by_internal_id(
        self,
        client: httpx.AsyncClient,
        api_listener: User,
        auth_headers: dict[str, str],
        playback_body: dict[str, Any],
    ) -> None:
        recorded = await client.post(
            "/api/music/playback", json=playback_body, headers=auth_headers
        )
        track_id = recorded.json()["data"]["track_id"]

        response = await client.get(f"/api/music/tracks/{track_id}")

        assert response.status_code == 200
        assert response.json()["data"]["track"]["id"] == track_id

    async def test_unknown_track(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/music/tracks/unknown")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TRACK_NOT_FOUND"
