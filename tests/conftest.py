"""Shared fixtures for unit and integration tests."""

from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from soundmate.application.services.feature_color_mapper import features_to_color
from soundmate.config import AggregationSettings, Settings
from soundmate.domain.entities import User
from soundmate.domain.value_objects import AudioFeatures, Coordinate, TrackDescriptor
from soundmate.infrastructure.grid import H3GridIndex
from soundmate.infrastructure.persistence import InMemoryAggregationStore
from soundmate.main import create_app

# Berlin, Alexanderplatz. Everything in the tests happens around here.
BERLIN_LAT = 52.5219
BERLIN_LNG = 13.4132

LISTENER_TOKEN = "token-listener-1"


def _make_track(external_id: str = "4uLU6hMCjMI75M1A2tKUQC", **overrides: Any) -> TrackDescriptor:
    values: dict[str, Any] = {
        "external_id": external_id,
        "name": f"Song {external_id[:6]}",
        "artist": "Test Artist",
        "album": "Test Album",
        "duration_ms": 210_000,
    }
    values.update(overrides)
    return TrackDescriptor(**values)


@pytest.fixture
def make_track() -> Callable[..., TrackDescriptor]:
    """Factory for track descriptors with sensible defaults."""
    return _make_track


@pytest.fixture
def aggregation_settings() -> AggregationSettings:
    return AggregationSettings(force_batch_pause_seconds=0)


@pytest.fixture
def grid() -> H3GridIndex:
    return H3GridIndex(9)


@pytest.fixture
def berlin() -> Coordinate:
    return Coordinate(lat=BERLIN_LAT, lng=BERLIN_LNG)


@pytest.fixture
def memory_store() -> InMemoryAggregationStore:
    return InMemoryAggregationStore()


@pytest.fixture
async def listener(memory_store: InMemoryAggregationStore) -> User:
    """User seeded into the in-memory store, authenticated by LISTENER_TOKEN."""
    async with memory_store.transaction() as repo:
        return await repo.upsert_user(
            User(
                id="user-1",
                external_id="spotify-user-1",
                display_name="Listener One",
                access_token=LISTENER_TOKEN,
            )
        )


@pytest.fixture
def app_settings() -> Settings:
    """Settings for booting the app without background tasks or network access."""
    return Settings(
        database={"backend": "memory"},
        aggregation={"enabled": False, "force_batch_pause_seconds": 0},
        feature_fetch={"enabled": False},
        cache={"enabled": True},
    )


# Hey future me - httpx.ASGITransport doesn't run the lifespan, so we enter it ourselves.
# That keeps the app, the store and the test on ONE event loop, which means tests can seed
# data straight through app.state.store without a portal.
@pytest.fixture
async def app(app_settings: Settings) -> AsyncIterator[FastAPI]:
    application = create_app(app_settings)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
async def api_listener(app: FastAPI) -> User:
    """User seeded into the running app's store."""
    async with app.state.store.transaction() as repo:
        return await repo.upsert_user(
            User(
                id="user-1",
                external_id="spotify-user-1",
                display_name="Listener One",
                access_token=LISTENER_TOKEN,
            )
        )


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {LISTENER_TOKEN}"}


@pytest.fixture
def playback_body() -> dict[str, Any]:
    """POST /api/music/playback body for a play at Alexanderplatz."""
    return {
        "track_data": {
            "id": "4uLU6hMCjMI75M1A2tKUQC",
            "name": "Mr. Brightside",
            "artist": "The Killers",
            "album": "Hot Fuss",
            "duration_ms": 222_973,
            "progress_ms": 15_000,
        },
        "location": {"lat": BERLIN_LAT, "lng": BERLIN_LNG},
    }


@pytest.fixture
async def colored_cell(
    app: FastAPI,
    client: httpx.AsyncClient,
    api_listener: User,
    auth_headers: dict[str, str],
    playback_body: dict[str, Any],
) -> str:
    """Cell id of an aggregated Berlin cell holding one play of a track with features."""
    response = await client.post(
        "/api/music/playback", json=playback_body, headers=auth_headers
    )
    data = response.json()["data"]

    features = AudioFeatures(energy=0.85, valence=0.7, danceability=0.8, acousticness=0.1)
    async with app.state.store.transaction() as repo:
        await repo.update_track_features(
            data["track_id"], features, features_to_color(features)
        )
    await app.state.aggregator.aggregate(data["hex_id"])
    return data["hex_id"]
