"""FastAPI dependencies: components created by the lifespan and auth helpers."""

from typing import Any, cast

from fastapi import Header, HTTPException, Request

from soundmate.application.services.maintenance_service import MaintenanceService
from soundmate.application.services.music_query_service import MusicQueryService
from soundmate.application.services.playback_recorder import PlaybackRecorder
from soundmate.application.services.spatial_query_service import SpatialQueryService
from soundmate.application.workers.feature_fetch_worker import FeatureFetchWorker
from soundmate.application.workers.refresh_scheduler import RefreshScheduler
from soundmate.domain.exceptions import UnauthorizedError
from soundmate.domain.ports import IAggregationStore


# Hey future me, every component lives on app.state (see lifecycle.py). If the lifespan
# didn't run or failed halfway, the attribute is missing and we answer 503 instead of an
# AttributeError turning into a 500.
def _from_state(request: Request, name: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=503, detail=f"Service not initialized: {name}"
        )
    return component


def get_store(request: Request) -> IAggregationStore:
    return cast(IAggregationStore, _from_state(request, "store"))


def get_playback_recorder(request: Request) -> PlaybackRecorder:
    return cast(PlaybackRecorder, _from_state(request, "playback_recorder"))


def get_spatial_query(request: Request) -> SpatialQueryService:
    return cast(SpatialQueryService, _from_state(request, "spatial_query"))


def get_music_query(request: Request) -> MusicQueryService:
    return cast(MusicQueryService, _from_state(request, "music_query"))


def get_refresh_scheduler(request: Request) -> RefreshScheduler:
    return cast(RefreshScheduler, _from_state(request, "refresh_scheduler"))


def get_maintenance_service(request: Request) -> MaintenanceService:
    return cast(MaintenanceService, _from_state(request, "maintenance"))


def get_feature_worker(request: Request) -> FeatureFetchWorker | None:
    """Optional: None when feature fetching is disabled."""
    return cast(
        FeatureFetchWorker | None, getattr(request.app.state, "feature_worker", None)
    )


def parse_bearer_token(authorization: str) -> str:
    """Strip a case-insensitive "Bearer " prefix; raw tokens are accepted as-is."""
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return authorization.strip()


async def get_access_token(authorization: str | None = Header(default=None)) -> str:
    """Bearer token of the calling listener.

    Raises:
        UnauthorizedError: Header missing or blank (code MISSING_TOKEN)
    """
    token = parse_bearer_token(authorization) if authorization else ""
    if not token:
        raise UnauthorizedError("Access token is required", code="MISSING_TOKEN")
    return token
