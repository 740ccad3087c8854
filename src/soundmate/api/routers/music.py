"""Music endpoints: playback ingestion, listening history and track detail."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from soundmate.api.dependencies import (
    get_access_token,
    get_music_query,
    get_playback_recorder,
)
from soundmate.api.responses import success_response
from soundmate.api.schemas.requests import PlaybackIn
from soundmate.application.services.music_query_service import MusicQueryService
from soundmate.application.services.playback_recorder import PlaybackRecorder
from soundmate.domain.value_objects import Coordinate

logger = logging.getLogger(__name__)

router = APIRouter()


# Hey future me, a duplicate is NOT an error: the client retries on flaky networks and
# polls the player every few seconds, so the same play arrives several times. We answer
# success with a different message and nothing changes server-side.
@router.post("/playback")
async def record_playback(
    body: PlaybackIn,
    access_token: str = Depends(get_access_token),
    recorder: PlaybackRecorder = Depends(get_playback_recorder),
) -> dict[str, Any]:
    """Record that the caller is playing a track at a location."""
    result = await recorder.record(
        access_token,
        body.track_data.to_descriptor(),
        Coordinate(lat=body.location.lat, lng=body.location.lng),
        cell_id=body.hex_id,
        progress_ms=body.track_data.progress_ms,
        is_playing=body.track_data.is_playing,
    )

    if not result.accepted:
        return success_response(
            {
                "message": "Duplicate playback ignored",
                "hex_id": result.cell_id,
                "track_id": result.track_id,
            }
        )

    return success_response(
        {
            "message": "Playback recorded successfully",
            "hex_id": result.cell_id,
            "track_id": result.track_id,
            "playback_id": result.playback_id,
            "features_processing": result.features_processing,
        }
    )


@router.get("/history")
async def get_history(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    access_token: str = Depends(get_access_token),
    music: MusicQueryService = Depends(get_music_query),
) -> dict[str, Any]:
    """The caller's own playbacks, newest first."""
    return success_response(await music.get_user_history(access_token, limit, offset))


@router.get("/tracks/{track_id}")
async def get_track(
    track_id: str,
    music: MusicQueryService = Depends(get_music_query),
) -> dict[str, Any]:
    """Track features, listening stats and the cells where it ranks."""
    return success_response(await music.get_track_detail(track_id))
