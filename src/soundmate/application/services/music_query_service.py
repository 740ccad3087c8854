"""Read side for listeners and tracks: playback history and track detail."""

import logging
from typing import Any

from soundmate.domain.entities import Track
from soundmate.domain.exceptions import TrackNotFoundError, UnauthorizedError
from soundmate.domain.ports import IAggregationStore, IRepository

logger = logging.getLogger(__name__)


def track_to_dict(track: Track) -> dict[str, Any]:
    """Public representation of a catalog track, features included."""
    return {
        "id": track.id,
        "spotify_track_id": track.external_id,
        "name": track.name,
        "artist": track.artist,
        "album": track.album,
        "duration_ms": track.duration_ms,
        "preview_url": track.preview_url,
        "image_url": track.image_url,
        "external_url": track.external_url,
        "audio_features": track.audio_features.to_dict() if track.audio_features else None,
        "color_hex": track.color_hex,
    }


class MusicQueryService:
    """Answers "what did I listen to" and "where is this track played"."""

    def __init__(self, store: IAggregationStore) -> None:
        self._store = store

    async def get_user_history(
        self, access_token: str, limit: int = 20, offset: int = 0
    ) -> dict[str, Any]:
        """Paginated playback history of the token's owner, newest first.

        Raises:
            UnauthorizedError: No user owns the token
        """
        async with self._store.transaction() as repo:
            user = await repo.find_user_by_access_token(access_token)
            if user is None:
                raise UnauthorizedError()
            entries = await repo.get_user_history(user.id, limit, offset)
            total = await repo.count_user_playbacks(user.id)

        return {
            "tracks": [entry.to_dict() for entry in entries],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    # Hey future me - clients only know the Spotify id, links inside our own payloads carry
    # the internal one. Accept both, internal id first.
    async def _find_track(self, repo: IRepository, track_id: str) -> Track:
        track = await repo.get_track(track_id)
        if track is None:
            track = await repo.find_track_by_external_id(track_id)
        if track is None:
            raise TrackNotFoundError(track_id)
        return track

    async def get_track_detail(self, track_id: str) -> dict[str, Any]:
        """Catalog data, listening stats and per-cell ranking of one track.

        Raises:
            TrackNotFoundError: Neither an internal nor a Spotify id matches
        """
        async with self._store.transaction() as repo:
            track = await self._find_track(repo, track_id)
            stats = await repo.get_track_playback_stats(track.id)
            performance = await repo.get_track_cell_performance(track.id)

        top = performance[0] if performance else None
        return {
            "track": track_to_dict(track),
            "playback_stats": {
                "total_plays": stats.total_plays,
                "unique_users": stats.unique_users,
                "unique_locations": stats.unique_locations,
                "last_played_at": (
                    stats.last_played_at.isoformat() if stats.last_played_at else None
                ),
                "top_hex": top.to_dict() if top else None,
            },
            "hex_performance": [p.to_dict() for p in performance],
        }
