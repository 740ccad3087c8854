"""Playback recording - the write path behind POST /music/playback."""

import logging
import uuid
from typing import Protocol

from soundmate.application.services.keyed_locks import KeyedLocks
from soundmate.application.workers.feature_fetch_worker import (
    CellRefreshJob,
    FeatureFetchJob,
    Job,
)
from soundmate.config import AggregationSettings
from soundmate.domain.entities import PlaybackEvent, PlaybackResult, utc_now
from soundmate.domain.exceptions import InvalidCellIdError, UnauthorizedError
from soundmate.domain.ports import IAggregationStore, IGridIndex
from soundmate.domain.value_objects import Coordinate, TrackDescriptor, normalize_cell_id

logger = logging.getLogger(__name__)

DUPLICATE_REASON = "duplicate"


class JobSink(Protocol):
    """Anything that accepts background jobs without blocking."""

    def submit(self, job: Job) -> bool: ...


class PlaybackRecorder:
    """Validates, deduplicates and records playback events.

    Flow per call:
        1. resolve user by token (UnauthorizedError, nothing written)
        2. upsert track by Spotify id
        3. under the (user, track, cell) lock, in one transaction: duplicate
           check, event insert, cell upsert + counter refresh, top-track upsert
        4. hand a feature fetch / cell refresh to the background worker
    """

    def __init__(
        self,
        store: IAggregationStore,
        grid: IGridIndex,
        settings: AggregationSettings,
        resolution: int = 9,
        jobs: JobSink | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._grid = grid
        self._settings = settings
        self._resolution = resolution
        self._jobs = jobs
        self._locks = locks or KeyedLocks()

    def _resolve_cell(self, coordinate: Coordinate, cell_id: str | None) -> str:
        if cell_id is None:
            return self._grid.cell_for(coordinate.lat, coordinate.lng, self._resolution)
        normalized = normalize_cell_id(cell_id)
        if not self._grid.is_valid(normalized):
            raise InvalidCellIdError(cell_id)
        return normalized

    async def record(
        self,
        user_token: str,
        track: TrackDescriptor,
        coordinate: Coordinate,
        cell_id: str | None = None,
        progress_ms: int = 0,
        is_playing: bool = True,
    ) -> PlaybackResult:
        """Record one playback.

        Raises:
            UnauthorizedError: No user owns the token
            InvalidCellIdError: cell_id is not a grid cell
        """
        cell = self._resolve_cell(coordinate, cell_id)

        async with self._store.transaction() as repo:
            user = await repo.find_user_by_access_token(user_token)
            if user is None:
                raise UnauthorizedError()
            stored_track = await repo.upsert_track(track)

        # Hey future me - the duplicate check is read-then-write. The per-key lock makes
        # concurrent identical submissions line up, so exactly one of them sees "no
        # duplicate" and inserts; the others find that event and bail out.
        async with self._locks.hold((user.id, stored_track.id, cell)):
            now = utc_now()
            async with self._store.transaction() as repo:
                duplicate = await repo.find_recent_duplicate(
                    user.id,
                    stored_track.id,
                    cell,
                    self._settings.dedup_window_seconds,
                    now,
                )
                if duplicate is not None:
                    logger.debug(
                        "Duplicate playback ignored (user=%s track=%s cell=%s)",
                        user.id,
                        stored_track.external_id,
                        cell,
                    )
                    return PlaybackResult(
                        accepted=False,
                        cell_id=cell,
                        track_id=stored_track.id,
                        reason=DUPLICATE_REASON,
                    )

                event = PlaybackEvent(
                    id=str(uuid.uuid4()),
                    user_id=user.id,
                    track_id=stored_track.id,
                    cell_id=cell,
                    lat=coordinate.lat,
                    lng=coordinate.lng,
                    played_at=now,
                    progress_ms=progress_ms,
                    is_playing=is_playing,
                )
                await repo.insert_playback_event(event)
                await repo.upsert_cell_aggregate(
                    cell, coordinate.lat, coordinate.lng, self._resolution
                )
                await repo.refresh_cell_counters(cell)
                await repo.upsert_cell_top_track(
                    cell,
                    stored_track.id,
                    now,
                    self._settings.rank_play_weight,
                    self._settings.rank_user_weight,
                )

        features_processing = False
        if stored_track.needs_features:
            features_processing = self._submit(
                FeatureFetchJob(
                    track_id=stored_track.id,
                    external_id=stored_track.external_id,
                    cell_id=cell,
                    access_token=user_token,
                )
            )
        else:
            self._submit(CellRefreshJob(cell_id=cell))

        logger.info(
            "Playback recorded: track=%s cell=%s features_processing=%s",
            stored_track.external_id,
            cell,
            features_processing,
        )
        return PlaybackResult(
            accepted=True,
            cell_id=cell,
            track_id=stored_track.id,
            playback_id=event.id,
            features_processing=features_processing,
        )

    def _submit(self, job: Job) -> bool:
        if self._jobs is None:
            return False
        return self._jobs.submit(job)
