"""In-process implementation of the aggregation store.

Used for demo runs and tests (``SOUNDMATE_DATABASE__BACKEND=memory``). Same
semantics as the SQL repository, including ordering and atomicity:
transactions are serialised with one lock and a failed transaction restores
the state it started from.

The rollback snapshot is a deep copy taken lazily, right before the first
write of a transaction. Read-only transactions cost nothing extra; a write
copies the whole state once, so large demo datasets make writes O(state).
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from soundmate.domain.entities import (
    ActivityExtent,
    CellAggregate,
    CellFeatureAverages,
    CellTopTrack,
    PlaybackEvent,
    PlaybackHistoryEntry,
    RankedTrack,
    Track,
    TrackCellPerformance,
    TrackPlaybackStats,
    User,
    utc_now,
)
from soundmate.domain.exceptions import CellNotFoundError, TrackNotFoundError
from soundmate.domain.ports import IAggregationStore, IRepository
from soundmate.domain.value_objects import AudioFeatures, BoundingBox, TrackDescriptor

logger = logging.getLogger(__name__)

_AVG_DEFAULTS = {"acousticness": 0.5, "instrumentalness": 0.1}


@dataclass
class _MemoryState:
    users: dict[str, User] = field(default_factory=dict)
    tracks: dict[str, Track] = field(default_factory=dict)
    events: list[PlaybackEvent] = field(default_factory=list)
    cells: dict[str, CellAggregate] = field(default_factory=dict)
    top_tracks: dict[tuple[str, str], CellTopTrack] = field(default_factory=dict)


def _cell_sort_key(cell: CellAggregate) -> tuple[int, float, str]:
    last = cell.last_activity_at.timestamp() if cell.last_activity_at else float("-inf")
    return (-cell.total_plays, -last, cell.cell_id)


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


class InMemoryAggregationRepository(IRepository):
    """Repository over a shared in-memory state. Returned entities are copies.

    Every mutating method calls _before_write() first, which keeps the state as
    it was before this transaction's first write in ``snapshot``.
    """

    def __init__(self, state: _MemoryState) -> None:
        self._state = state
        self.snapshot: _MemoryState | None = None

    def _before_write(self) -> None:
        if self.snapshot is None:
            self.snapshot = copy.deepcopy(self._state)

    # --- users -------------------------------------------------------------

    async def find_user_by_access_token(self, access_token: str) -> User | None:
        for user in self._state.users.values():
            if user.access_token == access_token:
                return replace(user)
        return None

    async def upsert_user(self, user: User) -> User:
        self._before_write()
        for existing in self._state.users.values():
            if existing.external_id == user.external_id:
                existing.display_name = user.display_name
                existing.access_token = user.access_token
                return replace(existing)
        self._state.users[user.id] = replace(user)
        return replace(user)

    # --- tracks ------------------------------------------------------------

    def _track_by_external_id(self, external_id: str) -> Track | None:
        for track in self._state.tracks.values():
            if track.external_id == external_id:
                return track
        return None

    async def find_track_by_external_id(self, external_id: str) -> Track | None:
        track = self._track_by_external_id(external_id)
        return replace(track) if track else None

    async def get_track(self, track_id: str) -> Track | None:
        track = self._state.tracks.get(track_id)
        return replace(track) if track else None

    async def upsert_track(self, descriptor: TrackDescriptor) -> Track:
        track = self._track_by_external_id(descriptor.external_id)
        if track is None:
            self._before_write()
            track = Track(
                id=str(uuid.uuid4()),
                external_id=descriptor.external_id,
                name=descriptor.name,
                artist=descriptor.artist,
                album=descriptor.album,
                duration_ms=descriptor.duration_ms,
                preview_url=descriptor.preview_url,
                image_url=descriptor.image_url,
                external_url=descriptor.external_url,
            )
            self._state.tracks[track.id] = track
        return replace(track)

    async def update_track_features(
        self, track_id: str, features: AudioFeatures, color_hex: str
    ) -> None:
        track = self._state.tracks.get(track_id)
        if track is None:
            raise TrackNotFoundError(track_id)
        self._before_write()
        track.audio_features = features
        track.color_hex = color_hex
        track.updated_at = utc_now()

    # --- playback events ---------------------------------------------------

    async def insert_playback_event(self, event: PlaybackEvent) -> None:
        self._before_write()
        self._state.events.append(replace(event))

    async def find_recent_duplicate(
        self,
        user_id: str,
        track_id: str,
        cell_id: str,
        window_seconds: int,
        now: datetime,
    ) -> PlaybackEvent | None:
        threshold = now - timedelta(seconds=window_seconds)
        matches = [
            e
            for e in self._state.events
            if e.user_id == user_id
            and e.track_id == track_id
            and e.cell_id == cell_id
            and e.played_at >= threshold
        ]
        if not matches:
            return None
        return replace(max(matches, key=lambda e: e.played_at))

    async def count_recent_plays(self, cell_id: str, since: datetime) -> int:
        return sum(
            1 for e in self._state.events if e.cell_id == cell_id and e.played_at >= since
        )

    async def count_recent_users(self, cell_ids: Sequence[str], since: datetime) -> int:
        wanted = set(cell_ids)
        return len(
            {
                e.user_id
                for e in self._state.events
                if e.cell_id in wanted and e.played_at >= since
            }
        )

    async def get_user_history(
        self, user_id: str, limit: int, offset: int = 0
    ) -> list[PlaybackHistoryEntry]:
        events = sorted(
            (e for e in self._state.events if e.user_id == user_id),
            key=lambda e: (e.played_at, e.id),
            reverse=True,
        )
        return [
            PlaybackHistoryEntry(event=replace(e), track=replace(self._state.tracks[e.track_id]))
            for e in events[offset : offset + limit]
            if e.track_id in self._state.tracks
        ]

    async def count_user_playbacks(self, user_id: str) -> int:
        return sum(1 for e in self._state.events if e.user_id == user_id)

    async def get_track_playback_stats(self, track_id: str) -> TrackPlaybackStats:
        events = [e for e in self._state.events if e.track_id == track_id]
        return TrackPlaybackStats(
            total_plays=len(events),
            unique_users=len({e.user_id for e in events}),
            unique_locations=len({e.cell_id for e in events}),
            last_played_at=max((e.played_at for e in events), default=None),
        )

    # --- cell aggregates ---------------------------------------------------

    async def upsert_cell_aggregate(
        self, cell_id: str, center_lat: float, center_lng: float, resolution: int
    ) -> CellAggregate:
        cell = self._state.cells.get(cell_id)
        if cell is None:
            self._before_write()
            cell = CellAggregate(
                cell_id=cell_id,
                center_lat=center_lat,
                center_lng=center_lng,
                resolution=resolution,
            )
            self._state.cells[cell_id] = cell
        return replace(cell)

    async def refresh_cell_counters(self, cell_id: str) -> CellAggregate:
        cell = self._state.cells.get(cell_id)
        if cell is None:
            raise CellNotFoundError(cell_id)
        self._before_write()
        events = [e for e in self._state.events if e.cell_id == cell_id]
        cell.total_plays = len(events)
        cell.unique_users = len({e.user_id for e in events})
        cell.unique_tracks = len({e.track_id for e in events})
        cell.last_activity_at = max((e.played_at for e in events), default=None)
        cell.updated_at = utc_now()
        return replace(cell)

    async def get_cell_aggregate(self, cell_id: str) -> CellAggregate | None:
        cell = self._state.cells.get(cell_id)
        return replace(cell) if cell else None

    async def query_cells_by_bounds(
        self, bounds: BoundingBox, limit: int, require_color: bool = True
    ) -> list[CellAggregate]:
        cells = [
            c
            for c in self._state.cells.values()
            if c.total_plays > 0
            and bounds.contains(c.center_lat, c.center_lng)
            and (c.color_hex is not None or not require_color)
        ]
        return [replace(c) for c in sorted(cells, key=_cell_sort_key)[:limit]]

    async def query_cells_by_ids(
        self, cell_ids: Sequence[str], limit: int
    ) -> list[CellAggregate]:
        wanted = set(cell_ids)
        cells = [
            c
            for c in self._state.cells.values()
            if c.cell_id in wanted and c.total_plays > 0
        ]
        return [replace(c) for c in sorted(cells, key=_cell_sort_key)[:limit]]

    def _has_feature_data(self, cell_id: str, since: datetime) -> bool:
        for event in self._state.events:
            if event.cell_id != cell_id or event.played_at < since:
                continue
            track = self._state.tracks.get(event.track_id)
            if track is not None and track.audio_features is not None:
                return True
        return False

    async def query_stale_cells(
        self, stale_before: datetime, window_start: datetime, limit: int
    ) -> list[str]:
        stale: list[CellAggregate] = []
        for cell in self._state.cells.values():
            if cell.total_plays <= 0:
                continue
            needs_update = (
                cell.color_hex is None
                or cell.last_aggregation_at is None
                or cell.last_aggregation_at < stale_before
                or (
                    cell.last_activity_at is not None
                    and cell.last_activity_at > cell.last_aggregation_at
                )
            )
            if needs_update and self._has_feature_data(cell.cell_id, window_start):
                stale.append(cell)
        stale.sort(key=lambda c: (-c.total_plays, c.cell_id))
        return [c.cell_id for c in stale[:limit]]

    async def query_active_cells(self, limit: int) -> list[str]:
        cells = [c for c in self._state.cells.values() if c.total_plays > 0]
        return [c.cell_id for c in sorted(cells, key=_cell_sort_key)[:limit]]

    async def get_activity_extent(self) -> ActivityExtent:
        cells = [c for c in self._state.cells.values() if c.total_plays > 0]
        if not cells:
            return ActivityExtent()
        return ActivityExtent(
            total_cells=len(cells),
            north=max(c.center_lat for c in cells),
            south=min(c.center_lat for c in cells),
            east=max(c.center_lng for c in cells),
            west=min(c.center_lng for c in cells),
        )

    async def compute_cell_feature_averages(
        self, cell_id: str, since: datetime
    ) -> CellFeatureAverages:
        all_events = [e for e in self._state.events if e.cell_id == cell_id]
        columns: dict[str, list[float]] = {
            name: []
            for name in (
                "energy",
                "valence",
                "danceability",
                "acousticness",
                "instrumentalness",
            )
        }
        contributing = 0
        for event in all_events:
            if event.played_at < since:
                continue
            track = self._state.tracks.get(event.track_id)
            if track is None or track.audio_features is None:
                continue
            contributing += 1
            for name, values in columns.items():
                value = getattr(track.audio_features, name)
                if value is None:
                    value = _AVG_DEFAULTS.get(name)
                if value is not None:
                    values.append(value)

        return CellFeatureAverages(
            contributing_events=contributing,
            total_plays=len(all_events),
            unique_users=len({e.user_id for e in all_events}),
            unique_tracks=len({e.track_id for e in all_events}),
            energy=_mean(columns["energy"]),
            valence=_mean(columns["valence"]),
            danceability=_mean(columns["danceability"]),
            acousticness=_mean(columns["acousticness"]),
            instrumentalness=_mean(columns["instrumentalness"]),
            last_activity_at=max((e.played_at for e in all_events), default=None),
        )

    async def save_cell_aggregation(self, aggregate: CellAggregate) -> None:
        if aggregate.cell_id not in self._state.cells:
            raise CellNotFoundError(aggregate.cell_id)
        self._before_write()
        self._state.cells[aggregate.cell_id] = replace(aggregate, updated_at=utc_now())

    # --- top tracks --------------------------------------------------------

    async def upsert_cell_top_track(
        self,
        cell_id: str,
        track_id: str,
        played_at: datetime,
        play_weight: float,
        user_weight: float,
    ) -> CellTopTrack:
        self._before_write()
        key = (cell_id, track_id)
        entry = self._state.top_tracks.get(key)
        if entry is None:
            entry = CellTopTrack(cell_id=cell_id, track_id=track_id, play_count=1)
            self._state.top_tracks[key] = entry
        else:
            entry.play_count += 1
        entry.last_played_at = played_at
        entry.unique_users = len(
            {
                e.user_id
                for e in self._state.events
                if e.cell_id == cell_id and e.track_id == track_id
            }
        )
        entry.rank_score = CellTopTrack.compute_rank_score(
            entry.play_count, entry.unique_users, play_weight, user_weight
        )
        return replace(entry)

    def _ranked(self, entries: list[CellTopTrack]) -> list[RankedTrack]:
        ranked = [
            RankedTrack(entry=replace(e), track=replace(self._state.tracks[e.track_id]))
            for e in entries
            if e.track_id in self._state.tracks
        ]
        ranked.sort(
            key=lambda r: (-r.entry.rank_score, -r.entry.play_count, r.track.external_id)
        )
        return ranked

    async def get_top_tracks(
        self, cell_id: str, limit: int, offset: int = 0
    ) -> list[RankedTrack]:
        entries = [e for e in self._state.top_tracks.values() if e.cell_id == cell_id]
        return self._ranked(entries)[offset : offset + limit]

    async def get_top_tracks_for_cells(
        self, cell_ids: Sequence[str], limit: int
    ) -> list[RankedTrack]:
        wanted = set(cell_ids)
        entries = [
            e
            for e in self._state.top_tracks.values()
            if e.cell_id in wanted and e.rank_score > 0
        ]
        result: list[RankedTrack] = []
        seen: set[str] = set()
        for ranked in self._ranked(entries):
            if ranked.track.id in seen:
                continue
            seen.add(ranked.track.id)
            result.append(ranked)
        return result[:limit]

    async def count_top_tracks(self, cell_id: str) -> int:
        return sum(1 for e in self._state.top_tracks.values() if e.cell_id == cell_id)

    async def get_track_cell_performance(
        self, track_id: str
    ) -> list[TrackCellPerformance]:
        performance = [
            TrackCellPerformance(
                entry=replace(entry),
                center_lat=cell.center_lat,
                center_lng=cell.center_lng,
                cell_total_plays=cell.total_plays,
            )
            for entry in self._state.top_tracks.values()
            if entry.track_id == track_id
            and (cell := self._state.cells.get(entry.cell_id)) is not None
        ]
        performance.sort(key=lambda p: (-p.entry.rank_score, p.entry.cell_id))
        return performance

    # --- maintenance -------------------------------------------------------

    async def delete_inactive_cells(self, created_before: datetime) -> int:
        self._before_write()
        doomed = [
            cell_id
            for cell_id, cell in self._state.cells.items()
            if cell.total_plays == 0 and cell.created_at < created_before
        ]
        for cell_id in doomed:
            del self._state.cells[cell_id]
            for key in [k for k in self._state.top_tracks if k[0] == cell_id]:
                del self._state.top_tracks[key]
        return len(doomed)

    async def delete_low_activity_top_tracks(
        self, min_play_count: int, last_played_before: datetime
    ) -> int:
        self._before_write()
        doomed = [
            key
            for key, entry in self._state.top_tracks.items()
            if entry.play_count < min_play_count
            and entry.last_played_at < last_played_before
        ]
        for key in doomed:
            del self._state.top_tracks[key]
        return len(doomed)

    async def delete_playback_events_before(self, cutoff: datetime) -> int:
        self._before_write()
        before = len(self._state.events)
        self._state.events = [e for e in self._state.events if e.played_at >= cutoff]
        return before - len(self._state.events)


class InMemoryAggregationStore(IAggregationStore):
    """Store holding all state in the process."""

    def __init__(self) -> None:
        self._state = _MemoryState()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[IRepository]:
        async with self._lock:
            repo = InMemoryAggregationRepository(self._state)
            try:
                yield repo
            except Exception:
                if repo.snapshot is not None:
                    self._state = repo.snapshot
                raise

    async def initialize(self) -> None:
        logger.info("Using in-memory aggregation store (data is not persisted)")

    def get_stats(self) -> dict[str, Any]:
        return {
            "backend": "memory",
            "users": len(self._state.users),
            "tracks": len(self._state.tracks),
            "playback_events": len(self._state.events),
            "cells": len(self._state.cells),
        }
