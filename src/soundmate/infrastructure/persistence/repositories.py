"""SQLAlchemy implementation of the aggregation repository."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

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
)
from soundmate.domain.exceptions import CellNotFoundError, TrackNotFoundError
from soundmate.domain.ports import IAggregationStore, IRepository
from soundmate.domain.value_objects import AudioFeatures, BoundingBox, TrackDescriptor
from soundmate.infrastructure.persistence.database import Database
from soundmate.infrastructure.persistence.models import (
    CellAggregateModel,
    CellTopTrackModel,
    PlaybackEventModel,
    TrackModel,
    UserModel,
    ensure_utc_aware,
    utc_now,
)

logger = logging.getLogger(__name__)


def _to_user(model: UserModel) -> User:
    return User(
        id=model.id,
        external_id=model.external_id,
        display_name=model.display_name,
        access_token=model.access_token,
        created_at=ensure_utc_aware(model.created_at) or utc_now(),
    )


def _to_track(model: TrackModel) -> Track:
    return Track(
        id=model.id,
        external_id=model.spotify_track_id,
        name=model.name,
        artist=model.artist,
        album=model.album,
        duration_ms=model.duration_ms,
        preview_url=model.preview_url,
        image_url=model.image_url,
        external_url=model.external_url,
        audio_features=AudioFeatures.from_dict(model.audio_features),
        color_hex=model.color_hex,
        created_at=ensure_utc_aware(model.created_at) or utc_now(),
        updated_at=ensure_utc_aware(model.updated_at) or utc_now(),
    )


def _to_event(model: PlaybackEventModel) -> PlaybackEvent:
    return PlaybackEvent(
        id=model.id,
        user_id=model.user_id,
        track_id=model.track_id,
        cell_id=model.hex_id,
        lat=model.lat,
        lng=model.lng,
        played_at=ensure_utc_aware(model.played_at) or utc_now(),
        progress_ms=model.progress_ms,
        is_playing=model.is_playing,
    )


def _to_aggregate(model: CellAggregateModel) -> CellAggregate:
    return CellAggregate(
        cell_id=model.hex_id,
        center_lat=model.center_lat,
        center_lng=model.center_lng,
        resolution=model.resolution,
        total_plays=model.total_plays,
        unique_users=model.unique_users,
        unique_tracks=model.unique_tracks,
        avg_energy=model.avg_energy,
        avg_valence=model.avg_valence,
        avg_danceability=model.avg_danceability,
        avg_acousticness=model.avg_acousticness,
        avg_instrumentalness=model.avg_instrumentalness,
        color_hex=model.color_hex,
        last_activity_at=ensure_utc_aware(model.last_activity_at),
        last_aggregation_at=ensure_utc_aware(model.last_aggregation_at),
        created_at=ensure_utc_aware(model.created_at) or utc_now(),
        updated_at=ensure_utc_aware(model.updated_at) or utc_now(),
    )


def _to_top_track(model: CellTopTrackModel) -> CellTopTrack:
    return CellTopTrack(
        cell_id=model.hex_id,
        track_id=model.track_id,
        play_count=model.play_count,
        unique_users=model.unique_users,
        rank_score=model.rank_score,
        last_played_at=ensure_utc_aware(model.last_played_at) or utc_now(),
    )


# Hey future me, ordering for EVERY map-facing cell query lives here: busiest first, ties broken
# by most recent activity, hex_id last so results are stable between calls (tests rely on it).
_CELL_ORDERING = (
    CellAggregateModel.total_plays.desc(),
    CellAggregateModel.last_activity_at.desc().nulls_last(),
    CellAggregateModel.hex_id,
)


class SqlAlchemyAggregationRepository(IRepository):
    """Repository over one AsyncSession. Never commits - the store transaction does."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _insert(self, model: type[Any]) -> Any:
        """Dialect-specific INSERT so we get ON CONFLICT on both SQLite and Postgres."""
        if self.session.get_bind().dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    # --- users -------------------------------------------------------------

    async def find_user_by_access_token(self, access_token: str) -> User | None:
        stmt = select(UserModel).where(UserModel.access_token == access_token)
        result = await self.session.execute(stmt)
        model = result.scalars().first()
        return _to_user(model) if model else None

    async def upsert_user(self, user: User) -> User:
        stmt = select(UserModel).where(UserModel.external_id == user.external_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            model = UserModel(
                id=user.id,
                external_id=user.external_id,
                display_name=user.display_name,
                access_token=user.access_token,
                created_at=user.created_at,
            )
            self.session.add(model)
        else:
            model.display_name = user.display_name
            model.access_token = user.access_token

        await self.session.flush()
        return _to_user(model)

    # --- tracks ------------------------------------------------------------

    async def find_track_by_external_id(self, external_id: str) -> Track | None:
        stmt = select(TrackModel).where(TrackModel.spotify_track_id == external_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_track(model) if model else None

    async def get_track(self, track_id: str) -> Track | None:
        model = await self.session.get(TrackModel, track_id)
        return _to_track(model) if model else None

    async def upsert_track(self, descriptor: TrackDescriptor) -> Track:
        # ON CONFLICT DO NOTHING makes concurrent first plays of the same track safe,
        # the loser simply reads the winner's row back.
        now = utc_now()
        stmt = (
            self._insert(TrackModel)
            .values(
                id=str(uuid.uuid4()),
                spotify_track_id=descriptor.external_id,
                name=descriptor.name,
                artist=descriptor.artist,
                album=descriptor.album,
                duration_ms=descriptor.duration_ms,
                preview_url=descriptor.preview_url,
                image_url=descriptor.image_url,
                external_url=descriptor.external_url,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["spotify_track_id"])
        )
        await self.session.execute(stmt)

        track = await self.find_track_by_external_id(descriptor.external_id)
        if track is None:
            raise TrackNotFoundError(descriptor.external_id)
        return track

    async def update_track_features(
        self, track_id: str, features: AudioFeatures, color_hex: str
    ) -> None:
        stmt = (
            update(TrackModel)
            .where(TrackModel.id == track_id)
            .values(
                audio_features=features.to_dict(),
                color_hex=color_hex,
                updated_at=utc_now(),
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise TrackNotFoundError(track_id)

    # --- playback events ---------------------------------------------------

    async def insert_playback_event(self, event: PlaybackEvent) -> None:
        self.session.add(
            PlaybackEventModel(
                id=event.id,
                user_id=event.user_id,
                track_id=event.track_id,
                hex_id=event.cell_id,
                lat=event.lat,
                lng=event.lng,
                played_at=event.played_at,
                progress_ms=event.progress_ms,
                is_playing=event.is_playing,
            )
        )
        await self.session.flush()

    async def find_recent_duplicate(
        self,
        user_id: str,
        track_id: str,
        cell_id: str,
        window_seconds: int,
        now: datetime,
    ) -> PlaybackEvent | None:
        stmt = (
            select(PlaybackEventModel)
            .where(
                PlaybackEventModel.user_id == user_id,
                PlaybackEventModel.track_id == track_id,
                PlaybackEventModel.hex_id == cell_id,
                PlaybackEventModel.played_at >= now - timedelta(seconds=window_seconds),
            )
            .order_by(PlaybackEventModel.played_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_event(model) if model else None

    async def count_recent_plays(self, cell_id: str, since: datetime) -> int:
        stmt = select(func.count(PlaybackEventModel.id)).where(
            PlaybackEventModel.hex_id == cell_id,
            PlaybackEventModel.played_at >= since,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def count_recent_users(self, cell_ids: Sequence[str], since: datetime) -> int:
        if not cell_ids:
            return 0
        stmt = select(func.count(func.distinct(PlaybackEventModel.user_id))).where(
            PlaybackEventModel.hex_id.in_(list(cell_ids)),
            PlaybackEventModel.played_at >= since,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def get_user_history(
        self, user_id: str, limit: int, offset: int = 0
    ) -> list[PlaybackHistoryEntry]:
        stmt = (
            select(PlaybackEventModel, TrackModel)
            .join(TrackModel, TrackModel.id == PlaybackEventModel.track_id)
            .where(PlaybackEventModel.user_id == user_id)
            .order_by(PlaybackEventModel.played_at.desc(), PlaybackEventModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            PlaybackHistoryEntry(event=_to_event(event), track=_to_track(track))
            for event, track in result.all()
        ]

    async def count_user_playbacks(self, user_id: str) -> int:
        stmt = select(func.count(PlaybackEventModel.id)).where(
            PlaybackEventModel.user_id == user_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def get_track_playback_stats(self, track_id: str) -> TrackPlaybackStats:
        stmt = select(
            func.count(PlaybackEventModel.id),
            func.count(func.distinct(PlaybackEventModel.user_id)),
            func.count(func.distinct(PlaybackEventModel.hex_id)),
            func.max(PlaybackEventModel.played_at),
        ).where(PlaybackEventModel.track_id == track_id)
        total_plays, unique_users, unique_locations, last_played = (
            await self.session.execute(stmt)
        ).one()
        return TrackPlaybackStats(
            total_plays=int(total_plays or 0),
            unique_users=int(unique_users or 0),
            unique_locations=int(unique_locations or 0),
            last_played_at=ensure_utc_aware(last_played),
        )

    # --- cell aggregates ---------------------------------------------------

    async def _get_aggregate_model(self, cell_id: str) -> CellAggregateModel | None:
        stmt = (
            select(CellAggregateModel)
            .where(CellAggregateModel.hex_id == cell_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_cell_aggregate(
        self, cell_id: str, center_lat: float, center_lng: float, resolution: int
    ) -> CellAggregate:
        now = utc_now()
        stmt = (
            self._insert(CellAggregateModel)
            .values(
                hex_id=cell_id,
                center_lat=center_lat,
                center_lng=center_lng,
                resolution=resolution,
                total_plays=0,
                unique_users=0,
                unique_tracks=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["hex_id"])
        )
        await self.session.execute(stmt)

        model = await self._get_aggregate_model(cell_id)
        if model is None:
            raise CellNotFoundError(cell_id)
        return _to_aggregate(model)

    async def refresh_cell_counters(self, cell_id: str) -> CellAggregate:
        stats_stmt = select(
            func.count(PlaybackEventModel.id),
            func.count(func.distinct(PlaybackEventModel.user_id)),
            func.count(func.distinct(PlaybackEventModel.track_id)),
            func.max(PlaybackEventModel.played_at),
        ).where(PlaybackEventModel.hex_id == cell_id)
        total_plays, unique_users, unique_tracks, last_played = (
            await self.session.execute(stats_stmt)
        ).one()

        await self.session.execute(
            update(CellAggregateModel)
            .where(CellAggregateModel.hex_id == cell_id)
            .values(
                total_plays=int(total_plays or 0),
                unique_users=int(unique_users or 0),
                unique_tracks=int(unique_tracks or 0),
                last_activity_at=last_played,
                updated_at=utc_now(),
            )
        )

        model = await self._get_aggregate_model(cell_id)
        if model is None:
            raise CellNotFoundError(cell_id)
        return _to_aggregate(model)

    async def get_cell_aggregate(self, cell_id: str) -> CellAggregate | None:
        model = await self._get_aggregate_model(cell_id)
        return _to_aggregate(model) if model else None

    async def query_cells_by_bounds(
        self, bounds: BoundingBox, limit: int, require_color: bool = True
    ) -> list[CellAggregate]:
        stmt = select(CellAggregateModel).where(
            CellAggregateModel.center_lat.between(bounds.south, bounds.north),
            CellAggregateModel.center_lng.between(bounds.west, bounds.east),
            CellAggregateModel.total_plays > 0,
        )
        if require_color:
            stmt = stmt.where(CellAggregateModel.color_hex.is_not(None))
        stmt = stmt.order_by(*_CELL_ORDERING).limit(limit)

        result = await self.session.execute(stmt)
        return [_to_aggregate(m) for m in result.scalars().all()]

    async def query_cells_by_ids(
        self, cell_ids: Sequence[str], limit: int
    ) -> list[CellAggregate]:
        if not cell_ids:
            return []
        stmt = (
            select(CellAggregateModel)
            .where(
                CellAggregateModel.hex_id.in_(list(cell_ids)),
                CellAggregateModel.total_plays > 0,
            )
            .order_by(*_CELL_ORDERING)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [_to_aggregate(m) for m in result.scalars().all()]

    async def query_stale_cells(
        self, stale_before: datetime, window_start: datetime, limit: int
    ) -> list[str]:
        has_feature_data = (
            select(PlaybackEventModel.id)
            .join(TrackModel, TrackModel.id == PlaybackEventModel.track_id)
            .where(
                PlaybackEventModel.hex_id == CellAggregateModel.hex_id,
                PlaybackEventModel.played_at >= window_start,
                TrackModel.audio_features.is_not(None),
            )
            .exists()
        )
        stmt = (
            select(CellAggregateModel.hex_id)
            .where(
                CellAggregateModel.total_plays > 0,
                or_(
                    CellAggregateModel.color_hex.is_(None),
                    CellAggregateModel.last_aggregation_at.is_(None),
                    CellAggregateModel.last_aggregation_at < stale_before,
                    CellAggregateModel.last_activity_at
                    > CellAggregateModel.last_aggregation_at,
                ),
                has_feature_data,
            )
            .order_by(CellAggregateModel.total_plays.desc(), CellAggregateModel.hex_id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def query_active_cells(self, limit: int) -> list[str]:
        stmt = (
            select(CellAggregateModel.hex_id)
            .where(CellAggregateModel.total_plays > 0)
            .order_by(*_CELL_ORDERING)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_activity_extent(self) -> ActivityExtent:
        stmt = select(
            func.count(CellAggregateModel.hex_id),
            func.max(CellAggregateModel.center_lat),
            func.min(CellAggregateModel.center_lat),
            func.max(CellAggregateModel.center_lng),
            func.min(CellAggregateModel.center_lng),
        ).where(CellAggregateModel.total_plays > 0)
        count, north, south, east, west = (await self.session.execute(stmt)).one()
        if not count:
            return ActivityExtent()
        return ActivityExtent(
            total_cells=int(count),
            north=float(north),
            south=float(south),
            east=float(east),
            west=float(west),
        )

    async def compute_cell_feature_averages(
        self, cell_id: str, since: datetime
    ) -> CellFeatureAverages:
        features = TrackModel.audio_features
        averages_stmt = (
            select(
                func.count(PlaybackEventModel.id),
                func.avg(features["energy"].as_float()),
                func.avg(features["valence"].as_float()),
                func.avg(features["danceability"].as_float()),
                func.avg(func.coalesce(features["acousticness"].as_float(), 0.5)),
                func.avg(func.coalesce(features["instrumentalness"].as_float(), 0.1)),
            )
            .select_from(PlaybackEventModel)
            .join(TrackModel, TrackModel.id == PlaybackEventModel.track_id)
            .where(
                PlaybackEventModel.hex_id == cell_id,
                PlaybackEventModel.played_at >= since,
                features.is_not(None),
            )
        )
        count, energy, valence, danceability, acousticness, instrumentalness = (
            await self.session.execute(averages_stmt)
        ).one()

        counters_stmt = select(
            func.count(PlaybackEventModel.id),
            func.count(func.distinct(PlaybackEventModel.user_id)),
            func.count(func.distinct(PlaybackEventModel.track_id)),
            func.max(PlaybackEventModel.played_at),
        ).where(PlaybackEventModel.hex_id == cell_id)
        total_plays, unique_users, unique_tracks, last_played = (
            await self.session.execute(counters_stmt)
        ).one()

        def _opt(value: Any) -> float | None:
            return float(value) if value is not None else None

        return CellFeatureAverages(
            contributing_events=int(count or 0),
            total_plays=int(total_plays or 0),
            unique_users=int(unique_users or 0),
            unique_tracks=int(unique_tracks or 0),
            energy=_opt(energy),
            valence=_opt(valence),
            danceability=_opt(danceability),
            acousticness=_opt(acousticness),
            instrumentalness=_opt(instrumentalness),
            last_activity_at=ensure_utc_aware(last_played),
        )

    async def save_cell_aggregation(self, aggregate: CellAggregate) -> None:
        stmt = (
            update(CellAggregateModel)
            .where(CellAggregateModel.hex_id == aggregate.cell_id)
            .values(
                total_plays=aggregate.total_plays,
                unique_users=aggregate.unique_users,
                unique_tracks=aggregate.unique_tracks,
                avg_energy=aggregate.avg_energy,
                avg_valence=aggregate.avg_valence,
                avg_danceability=aggregate.avg_danceability,
                avg_acousticness=aggregate.avg_acousticness,
                avg_instrumentalness=aggregate.avg_instrumentalness,
                color_hex=aggregate.color_hex,
                last_activity_at=aggregate.last_activity_at,
                last_aggregation_at=aggregate.last_aggregation_at,
                updated_at=utc_now(),
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise CellNotFoundError(aggregate.cell_id)

    # --- top tracks --------------------------------------------------------

    async def upsert_cell_top_track(
        self,
        cell_id: str,
        track_id: str,
        played_at: datetime,
        play_weight: float,
        user_weight: float,
    ) -> CellTopTrack:
        insert_stmt = self._insert(CellTopTrackModel).values(
            id=str(uuid.uuid4()),
            hex_id=cell_id,
            track_id=track_id,
            play_count=1,
            unique_users=1,
            rank_score=0.0,
            last_played_at=played_at,
        )
        await self.session.execute(
            insert_stmt.on_conflict_do_update(
                index_elements=["hex_id", "track_id"],
                set_={
                    "play_count": CellTopTrackModel.play_count + 1,
                    "last_played_at": insert_stmt.excluded.last_played_at,
                },
            )
        )

        distinct_users = (
            await self.session.execute(
                select(func.count(func.distinct(PlaybackEventModel.user_id))).where(
                    PlaybackEventModel.hex_id == cell_id,
                    PlaybackEventModel.track_id == track_id,
                )
            )
        ).scalar() or 0

        model = (
            await self.session.execute(
                select(CellTopTrackModel)
                .where(
                    CellTopTrackModel.hex_id == cell_id,
                    CellTopTrackModel.track_id == track_id,
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        model.unique_users = int(distinct_users)
        model.rank_score = CellTopTrack.compute_rank_score(
            model.play_count, model.unique_users, play_weight, user_weight
        )
        await self.session.flush()
        return _to_top_track(model)

    async def get_top_tracks(
        self, cell_id: str, limit: int, offset: int = 0
    ) -> list[RankedTrack]:
        stmt = (
            select(CellTopTrackModel, TrackModel)
            .join(TrackModel, TrackModel.id == CellTopTrackModel.track_id)
            .where(CellTopTrackModel.hex_id == cell_id)
            .order_by(
                CellTopTrackModel.rank_score.desc(),
                CellTopTrackModel.play_count.desc(),
                TrackModel.spotify_track_id,
            )
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            RankedTrack(entry=_to_top_track(entry), track=_to_track(track))
            for entry, track in result.all()
        ]

    async def get_top_tracks_for_cells(
        self, cell_ids: Sequence[str], limit: int
    ) -> list[RankedTrack]:
        if not cell_ids:
            return []
        stmt = (
            select(CellTopTrackModel, TrackModel)
            .join(TrackModel, TrackModel.id == CellTopTrackModel.track_id)
            .where(
                CellTopTrackModel.hex_id.in_(list(cell_ids)),
                CellTopTrackModel.rank_score > 0,
            )
            .order_by(
                CellTopTrackModel.rank_score.desc(),
                CellTopTrackModel.play_count.desc(),
            )
        )
        result = await self.session.execute(stmt)

        ranked: list[RankedTrack] = []
        seen: set[str] = set()
        for entry, track in result.all():
            if track.id in seen:
                continue
            seen.add(track.id)
            ranked.append(RankedTrack(entry=_to_top_track(entry), track=_to_track(track)))
            if len(ranked) >= limit:
                break
        return ranked

    async def count_top_tracks(self, cell_id: str) -> int:
        stmt = select(func.count(CellTopTrackModel.id)).where(
            CellTopTrackModel.hex_id == cell_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def get_track_cell_performance(
        self, track_id: str
    ) -> list[TrackCellPerformance]:
        stmt = (
            select(CellTopTrackModel, CellAggregateModel)
            .join(CellAggregateModel, CellAggregateModel.hex_id == CellTopTrackModel.hex_id)
            .where(CellTopTrackModel.track_id == track_id)
            .order_by(CellTopTrackModel.rank_score.desc(), CellTopTrackModel.hex_id)
        )
        result = await self.session.execute(stmt)
        return [
            TrackCellPerformance(
                entry=_to_top_track(entry),
                center_lat=cell.center_lat,
                center_lng=cell.center_lng,
                cell_total_plays=cell.total_plays,
            )
            for entry, cell in result.all()
        ]

    # --- maintenance -------------------------------------------------------

    async def delete_inactive_cells(self, created_before: datetime) -> int:
        stmt = delete(CellAggregateModel).where(
            CellAggregateModel.total_plays == 0,
            CellAggregateModel.created_at < created_before,
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def delete_low_activity_top_tracks(
        self, min_play_count: int, last_played_before: datetime
    ) -> int:
        stmt = delete(CellTopTrackModel).where(
            CellTopTrackModel.play_count < min_play_count,
            CellTopTrackModel.last_played_at < last_played_before,
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def delete_playback_events_before(self, cutoff: datetime) -> int:
        stmt = delete(PlaybackEventModel).where(PlaybackEventModel.played_at < cutoff)
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)


class SqlAlchemyAggregationStore(IAggregationStore):
    """Store backed by the Database session factory."""

    def __init__(self, database: Database, create_tables: bool = True) -> None:
        self._database = database
        self._create_tables = create_tables

    @property
    def database(self) -> Database:
        return self._database

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[IRepository]:
        async with self._database.session_scope() as session:
            yield SqlAlchemyAggregationRepository(session)

    async def initialize(self) -> None:
        if self._create_tables:
            await self._database.create_tables()
            logger.info("Database schema ready")

    async def close(self) -> None:
        await self._database.close()

    def get_stats(self) -> dict[str, Any]:
        return {"backend": "sql", **self._database.get_pool_stats()}
