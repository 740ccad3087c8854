"""SQLAlchemy ORM models for SoundMate."""

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite drops tzinfo on the way back! Every datetime read from a model goes
# through this before it is compared against datetime.now(UTC), otherwise you get the
# "can't compare offset-naive and offset-aware" TypeError in the staleness checks.
def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserModel(Base):
    """Listener resolved from a bearer token."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


# Yo, audio_features is a JSON blob (the normalised vector) and color_hex is derived from it.
# Both stay NULL until the background fetch completes. The aggregation queries filter on
# "audio_features IS NOT NULL", so never write an empty dict here - store NULL instead.
class TrackModel(Base):
    """Catalog track keyed on its Spotify id."""

    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    spotify_track_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    artist: Mapped[str] = mapped_column(String(500), nullable=False)
    album: Mapped[str | None] = mapped_column(String(500), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preview_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_features: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    color_hex: Mapped[str | None] = mapped_column(String(7), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class PlaybackEventModel(Base):
    """Append-only playback log."""

    __tablename__ = "playback_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False
    )
    hex_id: Mapped[str] = mapped_column(String(20), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    played_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    progress_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_playing: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        # Dedup lookup: same user+track+cell inside the dedup window
        Index(
            "ix_playback_events_dedup", "user_id", "track_id", "hex_id", "played_at"
        ),
        Index("ix_playback_events_hex_played", "hex_id", "played_at"),
        Index("ix_playback_events_played_at", "played_at"),
        Index("ix_playback_events_track", "track_id"),
    )


# Listen up, CellAggregateModel is a CACHE. total_plays/unique_* are recounted from
# playback_events, the avg_* columns and color_hex are rewritten by the aggregator in one
# UPDATE. color_hex is only ever overwritten with a real color, never reset to NULL.
class CellAggregateModel(Base):
    """Per-cell rollup."""

    __tablename__ = "cell_aggregates"

    hex_id: Mapped[str] = mapped_column(String(20), primary_key=True)
    center_lat: Mapped[float] = mapped_column(Float, nullable=False)
    center_lng: Mapped[float] = mapped_column(Float, nullable=False)
    resolution: Mapped[int] = mapped_column(Integer, default=9, nullable=False)
    total_plays: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_tracks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_energy: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_valence: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_danceability: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_acousticness: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_instrumentalness: Mapped[float | None] = mapped_column(Float, nullable=True)
    color_hex: Mapped[str | None] = mapped_column(String(7), nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_aggregation_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_cell_aggregates_center", "center_lat", "center_lng"),
        Index("ix_cell_aggregates_total_plays", "total_plays"),
        Index("ix_cell_aggregates_last_aggregation", "last_aggregation_at"),
    )


class CellTopTrackModel(Base):
    """Ranking entry of one track inside one cell."""

    __tablename__ = "cell_top_tracks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    hex_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("cell_aggregates.hex_id", ondelete="CASCADE"),
        nullable=False,
    )
    track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False
    )
    play_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rank_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_played_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("hex_id", "track_id", name="uq_cell_top_tracks_hex_track"),
        Index("ix_cell_top_tracks_rank", "hex_id", "rank_score"),
    )
