"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
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
)
from soundmate.domain.value_objects import AudioFeatures, BoundingBox, TrackDescriptor


# Hey future me, this is THE storage contract of the aggregation engine. Services never see
# SQLAlchemy or dicts, only this interface. Two implementations exist (SQL + in-memory),
# picked once at startup from settings.database.backend. Implementations NEVER commit on
# their own - the surrounding IAggregationStore.transaction() does that, so a recorder or
# aggregator call is always all-or-nothing.
class IAggregationRepository(ABC):
    """Repository interface for tracks, playback events and cell projections."""

    # --- users -------------------------------------------------------------

    @abstractmethod
    async def find_user_by_access_token(self, access_token: str) -> User | None:
        """Resolve a listener by bearer token."""
        pass

    @abstractmethod
    async def upsert_user(self, user: User) -> User:
        """Insert or update a user keyed on external_id."""
        pass

    # --- tracks ------------------------------------------------------------

    @abstractmethod
    async def find_track_by_external_id(self, external_id: str) -> Track | None:
        """Look up a track by its catalog (Spotify) id."""
        pass

    @abstractmethod
    async def get_track(self, track_id: str) -> Track | None:
        """Look up a track by internal id."""
        pass

    @abstractmethod
    async def upsert_track(self, descriptor: TrackDescriptor) -> Track:
        """Return the track for descriptor.external_id, creating it if unseen.

        Existing rows are returned unchanged; catalog data is immutable.
        """
        pass

    @abstractmethod
    async def update_track_features(
        self, track_id: str, features: AudioFeatures, color_hex: str
    ) -> None:
        """Attach an audio-feature vector and derived color to a track."""
        pass

    # --- playback events ---------------------------------------------------

    @abstractmethod
    async def insert_playback_event(self, event: PlaybackEvent) -> None:
        """Append a playback event."""
        pass

    @abstractmethod
    async def find_recent_duplicate(
        self,
        user_id: str,
        track_id: str,
        cell_id: str,
        window_seconds: int,
        now: datetime,
    ) -> PlaybackEvent | None:
        """Return an event for the same (user, track, cell) newer than now - window."""
        pass

    @abstractmethod
    async def count_recent_plays(self, cell_id: str, since: datetime) -> int:
        """Count events in a cell since a point in time."""
        pass

    @abstractmethod
    async def count_recent_users(self, cell_ids: Sequence[str], since: datetime) -> int:
        """Count distinct listeners across cells since a point in time."""
        pass

    @abstractmethod
    async def get_user_history(
        self, user_id: str, limit: int, offset: int = 0
    ) -> list[PlaybackHistoryEntry]:
        """A listener's events joined with their tracks, newest first."""
        pass

    @abstractmethod
    async def count_user_playbacks(self, user_id: str) -> int:
        """Number of events recorded for a listener."""
        pass

    @abstractmethod
    async def get_track_playback_stats(self, track_id: str) -> TrackPlaybackStats:
        """All-time plays, listeners, distinct cells and last play of a track."""
        pass

    # --- cell aggregates ---------------------------------------------------

    @abstractmethod
    async def upsert_cell_aggregate(
        self, cell_id: str, center_lat: float, center_lng: float, resolution: int
    ) -> CellAggregate:
        """Return the aggregate row for a cell, creating a zeroed one if absent."""
        pass

    @abstractmethod
    async def refresh_cell_counters(self, cell_id: str) -> CellAggregate:
        """Recompute total_plays, unique_users, unique_tracks and last_activity_at."""
        pass

    @abstractmethod
    async def get_cell_aggregate(self, cell_id: str) -> CellAggregate | None:
        """Get one aggregate row."""
        pass

    @abstractmethod
    async def query_cells_by_bounds(
        self, bounds: BoundingBox, limit: int, require_color: bool = True
    ) -> list[CellAggregate]:
        """Active cells whose center lies in the box.

        Ordered by total_plays desc, then last_activity_at desc.
        """
        pass

    @abstractmethod
    async def query_cells_by_ids(
        self, cell_ids: Sequence[str], limit: int
    ) -> list[CellAggregate]:
        """Active cells among the given ids, same ordering as query_cells_by_bounds."""
        pass

    @abstractmethod
    async def query_stale_cells(
        self, stale_before: datetime, window_start: datetime, limit: int
    ) -> list[str]:
        """Cells that need re-aggregation.

        total_plays > 0 AND (color IS NULL OR last_aggregation_at IS NULL OR
        last_aggregation_at < stale_before) AND at least one event since
        window_start whose track has audio features. Ordered by total_plays desc.
        """
        pass

    @abstractmethod
    async def query_active_cells(self, limit: int) -> list[str]:
        """Cells with total_plays > 0, busiest and most recent first."""
        pass

    @abstractmethod
    async def get_activity_extent(self) -> ActivityExtent:
        """Min/max center coordinates and count of cells with total_plays > 0."""
        pass

    @abstractmethod
    async def compute_cell_feature_averages(
        self, cell_id: str, since: datetime
    ) -> CellFeatureAverages:
        """Average features over feature-bearing events of a cell since a point in time."""
        pass

    @abstractmethod
    async def save_cell_aggregation(self, aggregate: CellAggregate) -> None:
        """Overwrite counters, averages, color and last_aggregation_at of a cell."""
        pass

    # --- top tracks --------------------------------------------------------

    @abstractmethod
    async def upsert_cell_top_track(
        self,
        cell_id: str,
        track_id: str,
        played_at: datetime,
        play_weight: float,
        user_weight: float,
    ) -> CellTopTrack:
        """Count one play of track in cell and recompute its ranking.

        play_count is incremented, unique_users recomputed with a distinct count
        over events, rank_score = play_count*play_weight + unique_users*user_weight.
        """
        pass

    @abstractmethod
    async def get_top_tracks(
        self, cell_id: str, limit: int, offset: int = 0
    ) -> list[RankedTrack]:
        """Ranked tracks of a cell, by rank_score desc then play_count desc."""
        pass

    @abstractmethod
    async def get_top_tracks_for_cells(
        self, cell_ids: Sequence[str], limit: int
    ) -> list[RankedTrack]:
        """Best-ranked entry per distinct track across several cells."""
        pass

    @abstractmethod
    async def count_top_tracks(self, cell_id: str) -> int:
        """Number of ranked tracks in a cell."""
        pass

    @abstractmethod
    async def get_track_cell_performance(
        self, track_id: str
    ) -> list[TrackCellPerformance]:
        """Every ranking entry of a track joined with its cell, by rank_score desc."""
        pass


class IMaintenanceRepository(ABC):
    """Retention cleanups over the derived projections and the event log."""

    @abstractmethod
    async def delete_inactive_cells(self, created_before: datetime) -> int:
        """Delete aggregates with zero plays created before a cutoff."""
        pass

    @abstractmethod
    async def delete_low_activity_top_tracks(
        self, min_play_count: int, last_played_before: datetime
    ) -> int:
        """Delete ranking rows below a play count that have not been played since a cutoff."""
        pass

    @abstractmethod
    async def delete_playback_events_before(self, cutoff: datetime) -> int:
        """Delete playback events older than a cutoff."""
        pass


class IRepository(IAggregationRepository, IMaintenanceRepository, ABC):
    """Full repository surface handed out by a store transaction."""


class IAggregationStore(ABC):
    """Opens transactional repository scopes.

    Usage:
        async with store.transaction() as repo:
            track = await repo.upsert_track(descriptor)
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[IRepository]:
        """Commit on clean exit, roll back and re-raise on error."""
        pass

    async def initialize(self) -> None:  # noqa: B027
        """Prepare the backing store (create schema etc.)."""

    async def close(self) -> None:  # noqa: B027
        """Release backing resources."""

    def get_stats(self) -> dict[str, Any]:
        """Backend details for the health endpoint."""
        return {}


class IGridIndex(ABC):
    """Hexagonal grid operations."""

    @abstractmethod
    def cell_for(self, lat: float, lng: float, resolution: int | None = None) -> str:
        """Cell id containing a coordinate."""
        pass

    @abstractmethod
    def center(self, cell_id: str) -> tuple[float, float]:
        """(lat, lng) center of a cell."""
        pass

    @abstractmethod
    def boundary(self, cell_id: str) -> list[tuple[float, float]]:
        """Polygon vertices of a cell as (lat, lng) pairs."""
        pass

    @abstractmethod
    def disk(self, cell_id: str, rings: int) -> list[str]:
        """Cell plus all neighbours within the given ring distance."""
        pass

    @abstractmethod
    def is_valid(self, cell_id: str) -> bool:
        """Whether a string is a valid cell id."""
        pass

    @abstractmethod
    def resolution_of(self, cell_id: str) -> int:
        """Resolution of a cell id."""
        pass


class IAudioFeatureProvider(ABC):
    """Source of audio features for catalog tracks."""

    @abstractmethod
    async def get_audio_features(
        self, external_id: str, access_token: str | None = None
    ) -> AudioFeatures:
        """Fetch normalised features for a track.

        Raises:
            RateLimitExceededError: Provider keeps answering 429
            ExternalServiceError: Any other provider failure
        """
        pass


__all__ = [
    "IAggregationRepository",
    "IAggregationStore",
    "IAudioFeatureProvider",
    "IGridIndex",
    "IMaintenanceRepository",
    "IRepository",
]
