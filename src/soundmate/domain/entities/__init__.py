"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from soundmate.domain.value_objects import AudioFeatures


def utc_now() -> datetime:
    return datetime.now(UTC)


class ActivityLevel(str, Enum):
    """Coarse activity bucket shown on the map."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_plays(cls, total_plays: int) -> "ActivityLevel":
        if total_plays > 50:
            return cls.HIGH
        if total_plays > 10:
            return cls.MEDIUM
        return cls.LOW


@dataclass
class User:
    """Listener known to the system through a bearer token."""

    id: str
    external_id: str
    display_name: str | None = None
    access_token: str | None = None
    created_at: datetime = field(default_factory=utc_now)


# Yo, Track is a catalog entry keyed by the Spotify id. The only mutation after creation is
# attaching features + color once the background fetch completes. Never deleted - events
# reference it forever.
@dataclass
class Track:
    """Catalog track."""

    id: str
    external_id: str
    name: str
    artist: str
    album: str | None = None
    duration_ms: int | None = None
    preview_url: str | None = None
    image_url: str | None = None
    external_url: str | None = None
    audio_features: AudioFeatures | None = None
    color_hex: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def needs_features(self) -> bool:
        return self.audio_features is None or self.color_hex is None


@dataclass
class PlaybackEvent:
    """Append-only listening fact."""

    id: str
    user_id: str
    track_id: str
    cell_id: str
    lat: float
    lng: float
    played_at: datetime = field(default_factory=utc_now)
    progress_ms: int = 0
    is_playing: bool = True

    def __post_init__(self) -> None:
        if self.progress_ms < 0:
            raise ValueError("progress_ms cannot be negative")


# Hey future me, CellAggregate is a CACHE, not a source of truth! Every field can be rebuilt
# by replaying the cell's playback events through CellAggregator. Don't put anything here
# that can't be derived from events (except center + resolution, which come from H3).
@dataclass
class CellAggregate:
    """Per-cell rollup shown on the map."""

    cell_id: str
    center_lat: float
    center_lng: float
    resolution: int = 9
    total_plays: int = 0
    unique_users: int = 0
    unique_tracks: int = 0
    avg_energy: float | None = None
    avg_valence: float | None = None
    avg_danceability: float | None = None
    avg_acousticness: float | None = None
    avg_instrumentalness: float | None = None
    color_hex: str | None = None
    last_activity_at: datetime | None = None
    last_aggregation_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def activity_level(self) -> ActivityLevel:
        return ActivityLevel.from_plays(self.total_plays)

    @property
    def has_features(self) -> bool:
        return self.avg_energy is not None

    def averaged_features(self) -> AudioFeatures | None:
        """Return the averaged dimensions as a feature vector, if aggregated."""
        if not self.has_features:
            return None
        return AudioFeatures(
            energy=self.avg_energy,
            valence=self.avg_valence,
            danceability=self.avg_danceability,
            acousticness=self.avg_acousticness,
            instrumentalness=self.avg_instrumentalness,
        )


@dataclass
class CellTopTrack:
    """Ranking entry for one track inside one cell."""

    cell_id: str
    track_id: str
    play_count: int = 0
    unique_users: int = 0
    rank_score: float = 0.0
    last_played_at: datetime = field(default_factory=utc_now)

    @staticmethod
    def compute_rank_score(
        play_count: int,
        unique_users: int,
        play_weight: float = 0.7,
        user_weight: float = 0.3,
    ) -> float:
        return play_count * play_weight + unique_users * user_weight


@dataclass
class RankedTrack:
    """Top-track entry joined with its catalog data, as served to the map."""

    entry: CellTopTrack
    track: Track

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track.id,
            "spotify_track_id": self.track.external_id,
            "name": self.track.name,
            "artist": self.track.artist,
            "album": self.track.album,
            "image_url": self.track.image_url,
            "color_hex": self.track.color_hex,
            "play_count": self.entry.play_count,
            "unique_users": self.entry.unique_users,
            "rank_score": round(self.entry.rank_score, 4),
            "last_played_at": self.entry.last_played_at.isoformat(),
        }


@dataclass
class CellFeatureAverages:
    """Window averages over feature-bearing events of one cell."""

    contributing_events: int
    total_plays: int
    unique_users: int
    unique_tracks: int
    energy: float | None = None
    valence: float | None = None
    danceability: float | None = None
    acousticness: float | None = None
    instrumentalness: float | None = None
    last_activity_at: datetime | None = None


@dataclass
class PlaybackResult:
    """Outcome of PlaybackRecorder.record()."""

    accepted: bool
    cell_id: str
    track_id: str
    playback_id: str | None = None
    reason: str | None = None
    features_processing: bool = False


@dataclass
class ActivityExtent:
    """Box around the centers of every cell that has plays."""

    total_cells: int = 0
    north: float | None = None
    south: float | None = None
    east: float | None = None
    west: float | None = None

    def to_dict(self) -> dict[str, Any]:
        if (
            self.total_cells == 0
            or self.north is None
            or self.south is None
            or self.east is None
            or self.west is None
        ):
            return {"bounds": None, "center": None, "total_hexes": 0}
        return {
            "bounds": {
                "north": self.north,
                "south": self.south,
                "east": self.east,
                "west": self.west,
            },
            "center": {
                "lat": (self.north + self.south) / 2,
                "lng": (self.east + self.west) / 2,
            },
            "total_hexes": self.total_cells,
        }


@dataclass
class PlaybackHistoryEntry:
    """One event of a listener's history joined with its track."""

    event: PlaybackEvent
    track: Track

    def to_dict(self) -> dict[str, Any]:
        return {
            "playback_id": self.event.id,
            "track_id": self.track.id,
            "spotify_track_id": self.track.external_id,
            "name": self.track.name,
            "artist": self.track.artist,
            "album": self.track.album,
            "image_url": self.track.image_url,
            "external_url": self.track.external_url,
            "hex_id": self.event.cell_id,
            "lat": self.event.lat,
            "lng": self.event.lng,
            "progress_ms": self.event.progress_ms,
            "is_playing": self.event.is_playing,
            "played_at": self.event.played_at.isoformat(),
        }


@dataclass
class TrackPlaybackStats:
    """All-time listening counters of one track."""

    total_plays: int = 0
    unique_users: int = 0
    unique_locations: int = 0
    last_played_at: datetime | None = None


@dataclass
class TrackCellPerformance:
    """Ranking of one track inside one cell, with the cell's position."""

    entry: CellTopTrack
    center_lat: float
    center_lng: float
    cell_total_plays: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "hex_id": self.entry.cell_id,
            "center_lat": self.center_lat,
            "center_lng": self.center_lng,
            "play_count": self.entry.play_count,
            "unique_users": self.entry.unique_users,
            "rank_score": round(self.entry.rank_score, 4),
            "last_played_at": self.entry.last_played_at.isoformat(),
            "hex_total_plays": self.cell_total_plays,
        }


__all__ = [
    "ActivityExtent",
    "ActivityLevel",
    "CellAggregate",
    "CellFeatureAverages",
    "CellTopTrack",
    "PlaybackEvent",
    "PlaybackHistoryEntry",
    "PlaybackResult",
    "RankedTrack",
    "Track",
    "TrackCellPerformance",
    "TrackPlaybackStats",
    "User",
    "utc_now",
]
