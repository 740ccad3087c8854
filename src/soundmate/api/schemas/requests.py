"""Request bodies for the HTTP API."""

from pydantic import BaseModel, Field, field_validator

from soundmate.domain.value_objects import CELL_ID_PATTERN, TrackDescriptor


class LocationIn(BaseModel):
    """WGS84 coordinate."""

    lat: float = Field(ge=-90, le=90, description="Latitude")
    lng: float = Field(ge=-180, le=180, description="Longitude")


class TrackDataIn(BaseModel):
    """Track as reported by the client's player."""

    id: str = Field(min_length=1, max_length=64, description="Spotify track id")
    name: str = Field(min_length=1, max_length=500)
    artist: str = Field(min_length=1, max_length=500)
    album: str | None = Field(default=None, max_length=500)
    duration_ms: int | None = Field(default=None, ge=0)
    preview_url: str | None = None
    image_url: str | None = None
    external_url: str | None = None
    progress_ms: int = Field(default=0, ge=0)
    is_playing: bool = True

    def to_descriptor(self) -> TrackDescriptor:
        return TrackDescriptor(
            external_id=self.id,
            name=self.name,
            artist=self.artist,
            album=self.album,
            duration_ms=self.duration_ms,
            preview_url=self.preview_url,
            image_url=self.image_url,
            external_url=self.external_url,
        )


class PlaybackIn(BaseModel):
    """POST /music/playback body."""

    track_data: TrackDataIn
    location: LocationIn
    hex_id: str | None = Field(
        default=None, description="Cell id; derived from location when omitted"
    )

    @field_validator("hex_id")
    @classmethod
    def validate_hex_id(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower()
        if not CELL_ID_PATTERN.match(v):
            raise ValueError("hex_id must be a lowercase hexadecimal H3 index")
        return v
