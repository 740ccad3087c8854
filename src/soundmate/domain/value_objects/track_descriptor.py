"""Track descriptor submitted with a playback event."""

from dataclasses import dataclass

from soundmate.domain.exceptions import ValidationException


@dataclass(frozen=True)
class TrackDescriptor:
    """Catalog data the client sends about the track being played.

    ``external_id`` is the Spotify track id and the natural key for upserts.
    """

    external_id: str
    name: str
    artist: str
    album: str | None = None
    duration_ms: int | None = None
    preview_url: str | None = None
    image_url: str | None = None
    external_url: str | None = None

    def __post_init__(self) -> None:
        if not self.external_id:
            raise ValidationException("Track id is required")
        if not self.name or len(self.name) > 500:
            raise ValidationException("Track name must be 1-500 characters")
        if not self.artist:
            raise ValidationException("Track artist is required")
