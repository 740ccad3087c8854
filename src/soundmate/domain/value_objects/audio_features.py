"""Audio feature vector value object."""

from dataclasses import asdict, dataclass
from typing import Any

FEATURE_NAMES: tuple[str, ...] = (
    "energy",
    "valence",
    "danceability",
    "acousticness",
    "instrumentalness",
    "speechiness",
    "liveness",
    "loudness",
    "tempo",
    "popularity",
)


# Hey future me, every field is optional on purpose! Spotify sometimes omits values and the
# cell averages only cover five dimensions. The color mapper decides what a missing value
# means (0.5), this object just carries what we know. All values live in [0,1] once they
# are stored; raw loudness (dB), tempo (BPM) and popularity (0..100) are normalised by the
# feature provider before they end up here.
@dataclass(frozen=True)
class AudioFeatures:
    """Normalised audio feature vector."""

    energy: float | None = None
    valence: float | None = None
    danceability: float | None = None
    acousticness: float | None = None
    instrumentalness: float | None = None
    speechiness: float | None = None
    liveness: float | None = None
    loudness: float | None = None
    tempo: float | None = None
    popularity: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AudioFeatures | None":
        """Build from a stored JSON mapping, ignoring unknown keys."""
        if not data:
            return None
        values: dict[str, float | None] = {}
        for name in FEATURE_NAMES:
            raw = data.get(name)
            values[name] = float(raw) if isinstance(raw, int | float) else None
        return cls(**values)

    def to_dict(self) -> dict[str, float | None]:
        return asdict(self)

    @classmethod
    def neutral(cls) -> "AudioFeatures":
        """Fallback vector used when the provider cannot deliver features."""
        return cls(
            energy=0.5,
            valence=0.5,
            danceability=0.5,
            acousticness=0.5,
            instrumentalness=0.1,
            speechiness=0.1,
            liveness=0.1,
            loudness=0.5,
            tempo=0.5,
            popularity=0.0,
        )
