"""Domain value objects."""

from soundmate.domain.value_objects.audio_features import FEATURE_NAMES, AudioFeatures
from soundmate.domain.value_objects.geo import (
    CELL_ID_PATTERN,
    MAX_CELL_ID_LENGTH,
    BoundingBox,
    Coordinate,
    normalize_cell_id,
)
from soundmate.domain.value_objects.track_descriptor import TrackDescriptor

__all__ = [
    "AudioFeatures",
    "BoundingBox",
    "CELL_ID_PATTERN",
    "Coordinate",
    "FEATURE_NAMES",
    "MAX_CELL_ID_LENGTH",
    "TrackDescriptor",
    "normalize_cell_id",
]
