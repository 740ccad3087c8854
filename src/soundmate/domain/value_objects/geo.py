"""Geographic value objects."""

import re
from dataclasses import dataclass

from soundmate.domain.exceptions import (
    InvalidBoundsError,
    InvalidCellIdError,
    ValidationException,
)

CELL_ID_PATTERN = re.compile(r"^[0-9a-f]+$")
# An H3 index is a 64-bit integer.
MAX_CELL_ID_LENGTH = 16


@dataclass(frozen=True)
class Coordinate:
    """WGS84 latitude/longitude pair."""

    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValidationException(f"Latitude must be between -90 and 90: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValidationException(
                f"Longitude must be between -180 and 180: {self.lng}"
            )


@dataclass(frozen=True)
class BoundingBox:
    """Map viewport.

    A box is only meaningful when ``north > south``; east/west are not ordered
    against each other here, the repositories filter with a plain BETWEEN so a
    box crossing the antimeridian simply matches nothing.
    """

    north: float
    south: float
    east: float
    west: float

    def __post_init__(self) -> None:
        if self.north <= self.south:
            raise InvalidBoundsError(self.north, self.south)

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def to_dict(self) -> dict[str, float]:
        return {
            "north": self.north,
            "south": self.south,
            "east": self.east,
            "west": self.west,
        }


def normalize_cell_id(cell_id: str) -> str:
    """Lower-case a cell id and check its character set.

    Raises:
        InvalidCellIdError: If the id is empty, longer than 16 characters or
            contains anything but hex digits
    """
    candidate = cell_id.strip().lower()
    if (
        not candidate
        or len(candidate) > MAX_CELL_ID_LENGTH
        or not CELL_ID_PATTERN.match(candidate)
    ):
        raise InvalidCellIdError(cell_id)
    return candidate
