"""H3 grid adapter."""

import h3

from soundmate.domain.exceptions import InvalidCellIdError
from soundmate.domain.ports import IGridIndex
from soundmate.domain.value_objects import MAX_CELL_ID_LENGTH


class H3GridIndex(IGridIndex):
    """IGridIndex backed by the h3 library (v4 API)."""

    def __init__(self, resolution: int = 9) -> None:
        self.resolution = resolution

    def cell_for(self, lat: float, lng: float, resolution: int | None = None) -> str:
        return h3.latlng_to_cell(
            lat, lng, self.resolution if resolution is None else resolution
        )

    def center(self, cell_id: str) -> tuple[float, float]:
        self._require_valid(cell_id)
        lat, lng = h3.cell_to_latlng(cell_id)
        return lat, lng

    def boundary(self, cell_id: str) -> list[tuple[float, float]]:
        self._require_valid(cell_id)
        return [(lat, lng) for lat, lng in h3.cell_to_boundary(cell_id)]

    def disk(self, cell_id: str, rings: int) -> list[str]:
        self._require_valid(cell_id)
        return list(h3.grid_disk(cell_id, rings))

    def is_valid(self, cell_id: str) -> bool:
        if not isinstance(cell_id, str) or len(cell_id) > MAX_CELL_ID_LENGTH:
            return False
        try:
            return bool(h3.is_valid_cell(cell_id))
        except (TypeError, ValueError, OverflowError):
            return False

    def resolution_of(self, cell_id: str) -> int:
        self._require_valid(cell_id)
        return h3.get_resolution(cell_id)

    def _require_valid(self, cell_id: str) -> None:
        if not self.is_valid(cell_id):
            raise InvalidCellIdError(cell_id)
