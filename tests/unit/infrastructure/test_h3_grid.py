"""Tests for the H3 grid adapter."""

import pytest

from soundmate.domain.exceptions import InvalidCellIdError
from soundmate.infrastructure.grid.h3_grid import H3GridIndex


class TestH3GridIndex:
    def test_cell_for_uses_default_resolution(self, grid: H3GridIndex) -> None:
        cell = grid.cell_for(52.5219, 13.4132)

        assert grid.is_valid(cell)
        assert grid.resolution_of(cell) == 9
        assert len(cell) == 15

    def test_explicit_resolution(self, grid: H3GridIndex) -> None:
        assert grid.resolution_of(grid.cell_for(52.5219, 13.4132, resolution=7)) == 7
        assert grid.resolution_of(grid.cell_for(52.5219, 13.4132, resolution=0)) == 0

    def test_center_is_inside_cell(self, grid: H3GridIndex) -> None:
        cell = grid.cell_for(52.5219, 13.4132)

        lat, lng = grid.center(cell)

        assert lat == pytest.approx(52.5219, abs=0.01)
        assert lng == pytest.approx(13.4132, abs=0.01)
        assert grid.cell_for(lat, lng) == cell

    def test_boundary_is_hexagon(self, grid: H3GridIndex) -> None:
        boundary = grid.boundary(grid.cell_for(52.5219, 13.4132))

        assert len(boundary) == 6
        assert all(isinstance(point, tuple) and len(point) == 2 for point in boundary)

    @pytest.mark.parametrize(("rings", "expected"), [(0, 1), (1, 7), (2, 19), (3, 37)])
    def test_disk_sizes(self, grid: H3GridIndex, rings: int, expected: int) -> None:
        cell = grid.cell_for(52.5219, 13.4132)

        disk = grid.disk(cell, rings)

        assert len(disk) == expected
        assert cell in disk

    @pytest.mark.parametrize(
        "bad", ["", "zzzz", "abc", "8928308280fffffff", "f" * 40]
    )
    def test_invalid_ids(self, grid: H3GridIndex, bad: str) -> None:
        assert grid.is_valid(bad) is False
        with pytest.raises(InvalidCellIdError):
            grid.center(bad)
