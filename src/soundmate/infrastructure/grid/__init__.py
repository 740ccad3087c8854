"""Spatial grid adapters."""

from soundmate.infrastructure.grid.h3_grid import H3GridIndex

__all__ = ["H3GridIndex"]
