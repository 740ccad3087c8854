"""Spatial read side: map viewport queries and per-cell detail.

Hey future me - everything here is READ ONLY except resolve_location(), which
makes sure a cell row exists before the client starts posting playbacks to it.
Results of the two map queries (bounds + center) go through the TTL cache; the
aggregator clears it whenever a cell color changes. Detail and track lists are
not cached, they are single-cell lookups and should reflect fresh plays.
"""

import logging
from datetime import timedelta
from typing import Any

from soundmate.application.cache import BaseCache
from soundmate.application.services.cell_aggregator import mood_tags_for
from soundmate.domain.entities import CellAggregate, RankedTrack, utc_now
from soundmate.domain.exceptions import CellNotFoundError, InvalidCellIdError
from soundmate.domain.ports import IAggregationStore, IGridIndex
from soundmate.domain.value_objects import BoundingBox, Coordinate, normalize_cell_id

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
CELL_TOP_TRACKS = 3
DETAIL_TOP_TRACKS = 10
AREA_TRACKS_LIMIT = 100


def rings_for_zoom(zoom: int) -> int:
    """Grid-disk radius for a map zoom level (wider search when zoomed out)."""
    if zoom <= 10:
        return 3
    if zoom <= 13:
        return 2
    return 1


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def cell_to_dict(aggregate: CellAggregate) -> dict[str, Any]:
    """Public representation of a cell aggregate."""
    return {
        "hex_id": aggregate.cell_id,
        "center_lat": aggregate.center_lat,
        "center_lng": aggregate.center_lng,
        "resolution": aggregate.resolution,
        "total_plays": aggregate.total_plays,
        "unique_users": aggregate.unique_users,
        "unique_tracks": aggregate.unique_tracks,
        "color_hex": aggregate.color_hex,
        "avg_energy": aggregate.avg_energy,
        "avg_valence": aggregate.avg_valence,
        "avg_danceability": aggregate.avg_danceability,
        "avg_acousticness": aggregate.avg_acousticness,
        "avg_instrumentalness": aggregate.avg_instrumentalness,
        "activity_level": aggregate.activity_level.value,
        "last_activity_at": _iso(aggregate.last_activity_at),
        "last_aggregation_at": _iso(aggregate.last_aggregation_at),
    }


def _tracks_to_dicts(tracks: list[RankedTrack]) -> list[dict[str, Any]]:
    return [t.to_dict() for t in tracks]


class SpatialQueryService:
    """Answers "what is playing around here" for the map."""

    def __init__(
        self,
        store: IAggregationStore,
        grid: IGridIndex,
        resolution: int = 9,
        recent_activity_hours: int = 24,
        cache: BaseCache[Any, Any] | None = None,
    ) -> None:
        self._store = store
        self._grid = grid
        self._resolution = resolution
        self._recent_window = timedelta(hours=recent_activity_hours)
        self._cache = cache

    def _valid_cell(self, cell_id: str) -> str:
        normalized = normalize_cell_id(cell_id)
        if not self._grid.is_valid(normalized):
            raise InvalidCellIdError(cell_id)
        return normalized

    async def _cached(self, key: tuple[Any, ...]) -> dict[str, Any] | None:
        if self._cache is None:
            return None
        return await self._cache.get(key)

    async def _remember(self, key: tuple[Any, ...], value: dict[str, Any]) -> None:
        if self._cache is not None:
            await self._cache.set(key, value)

    async def query_by_bounds(
        self,
        north: float,
        south: float,
        east: float,
        west: float,
        limit: int = DEFAULT_LIMIT,
        include_uncolored: bool = False,
    ) -> dict[str, Any]:
        """Colored, active cells whose center lies in the viewport.

        include_uncolored also returns active cells still waiting for their first
        color (color_hex is None until features arrive).

        Raises:
            InvalidBoundsError: north <= south
        """
        bounds = BoundingBox(north=north, south=south, east=east, west=west)
        key = ("bounds", north, south, east, west, limit, include_uncolored)
        if (cached := await self._cached(key)) is not None:
            return cached

        async with self._store.transaction() as repo:
            cells = await repo.query_cells_by_bounds(
                bounds, limit, require_color=not include_uncolored
            )
            hexagons = []
            for cell in cells:
                item = cell_to_dict(cell)
                item["top_tracks"] = _tracks_to_dicts(
                    await repo.get_top_tracks(cell.cell_id, CELL_TOP_TRACKS)
                )
                hexagons.append(item)

        result = {
            "hexagons": hexagons,
            "bounds": bounds.to_dict(),
            "total_hexes_found": len(hexagons),
        }
        await self._remember(key, result)
        return result

    async def query_by_center(
        self, lat: float, lng: float, zoom: int = 15, limit: int = DEFAULT_LIMIT
    ) -> dict[str, Any]:
        """Active cells in a zoom-dependent grid disk around a coordinate."""
        center = Coordinate(lat=lat, lng=lng)
        key = ("center", center.lat, center.lng, zoom, limit)
        if (cached := await self._cached(key)) is not None:
            return cached

        center_cell = self._grid.cell_for(center.lat, center.lng, self._resolution)
        rings = rings_for_zoom(zoom)
        disk = self._grid.disk(center_cell, rings)
        since = utc_now() - self._recent_window

        async with self._store.transaction() as repo:
            cells = await repo.query_cells_by_ids(disk, limit)
            hexes = []
            for cell in cells:
                item = cell_to_dict(cell)
                item["top_tracks"] = _tracks_to_dicts(
                    await repo.get_top_tracks(cell.cell_id, CELL_TOP_TRACKS)
                )
                hexes.append(item)
            tracks = await repo.get_top_tracks_for_cells(disk, AREA_TRACKS_LIMIT)
            users_count = await repo.count_recent_users(disk, since)

        result = {
            "hexes": hexes,
            "tracks": _tracks_to_dicts(tracks),
            "users_count": users_count,
            "search_area": {
                "center": {"lat": center.lat, "lng": center.lng},
                "center_hex": center_cell,
                "zoom_level": zoom,
                "disk_radius": rings,
                "total_hexes_searched": len(disk),
                "active_hexes_found": len(hexes),
            },
        }
        await self._remember(key, result)
        return result

    async def get_activity_bounds(self) -> dict[str, Any]:
        """Box and center around every cell with plays, for the initial map view."""
        async with self._store.transaction() as repo:
            extent = await repo.get_activity_extent()
        return extent.to_dict()

    async def get_cell_detail(self, cell_id: str) -> dict[str, Any]:
        """Aggregate, top tracks and 24h activity of one cell.

        Raises:
            InvalidCellIdError: Not a grid cell id
            CellNotFoundError: No aggregate row for the cell
        """
        cell_id = self._valid_cell(cell_id)
        since = utc_now() - self._recent_window

        async with self._store.transaction() as repo:
            aggregate = await repo.get_cell_aggregate(cell_id)
            if aggregate is None:
                raise CellNotFoundError(cell_id)
            top_tracks = await repo.get_top_tracks(cell_id, DETAIL_TOP_TRACKS)
            plays_24h = await repo.count_recent_plays(cell_id, since)

        hex_info = cell_to_dict(aggregate)
        hex_info["mood_tags"] = mood_tags_for(aggregate)
        hex_info["boundary"] = [
            {"lat": lat, "lng": lng} for lat, lng in self._grid.boundary(cell_id)
        ]
        return {
            "hex_info": hex_info,
            "top_tracks": _tracks_to_dicts(top_tracks),
            "recent_activity": {"plays_24h": plays_24h},
        }

    async def get_cell_tracks(
        self, cell_id: str, limit: int = 10, offset: int = 0
    ) -> dict[str, Any]:
        """Paginated ranking of a cell.

        Raises:
            CellNotFoundError: No aggregate row for the cell
        """
        cell_id = self._valid_cell(cell_id)
        async with self._store.transaction() as repo:
            if await repo.get_cell_aggregate(cell_id) is None:
                raise CellNotFoundError(cell_id)
            tracks = await repo.get_top_tracks(cell_id, limit, offset)
            total = await repo.count_top_tracks(cell_id)

        return {
            "hex_id": cell_id,
            "tracks": _tracks_to_dicts(tracks),
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    async def resolve_location(self, lat: float, lng: float) -> dict[str, Any]:
        """Map a coordinate to its cell and make sure the cell row exists."""
        coordinate = Coordinate(lat=lat, lng=lng)
        cell_id = self._grid.cell_for(coordinate.lat, coordinate.lng, self._resolution)
        center_lat, center_lng = self._grid.center(cell_id)

        async with self._store.transaction() as repo:
            await repo.upsert_cell_aggregate(
                cell_id, center_lat, center_lng, self._resolution
            )

        logger.debug("Resolved (%s, %s) to cell %s", lat, lng, cell_id)
        return {
            "hex_id": cell_id,
            "center_lat": center_lat,
            "center_lng": center_lng,
            "resolution": self._resolution,
            "input_coordinates": {"lat": coordinate.lat, "lng": coordinate.lng},
        }

    async def nearby_cells(
        self, lat: float, lng: float, rings: int = 2
    ) -> dict[str, Any]:
        """Every cell in a grid disk with whatever activity it has (zero if none)."""
        coordinate = Coordinate(lat=lat, lng=lng)
        center_cell = self._grid.cell_for(
            coordinate.lat, coordinate.lng, self._resolution
        )
        disk = self._grid.disk(center_cell, rings)

        async with self._store.transaction() as repo:
            active = {c.cell_id: c for c in await repo.query_cells_by_ids(disk, len(disk))}

        nearby = []
        for cell_id in disk:
            aggregate = active.get(cell_id)
            if aggregate is not None:
                nearby.append(cell_to_dict(aggregate))
                continue
            center_lat, center_lng = self._grid.center(cell_id)
            nearby.append(
                {
                    "hex_id": cell_id,
                    "center_lat": center_lat,
                    "center_lng": center_lng,
                    "resolution": self._resolution,
                    "total_plays": 0,
                    "unique_users": 0,
                    "unique_tracks": 0,
                    "color_hex": None,
                    "activity_level": "low",
                }
            )
        nearby.sort(key=lambda item: (-item["total_plays"], item["hex_id"]))

        return {
            "center_hex": center_cell,
            "rings": rings,
            "nearby_hexes": nearby,
            "total": len(nearby),
        }
