"""Map endpoints: viewport queries and cell detail."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from soundmate.api.dependencies import get_spatial_query
from soundmate.api.responses import success_response
from soundmate.application.services.spatial_query_service import SpatialQueryService
from soundmate.domain.exceptions import MissingParameterError

router = APIRouter()


@router.get("/hexagons")
async def get_hexagons(
    north: float | None = Query(default=None, ge=-90, le=90),
    south: float | None = Query(default=None, ge=-90, le=90),
    east: float | None = Query(default=None, ge=-180, le=180),
    west: float | None = Query(default=None, ge=-180, le=180),
    limit: int = Query(default=50, ge=1, le=200),
    include_uncolored: bool = Query(default=False),
    spatial: SpatialQueryService = Depends(get_spatial_query),
) -> dict[str, Any]:
    """Colored cells inside the map viewport."""
    if north is None or south is None or east is None or west is None:
        raise MissingParameterError(
            "MISSING_BOUNDS", "Map bounds (north, south, east, west) are required"
        )
    return success_response(
        await spatial.query_by_bounds(
            north, south, east, west, limit, include_uncolored=include_uncolored
        )
    )


@router.get("/bounds")
async def get_bounds(
    spatial: SpatialQueryService = Depends(get_spatial_query),
) -> dict[str, Any]:
    """Box around all cells with plays, so the client can frame its first view."""
    return success_response(await spatial.get_activity_bounds())


@router.get("/data")
async def get_map_data(
    lat: float | None = Query(default=None, ge=-90, le=90),
    lng: float | None = Query(default=None, ge=-180, le=180),
    zoom: int = Query(default=15, ge=0, le=22),
    limit: int = Query(default=50, ge=1, le=200),
    spatial: SpatialQueryService = Depends(get_spatial_query),
) -> dict[str, Any]:
    """Active cells, top tracks and listener count around a map center."""
    if lat is None or lng is None:
        raise MissingParameterError(
            "MISSING_COORDINATES", "Latitude and longitude are required"
        )
    return success_response(await spatial.query_by_center(lat, lng, zoom, limit))


@router.get("/hex/{hex_id}")
async def get_hex(
    hex_id: str,
    spatial: SpatialQueryService = Depends(get_spatial_query),
) -> dict[str, Any]:
    """Aggregate, top tracks and recent activity of one cell."""
    return success_response(await spatial.get_cell_detail(hex_id))


@router.get("/hex/{hex_id}/tracks")
async def get_hex_tracks(
    hex_id: str,
    limit: int = Query(default=10, ge=1, le=50),
    offset: int = Query(default=0, ge=0),
    spatial: SpatialQueryService = Depends(get_spatial_query),
) -> dict[str, Any]:
    """Paginated track ranking of one cell."""
    return success_response(await spatial.get_cell_tracks(hex_id, limit, offset))
