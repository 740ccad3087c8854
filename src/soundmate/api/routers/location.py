"""Location endpoints: coordinate to cell resolution."""

from typing import Any

from fastapi import APIRouter, Depends, Query

from soundmate.api.dependencies import get_spatial_query
from soundmate.api.responses import success_response
from soundmate.api.schemas.requests import LocationIn
from soundmate.application.services.spatial_query_service import SpatialQueryService
from soundmate.domain.exceptions import MissingParameterError

router = APIRouter()


@router.post("/update")
async def update_location(
    body: LocationIn,
    spatial: SpatialQueryService = Depends(get_spatial_query),
) -> dict[str, Any]:
    """Resolve the caller's position to its grid cell."""
    return success_response(await spatial.resolve_location(body.lat, body.lng))


@router.get("/hex/nearby")
async def nearby_hexes(
    lat: float | None = Query(default=None, ge=-90, le=90),
    lng: float | None = Query(default=None, ge=-180, le=180),
    rings: int = Query(default=2, ge=1, le=5),
    spatial: SpatialQueryService = Depends(get_spatial_query),
) -> dict[str, Any]:
    """Cells around a coordinate, including ones nobody has played in yet."""
    if lat is None or lng is None:
        raise MissingParameterError(
            "MISSING_COORDINATES", "Latitude and longitude are required"
        )
    return success_response(await spatial.nearby_cells(lat, lng, rings))
