"""Background job endpoints: manual aggregation and maintenance triggers."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from soundmate.api.dependencies import (
    get_feature_worker,
    get_maintenance_service,
    get_refresh_scheduler,
)
from soundmate.api.responses import success_response
from soundmate.application.services.maintenance_service import MaintenanceService
from soundmate.application.services.spatial_query_service import cell_to_dict
from soundmate.application.workers.feature_fetch_worker import FeatureFetchWorker
from soundmate.application.workers.refresh_scheduler import RefreshScheduler
from soundmate.domain.value_objects import normalize_cell_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/aggregation/cells/{hex_id}")
async def aggregate_cell(
    hex_id: str,
    scheduler: RefreshScheduler = Depends(get_refresh_scheduler),
) -> dict[str, Any]:
    """Re-aggregate one cell now."""
    cell_id = normalize_cell_id(hex_id)
    aggregate = await scheduler.update_single_cell(cell_id)
    return success_response(
        {
            "hex_id": cell_id,
            "aggregated": aggregate is not None,
            "hex": cell_to_dict(aggregate) if aggregate is not None else None,
        }
    )


@router.post("/aggregation/full")
async def aggregate_all(
    limit: int = Query(default=100, ge=1, le=1000),
    scheduler: RefreshScheduler = Depends(get_refresh_scheduler),
) -> dict[str, Any]:
    """Re-aggregate the busiest active cells, paced in sub-batches."""
    logger.info("Manual full aggregation requested (limit=%d)", limit)
    return success_response(await scheduler.force_full_aggregation(limit))


@router.get("/aggregation/status")
async def aggregation_status(
    scheduler: RefreshScheduler = Depends(get_refresh_scheduler),
    feature_worker: FeatureFetchWorker | None = Depends(get_feature_worker),
) -> dict[str, Any]:
    """Scheduler and feature worker state."""
    return success_response(
        {
            "scheduler": scheduler.get_status(),
            "stats": scheduler.get_stats(),
            "feature_worker": feature_worker.get_stats() if feature_worker else None,
        }
    )


@router.post("/maintenance/cleanup")
async def run_cleanup(
    maintenance: MaintenanceService = Depends(get_maintenance_service),
) -> dict[str, Any]:
    """Delete data past its retention window."""
    report = await maintenance.run_cleanup()
    return success_response(report.to_dict())
