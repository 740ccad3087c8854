"""Health check endpoint for Docker/Kubernetes liveness checks."""

import logging
import time
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from soundmate import __version__
from soundmate.api.responses import success_response

logger = logging.getLogger(__name__)

router = APIRouter()

_started_at = time.monotonic()


async def _check_store(request: Request) -> bool:
    store = getattr(request.app.state, "store", None)
    if store is None:
        return False
    try:
        async with store.transaction() as repo:
            await repo.query_active_cells(1)
    except Exception as e:
        logger.warning("Health check: store unavailable: %s", e)
        return False
    return True


def _is_running(request: Request, name: str) -> bool | None:
    component = getattr(request.app.state, name, None)
    if component is None:
        return None
    return bool(component.is_running)


# Hey future me - only the store decides healthy vs unhealthy. A stopped scheduler or
# feature worker degrades freshness, not correctness, so they are reported but don't
# flip the status code.
@router.get("/health")
async def health(request: Request) -> Any:
    """Store connectivity plus background component state."""
    store_ok = await _check_store(request)
    store = getattr(request.app.state, "store", None)
    checks: dict[str, Any] = {
        "store": store_ok,
        "refresh_scheduler": _is_running(request, "refresh_scheduler"),
        "feature_worker": _is_running(request, "feature_worker"),
    }
    payload = success_response(
        {
            "status": "healthy" if store_ok else "unhealthy",
            "version": __version__,
            "uptime_seconds": round(time.monotonic() - _started_at, 1),
            "checks": checks,
            "store": store.get_stats() if store is not None else None,
        }
    )
    if not store_ok:
        return JSONResponse(status_code=503, content=payload)
    return payload
