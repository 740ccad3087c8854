"""API router initialization."""

# Hey future me, this is the MAIN API router aggregator! main.py mounts it under settings.app.api_prefix
# ("/api" by default), so endpoints become /api/map/hexagons, /api/music/playback, etc. The health
# router is NOT in here, it is mounted at the root so liveness checks don't depend on the API prefix.

from fastapi import APIRouter

from soundmate.api.routers import health, jobs, location, map, music

api_router = APIRouter()

api_router.include_router(location.router, prefix="/location", tags=["Location"])
api_router.include_router(music.router, prefix="/music", tags=["Music"])
api_router.include_router(map.router, prefix="/map", tags=["Map"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])

__all__ = [
    "api_router",
    "health",
    "jobs",
    "location",
    "map",
    "music",
]
