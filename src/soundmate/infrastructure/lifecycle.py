"""Application lifecycle management for startup and shutdown tasks.

Startup order (shutdown runs it backwards):
1. logging
2. aggregation store (SQL or in-memory) + schema
3. grid, response cache, aggregator, services
4. feature fetch worker (bounded queue)
5. refresh scheduler (first pass runs immediately)

Everything is stored on app.state; request handlers reach it through
soundmate.api.dependencies.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from soundmate.application.cache import TTLCache
from soundmate.application.services.cell_aggregator import CellAggregator
from soundmate.application.services.maintenance_service import MaintenanceService
from soundmate.application.services.music_query_service import MusicQueryService
from soundmate.application.services.playback_recorder import PlaybackRecorder
from soundmate.application.services.spatial_query_service import SpatialQueryService
from soundmate.application.workers.feature_fetch_worker import FeatureFetchWorker
from soundmate.application.workers.refresh_scheduler import create_refresh_scheduler
from soundmate.config import Settings, get_settings
from soundmate.infrastructure.grid import H3GridIndex
from soundmate.infrastructure.integrations.spotify_features_client import (
    SpotifyAudioFeaturesClient,
)
from soundmate.infrastructure.observability.logging import configure_logging
from soundmate.infrastructure.persistence import create_aggregation_store

logger = logging.getLogger(__name__)


async def _stop(name: str, component: Any) -> None:
    """Stop one component; a failing stop never blocks the rest of shutdown."""
    if component is None:
        return
    try:
        await component.stop()
        logger.info("%s stopped", name)
    except Exception as e:
        logger.exception("Error stopping %s: %s", name, e)


# Listen future me, everything before `yield` runs at STARTUP and everything after at
# SHUTDOWN. The finally block runs even when startup blows up halfway, so every component
# variable starts as None and _stop() skips what was never created.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    app.state.settings = settings

    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    store = None
    cache = None
    feature_client = None
    feature_worker = None
    scheduler = None
    started = False
    try:
        store = create_aggregation_store(settings)
        await store.initialize()
        app.state.store = store

        grid = H3GridIndex(settings.grid.resolution)
        app.state.grid = grid

        if settings.cache.enabled:
            cache = TTLCache(
                ttl_seconds=settings.cache.ttl_seconds,
                max_entries=settings.cache.max_entries,
                cleanup_interval_seconds=settings.cache.cleanup_interval_seconds,
            )
            await cache.start()
        app.state.cache = cache

        aggregator = CellAggregator(store, settings.aggregation, cache=cache)
        app.state.aggregator = aggregator

        if settings.feature_fetch.enabled:
            feature_client = SpotifyAudioFeaturesClient(settings.feature_fetch)
            feature_worker = FeatureFetchWorker(
                store,
                feature_client,
                aggregator,
                queue_size=settings.feature_fetch.queue_size,
                concurrency=settings.feature_fetch.concurrency,
                drain_timeout=settings.feature_fetch.drain_timeout,
                fallback_to_neutral=settings.feature_fetch.fallback_to_neutral,
            )
            await feature_worker.start()
        app.state.feature_worker = feature_worker

        app.state.playback_recorder = PlaybackRecorder(
            store,
            grid,
            settings.aggregation,
            resolution=settings.grid.resolution,
            jobs=feature_worker,
        )
        app.state.spatial_query = SpatialQueryService(
            store,
            grid,
            resolution=settings.grid.resolution,
            recent_activity_hours=settings.aggregation.recent_activity_hours,
            cache=cache,
        )
        app.state.music_query = MusicQueryService(store)
        app.state.maintenance = MaintenanceService(store, settings.maintenance)

        scheduler = create_refresh_scheduler(store, aggregator, settings.aggregation)
        app.state.refresh_scheduler = scheduler
        if settings.aggregation.enabled:
            await scheduler.start()
        else:
            logger.info("Periodic aggregation disabled by configuration")

        started = True
        yield

    except Exception as e:
        if not started:
            logger.exception("Error during application startup: %s", e)
        raise
    finally:
        logger.info("Shutting down application")

        if scheduler is not None and scheduler.is_running:
            await _stop("Refresh scheduler", scheduler)
        await _stop("Feature fetch worker", feature_worker)
        await _stop("Response cache", cache)

        if feature_client is not None:
            try:
                await feature_client.close()
            except Exception as e:
                logger.exception("Error closing Spotify client: %s", e)

        if store is not None:
            try:
                await store.close()
                logger.info("Aggregation store closed")
            except Exception as e:
                logger.exception("Error closing aggregation store: %s", e)
