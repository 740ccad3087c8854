"""Refresh Scheduler - periodic re-aggregation of stale cells.

Hey future me - this is the safety net behind the FeatureFetchWorker!

Playbacks trigger a cell refresh right away, but that job can be dropped (queue
full, fetch failed, app restarted mid-queue). Every interval this scheduler asks
the store for cells that are STALE and re-aggregates a small batch of them:

- total_plays > 0, AND
- color missing, never aggregated, or aggregated longer than staleness ago, AND
- at least one event in the window whose track has audio features

The last condition matters: a cell whose tracks all lack features would be
"stale" forever and burn a slot in every batch without ever producing a color.

Lifecycle:
- start() runs one pass immediately, then one every interval_seconds
- stop() wakes the sleeping loop and WAITS for an in-flight pass to finish;
  a cell is never cancelled halfway through its transaction
"""

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Any

from soundmate.application.services.cell_aggregator import (
    BatchAggregationResult,
    CellAggregator,
)
from soundmate.config import AggregationSettings
from soundmate.domain.entities import CellAggregate, utc_now
from soundmate.domain.ports import IAggregationStore

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Background task that keeps cell colors fresh.

    Configuration comes from AggregationSettings:
    - interval_seconds: pause between passes (default 300)
    - batch_limit: stale cells per pass (default 20)
    - staleness_seconds: age after which an aggregate is stale (default 3600)
    - force_batch_size / force_batch_pause_seconds: pacing of force_full_aggregation
    """

    def __init__(
        self,
        store: IAggregationStore,
        aggregator: CellAggregator,
        settings: AggregationSettings,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._settings = settings
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._next_run_at: float | None = None
        self._stats: dict[str, Any] = {
            "runs": 0,
            "cells_processed": 0,
            "cells_succeeded": 0,
            "cells_failed": 0,
            "last_run_at": None,
            "last_run_duration_seconds": None,
            "last_run_processed": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("RefreshScheduler already running")
            return

        self._running = True
        self._wake.clear()
        self._task = asyncio.create_task(self._loop(), name="refresh-scheduler")
        logger.info(
            "RefreshScheduler started (interval=%ss, batch_limit=%d, staleness=%ss)",
            self._settings.interval_seconds,
            self._settings.batch_limit,
            self._settings.staleness_seconds,
        )

    async def stop(self) -> None:
        if not self._running:
            logger.warning("RefreshScheduler is not running")
            return

        logger.info("RefreshScheduler stopping...")
        self._running = False
        self._wake.set()
        if self._task is not None:
            await self._task
            self._task = None
        self._next_run_at = None
        logger.info("RefreshScheduler stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                # Log but don't crash - we'll try again next tick
                logger.exception(f"RefreshScheduler pass failed: {e}")

            if not self._running:
                break

            self._next_run_at = time.monotonic() + self._settings.interval_seconds
            try:
                await asyncio.wait_for(
                    self._wake.wait(), timeout=self._settings.interval_seconds
                )
            except TimeoutError:
                pass

    async def run_once(self) -> BatchAggregationResult:
        """Aggregate one batch of stale cells."""
        now = utc_now()
        stale_before = now - timedelta(seconds=self._settings.staleness_seconds)
        window_start = now - timedelta(days=self._settings.window_days)

        async with self._store.transaction() as repo:
            cell_ids = await repo.query_stale_cells(
                stale_before, window_start, self._settings.batch_limit
            )

        if not cell_ids:
            logger.debug("No stale cells to refresh")
            self._record_run(BatchAggregationResult())
            return BatchAggregationResult()

        result = await self._aggregator.batch_aggregate(cell_ids)
        self._record_run(result)

        logger.info(
            "Refreshed %d stale cells: %d succeeded, %d without data, %d failed in %.2fs (%s)",
            result.processed,
            result.succeeded,
            len(result.skipped),
            len(result.failed),
            result.duration_seconds,
            ", ".join(cell_ids[:5]),
        )
        if result.duration_seconds > self._settings.slow_run_seconds:
            logger.warning(
                "Refresh pass took %.2fs (threshold %.0fs)",
                result.duration_seconds,
                self._settings.slow_run_seconds,
            )
        return result

    async def force_full_aggregation(self, limit: int | None = None) -> dict[str, Any]:
        """Re-aggregate every active cell, busiest first, in paced sub-batches."""
        if limit is None:
            limit = self._settings.force_limit
        started = time.monotonic()

        async with self._store.transaction() as repo:
            cell_ids = await repo.query_active_cells(limit)

        logger.info("Forced aggregation of %d active cells", len(cell_ids))

        size = self._settings.force_batch_size
        processed = succeeded = failed = 0
        for offset in range(0, len(cell_ids), size):
            if offset:
                await asyncio.sleep(self._settings.force_batch_pause_seconds)
            result = await self._aggregator.batch_aggregate(
                cell_ids[offset : offset + size]
            )
            processed += result.processed
            succeeded += result.succeeded
            failed += len(result.failed)

        duration = time.monotonic() - started
        logger.info(
            "Forced aggregation finished: %d processed, %d succeeded, %d failed in %.2fs",
            processed,
            succeeded,
            failed,
            duration,
        )
        return {
            "processed": processed,
            "succeeded": succeeded,
            "failed": failed,
            "duration_seconds": round(duration, 3),
        }

    async def update_single_cell(self, cell_id: str) -> CellAggregate | None:
        """Aggregate one cell now (CellNotFoundError if it has no row)."""
        return await self._aggregator.aggregate(cell_id)

    def _record_run(self, result: BatchAggregationResult) -> None:
        self._stats["runs"] += 1
        self._stats["cells_processed"] += result.processed
        self._stats["cells_succeeded"] += result.succeeded
        self._stats["cells_failed"] += len(result.failed)
        self._stats["last_run_at"] = datetime.now(UTC)
        self._stats["last_run_duration_seconds"] = round(result.duration_seconds, 3)
        self._stats["last_run_processed"] = result.processed

    def get_status(self) -> dict[str, Any]:
        """Scheduler state for the jobs status endpoint."""
        next_run_in = None
        if self._running and self._next_run_at is not None:
            next_run_in = max(0.0, round(self._next_run_at - time.monotonic(), 1))
        last_run_at = self._stats["last_run_at"]
        return {
            "running": self._running,
            "interval_seconds": self._settings.interval_seconds,
            "batch_limit": self._settings.batch_limit,
            "staleness_seconds": self._settings.staleness_seconds,
            "next_run_in_seconds": next_run_in,
            "last_run_at": last_run_at.isoformat() if last_run_at else None,
        }

    def get_stats(self) -> dict[str, Any]:
        last_run_at = self._stats["last_run_at"]
        return {
            **self._stats,
            "last_run_at": last_run_at.isoformat() if last_run_at else None,
            "running": self._running,
        }


# Hey future me - factory function for easy worker creation from app context
def create_refresh_scheduler(
    store: IAggregationStore,
    aggregator: CellAggregator,
    settings: AggregationSettings | None = None,
) -> RefreshScheduler:
    """Create a RefreshScheduler, falling back to default aggregation settings."""
    return RefreshScheduler(store, aggregator, settings or AggregationSettings())
