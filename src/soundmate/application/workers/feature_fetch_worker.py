"""Feature Fetch Worker - background audio-feature lookup and cell refresh.

Hey future me - this replaces "fire and forget" after a playback is recorded!
The recorder answers the HTTP request right away and drops a job in here:

- FeatureFetchJob: track has no features yet -> ask Spotify, store features +
  color on the track, then re-aggregate the cell it was played in.
- CellRefreshJob: track already had features -> just re-aggregate the cell.

The queue is BOUNDED. submit() never blocks: when the queue is full the job is
dropped with a warning. Nothing is lost for good, the RefreshScheduler will pick
the cell up on its next tick because it is still stale.

On shutdown we stop accepting jobs, give the queue drain_timeout seconds to
empty, then cancel the workers.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from soundmate.application.services.cell_aggregator import CellAggregator
from soundmate.application.services.feature_color_mapper import features_to_color
from soundmate.domain.ports import IAggregationStore, IAudioFeatureProvider
from soundmate.domain.value_objects import AudioFeatures

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureFetchJob:
    """Fetch features for a track, then refresh the cell it was played in."""

    track_id: str
    external_id: str
    cell_id: str
    access_token: str | None = None


@dataclass(frozen=True)
class CellRefreshJob:
    """Re-aggregate one cell."""

    cell_id: str


Job = FeatureFetchJob | CellRefreshJob


def _job_key(job: Job) -> tuple[str, str]:
    if isinstance(job, FeatureFetchJob):
        return ("track", job.track_id)
    return ("cell", job.cell_id)


class FeatureFetchWorker:
    """Bounded job queue drained by a small pool of asyncio tasks.

    Usage:
        worker = FeatureFetchWorker(store, provider, aggregator, queue_size=1000)
        await worker.start()
        worker.submit(FeatureFetchJob(...))
        await worker.stop()
    """

    def __init__(
        self,
        store: IAggregationStore,
        provider: IAudioFeatureProvider,
        aggregator: CellAggregator,
        queue_size: int = 1000,
        concurrency: int = 2,
        drain_timeout: float = 5.0,
        fallback_to_neutral: bool = True,
    ) -> None:
        self._store = store
        self._provider = provider
        self._aggregator = aggregator
        self._queue: asyncio.Queue[Job] = asyncio.Queue(maxsize=queue_size)
        self._pending: set[tuple[str, str]] = set()
        # cells played while a fetch for the track was already queued
        self._merged_cells: dict[str, set[str]] = {}
        self._concurrency = concurrency
        self._drain_timeout = drain_timeout
        self._fallback_to_neutral = fallback_to_neutral
        self._running = False
        self._accepting = False
        self._tasks: list[asyncio.Task[None]] = []
        self._started_at: datetime | None = None
        self._stats: dict[str, int] = {
            "submitted": 0,
            "dropped": 0,
            "deduplicated": 0,
            "processed": 0,
            "success": 0,
            "failed": 0,
            "fallbacks": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    def submit(self, job: Job) -> bool:
        """Queue a job without waiting.

        Returns:
            True if the job is queued (or an identical one already is), False if dropped
        """
        if not self._accepting:
            logger.debug("FeatureFetchWorker not accepting jobs, dropping %s", job)
            self._stats["dropped"] += 1
            return False

        key = _job_key(job)
        if key in self._pending:
            if isinstance(job, FeatureFetchJob):
                self._merged_cells.setdefault(job.track_id, set()).add(job.cell_id)
            self._stats["deduplicated"] += 1
            return True

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._stats["dropped"] += 1
            logger.warning(
                "Feature fetch queue full (%d), dropping job for %s",
                self._queue.maxsize,
                key[1],
            )
            return False

        self._pending.add(key)
        self._stats["submitted"] += 1
        return True

    async def start(self) -> None:
        if self._running:
            logger.warning("FeatureFetchWorker already running")
            return

        self._running = True
        self._accepting = True
        self._started_at = datetime.now(UTC)
        for i in range(self._concurrency):
            self._tasks.append(
                asyncio.create_task(
                    self._process_loop(worker_id=i), name=f"feature-fetch-{i}"
                )
            )
        logger.info(
            "FeatureFetchWorker started with %d workers (queue size %d)",
            self._concurrency,
            self._queue.maxsize,
        )

    async def stop(self, drain_timeout: float | None = None) -> None:
        if not self._running:
            return

        logger.info("FeatureFetchWorker stopping...")
        self._accepting = False

        timeout = self._drain_timeout if drain_timeout is None else drain_timeout
        if not self._queue.empty():
            logger.info("Draining %d remaining jobs...", self._queue.qsize())
        # join() also covers jobs a worker has already taken off the queue
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning("Drain timed out, abandoning %d jobs", self._queue.qsize())

        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

        logger.info(
            "FeatureFetchWorker stopped. Stats: %d processed, %d success, %d failed",
            self._stats["processed"],
            self._stats["success"],
            self._stats["failed"],
        )

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _process_loop(self, worker_id: int) -> None:
        while self._running:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue

            try:
                success = await self._process_job(job, worker_id)
                self._stats["processed"] += 1
                self._stats["success" if success else "failed"] += 1
            except Exception as e:
                self._stats["processed"] += 1
                self._stats["failed"] += 1
                logger.exception("Worker %d unexpected error: %s", worker_id, e)
            finally:
                self._release(job)
                self._queue.task_done()

    def _release(self, job: Job) -> set[str]:
        """Un-pend the job; returns cells merged into it that still need a refresh."""
        self._pending.discard(_job_key(job))
        if isinstance(job, FeatureFetchJob):
            return self._merged_cells.pop(job.track_id, set()) - {job.cell_id}
        return set()

    async def _process_job(self, job: Job, worker_id: int) -> bool:
        cell_ids = [job.cell_id]
        if isinstance(job, FeatureFetchJob):
            if not await self._attach_features(job, worker_id):
                return False
            # Hey future me - release right after the features are stored: a play arriving
            # during the refreshes below then queues its own job instead of being merged
            # into one that will never look at it again.
            cell_ids.extend(sorted(self._release(job)))

        success = True
        for cell_id in cell_ids:
            try:
                await self._aggregator.aggregate(cell_id)
            except Exception as e:
                logger.warning(
                    "Worker %d: refreshing cell %s failed: %s", worker_id, cell_id, e
                )
                success = False
        return success

    async def _attach_features(self, job: FeatureFetchJob, worker_id: int) -> bool:
        try:
            features = await self._provider.get_audio_features(
                job.external_id, job.access_token
            )
        except Exception as e:
            if not self._fallback_to_neutral:
                logger.warning(
                    "Worker %d: audio features for %s unavailable: %s",
                    worker_id,
                    job.external_id,
                    e,
                )
                return False
            logger.warning(
                "Worker %d: audio features for %s unavailable (%s), using neutral defaults",
                worker_id,
                job.external_id,
                e,
            )
            features = AudioFeatures.neutral()
            self._stats["fallbacks"] += 1

        color_hex = features_to_color(features)
        async with self._store.transaction() as repo:
            await repo.update_track_features(job.track_id, features, color_hex)

        logger.debug(
            "Worker %d: track %s features stored, color %s",
            worker_id,
            job.external_id,
            color_hex,
        )
        return True

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "queue_size": self._queue.qsize(),
            "queue_capacity": self._queue.maxsize,
            "running": self._running,
            "workers": len(self._tasks),
            "started_at": self._started_at.isoformat() if self._started_at else None,
        }
