"""Tests for RefreshScheduler."""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from soundmate.application.services.cell_aggregator import (
    BatchAggregationResult,
    CellAggregator,
)
from soundmate.application.services.feature_color_mapper import features_to_color
from soundmate.application.workers.refresh_scheduler import (
    RefreshScheduler,
    create_refresh_scheduler,
)
from soundmate.config import AggregationSettings
from soundmate.domain.entities import PlaybackEvent, utc_now
from soundmate.domain.value_objects import AudioFeatures, TrackDescriptor
from soundmate.infrastructure.persistence import InMemoryAggregationStore


async def _seed_cell(
    store: InMemoryAggregationStore,
    cell_id: str,
    external_id: str,
    with_features: bool = True,
    plays: int = 1,
) -> None:
    async with store.transaction() as repo:
        track = await repo.upsert_track(
            TrackDescriptor(external_id=external_id, name="Song", artist="Artist")
        )
        if with_features:
            features = AudioFeatures.neutral()
            await repo.update_track_features(track.id, features, features_to_color(features))
        for n in range(plays):
            await repo.insert_playback_event(
                PlaybackEvent(
                    id=str(uuid.uuid4()),
                    user_id=f"user-{n}",
                    track_id=track.id,
                    cell_id=cell_id,
                    lat=52.5,
                    lng=13.4,
                )
            )
        await repo.upsert_cell_aggregate(cell_id, 52.5, 13.4, 9)
        await repo.refresh_cell_counters(cell_id)


@pytest.fixture
def aggregator(
    memory_store: InMemoryAggregationStore, aggregation_settings: AggregationSettings
) -> CellAggregator:
    return CellAggregator(memory_store, aggregation_settings)


@pytest.fixture
def scheduler(
    memory_store: InMemoryAggregationStore,
    aggregator: CellAggregator,
    aggregation_settings: AggregationSettings,
) -> RefreshScheduler:
    return RefreshScheduler(memory_store, aggregator, aggregation_settings)


class TestRunOnce:
    """One pass over stale cells."""

    async def test_aggregates_stale_cells(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        await _seed_cell(memory_store, "cell-a", "track-a")

        result = await scheduler.run_once()

        assert [a.cell_id for a in result.aggregates] == ["cell-a"]
        async with memory_store.transaction() as repo:
            aggregate = await repo.get_cell_aggregate("cell-a")
        assert aggregate is not None
        # The color comes from the five averaged dimensions, not the full track vector.
        assert aggregate.color_hex == features_to_color(aggregate.averaged_features())
        assert aggregate.avg_energy == pytest.approx(0.5)

    async def test_fresh_cells_are_not_picked_again(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        await _seed_cell(memory_store, "cell-a", "track-a")
        await scheduler.run_once()

        second = await scheduler.run_once()

        assert second.processed == 0
        assert scheduler.get_stats()["runs"] == 2

    async def test_new_activity_makes_cell_stale(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        await _seed_cell(memory_store, "cell-a", "track-a")
        await scheduler.run_once()
        await _seed_cell(memory_store, "cell-a", "track-b")

        result = await scheduler.run_once()

        assert result.succeeded == 1
        assert result.aggregates[0].total_plays == 2

    async def test_cells_without_feature_data_are_skipped(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        await _seed_cell(memory_store, "cell-a", "track-a", with_features=False)

        result = await scheduler.run_once()

        assert result.processed == 0

    async def test_old_aggregates_are_refreshed(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        await _seed_cell(memory_store, "cell-a", "track-a")
        await scheduler.run_once()
        cell = memory_store._state.cells["cell-a"]
        cell.last_aggregation_at = utc_now() - timedelta(hours=2)

        result = await scheduler.run_once()

        assert result.succeeded == 1

    async def test_batch_limit_prefers_busiest_cells(
        self,
        memory_store: InMemoryAggregationStore,
        aggregator: CellAggregator,
    ) -> None:
        await _seed_cell(memory_store, "cell-quiet", "track-q", plays=1)
        await _seed_cell(memory_store, "cell-busy", "track-b", plays=5)
        scheduler = RefreshScheduler(
            memory_store, aggregator, AggregationSettings(batch_limit=1)
        )

        result = await scheduler.run_once()

        assert [a.cell_id for a in result.aggregates] == ["cell-busy"]


class TestForceFullAggregation:
    """Manual re-aggregation of every active cell."""

    async def test_paced_sub_batches(self, memory_store: InMemoryAggregationStore) -> None:
        for n in range(3):
            await _seed_cell(memory_store, f"cell-{n}", f"track-{n}", with_features=False)
        aggregator = MagicMock(spec=CellAggregator)
        aggregator.batch_aggregate = AsyncMock(
            side_effect=lambda ids: BatchAggregationResult(skipped=list(ids))
        )
        scheduler = RefreshScheduler(
            memory_store,
            aggregator,
            AggregationSettings(force_batch_size=2, force_batch_pause_seconds=0),
        )

        result = await scheduler.force_full_aggregation()

        assert aggregator.batch_aggregate.await_count == 2
        assert [len(c.args[0]) for c in aggregator.batch_aggregate.await_args_list] == [2, 1]
        assert result["processed"] == 3
        assert result["succeeded"] == 0
        assert result["failed"] == 0
        assert result["duration_seconds"] >= 0

    async def test_respects_limit(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        for n in range(3):
            await _seed_cell(memory_store, f"cell-{n}", f"track-{n}")

        result = await scheduler.force_full_aggregation(limit=2)

        assert result["processed"] == 2
        assert result["succeeded"] == 2

    async def test_zero_limit_is_not_the_default(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        await _seed_cell(memory_store, "cell-a", "track-a")

        result = await scheduler.force_full_aggregation(limit=0)

        assert result["processed"] == 0

    async def test_update_single_cell(
        self, scheduler: RefreshScheduler, memory_store: InMemoryAggregationStore
    ) -> None:
        await _seed_cell(memory_store, "cell-a", "track-a")

        aggregate = await scheduler.update_single_cell("cell-a")

        assert aggregate is not None
        assert aggregate.cell_id == "cell-a"


class TestLifecycle:
    """start()/stop() of the background loop."""

    async def test_start_runs_first_pass_immediately(
        self, scheduler: RefreshScheduler
    ) -> None:
        scheduler.run_once = AsyncMock(return_value=BatchAggregationResult())

        await scheduler.start()
        await asyncio.sleep(0.05)

        assert scheduler.is_running is True
        scheduler.run_once.assert_awaited()
        status = scheduler.get_status()
        assert status["running"] is True
        assert status["interval_seconds"] == 300
        assert status["next_run_in_seconds"] is not None

        await scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.get_status()["next_run_in_seconds"] is None

    async def test_failed_pass_keeps_loop_alive(self, scheduler: RefreshScheduler) -> None:
        scheduler.run_once = AsyncMock(side_effect=RuntimeError("database is locked"))

        await scheduler.start()
        await asyncio.sleep(0.05)

        assert scheduler.is_running is True
        await scheduler.stop()

    async def test_double_start_and_stop_are_harmless(
        self, scheduler: RefreshScheduler
    ) -> None:
        scheduler.run_once = AsyncMock(return_value=BatchAggregationResult())

        await scheduler.stop()
        await scheduler.start()
        await scheduler.start()
        await scheduler.stop()

        assert scheduler.is_running is False

    def test_factory_uses_default_settings(
        self, memory_store: InMemoryAggregationStore, aggregator: CellAggregator
    ) -> None:
        scheduler = create_refresh_scheduler(memory_store, aggregator)

        assert scheduler.get_status()["batch_limit"] == 20
        assert scheduler.get_status()["staleness_seconds"] == 3600
