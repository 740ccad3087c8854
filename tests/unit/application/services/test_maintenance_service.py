"""Tests for MaintenanceService."""

from datetime import timedelta

import pytest

from soundmate.application.services.maintenance_service import (
    CleanupReport,
    MaintenanceService,
)
from soundmate.config import MaintenanceSettings
from soundmate.domain.entities import CellTopTrack, PlaybackEvent, utc_now
from soundmate.infrastructure.persistence import InMemoryAggregationStore


@pytest.fixture
def service(memory_store: InMemoryAggregationStore) -> MaintenanceService:
    return MaintenanceService(memory_store, MaintenanceSettings())


class TestRunCleanup:
    """Retention windows over events, rankings and empty cells."""

    async def test_nothing_to_delete(self, service: MaintenanceService) -> None:
        report = await service.run_cleanup()

        assert report == CleanupReport()
        assert report.to_dict() == {
            "deleted_cells": 0,
            "deleted_top_tracks": 0,
            "deleted_playback_events": 0,
        }

    async def test_removes_expired_data_only(
        self, service: MaintenanceService, memory_store: InMemoryAggregationStore
    ) -> None:
        now = utc_now()
        async with memory_store.transaction() as repo:
            # empty cell, created long ago -> goes
            await repo.upsert_cell_aggregate("cell-old-empty", 52.5, 13.4, 9)
            # empty cell resolved just now -> stays
            await repo.upsert_cell_aggregate("cell-new-empty", 52.5, 13.4, 9)
            await repo.upsert_cell_aggregate("cell-busy", 52.5, 13.4, 9)
            await repo.insert_playback_event(
                PlaybackEvent(
                    id="ancient",
                    user_id="user-1",
                    track_id="track-1",
                    cell_id="cell-busy",
                    lat=52.5,
                    lng=13.4,
                    played_at=now - timedelta(days=400),
                )
            )
            await repo.insert_playback_event(
                PlaybackEvent(
                    id="recent",
                    user_id="user-1",
                    track_id="track-1",
                    cell_id="cell-busy",
                    lat=52.5,
                    lng=13.4,
                    played_at=now,
                )
            )
            await repo.refresh_cell_counters("cell-busy")

        # Backdate rows directly, the repository API always stamps "now"
        state = memory_store._state
        state.cells["cell-old-empty"].created_at = now - timedelta(days=40)
        state.top_tracks[("cell-busy", "track-stale")] = CellTopTrack(
            cell_id="cell-busy",
            track_id="track-stale",
            play_count=1,
            last_played_at=now - timedelta(days=40),
        )
        state.top_tracks[("cell-busy", "track-popular")] = CellTopTrack(
            cell_id="cell-busy",
            track_id="track-popular",
            play_count=10,
            last_played_at=now - timedelta(days=40),
        )

        report = await service.run_cleanup()

        assert report.deleted_playback_events == 1
        assert report.deleted_top_tracks == 1
        assert report.deleted_cells == 1
        assert set(state.cells) == {"cell-new-empty", "cell-busy"}
        assert set(state.top_tracks) == {("cell-busy", "track-popular")}
        assert [e.id for e in state.events] == ["recent"]
