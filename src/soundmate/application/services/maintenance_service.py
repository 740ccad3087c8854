"""Retention cleanup for playback events and derived cell data."""

import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any

from soundmate.config import MaintenanceSettings
from soundmate.domain.entities import utc_now
from soundmate.domain.ports import IAggregationStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    deleted_cells: int = 0
    deleted_top_tracks: int = 0
    deleted_playback_events: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MaintenanceService:
    """Deletes data that fell out of every retention window.

    Cells with zero plays are only removed after ``inactive_cell_days`` so a
    location resolved a moment ago keeps its row.
    """

    def __init__(self, store: IAggregationStore, settings: MaintenanceSettings) -> None:
        self._store = store
        self._settings = settings

    async def run_cleanup(self) -> CleanupReport:
        now = utc_now()
        report = CleanupReport()

        async with self._store.transaction() as repo:
            report.deleted_playback_events = await repo.delete_playback_events_before(
                now - timedelta(days=self._settings.playback_retention_days)
            )
            report.deleted_top_tracks = await repo.delete_low_activity_top_tracks(
                self._settings.top_track_min_plays,
                now - timedelta(days=self._settings.top_track_days),
            )
            report.deleted_cells = await repo.delete_inactive_cells(
                now - timedelta(days=self._settings.inactive_cell_days)
            )

        logger.info(
            "Cleanup finished: %d cells, %d top tracks, %d playback events removed",
            report.deleted_cells,
            report.deleted_top_tracks,
            report.deleted_playback_events,
        )
        return report
