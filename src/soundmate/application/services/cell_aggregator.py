"""Cell aggregation - recomputes per-cell rollups from playback events.

Hey future me - the aggregate row is a CACHE. This service is the only writer of
the averaged features and the color. Rules that matter:

- Averages only cover events inside the trailing window whose track HAS audio
  features. Zero contributing events means "no data": return None and leave the
  row alone. We never fall back to a neutral/gray color, a cell that once had a
  good color keeps it until real data replaces it.
- One aggregation per cell at a time (KeyedLocks). Different cells run freely.
- Every write for a cell happens in ONE store transaction, so map readers see
  either the previous aggregate or the new one, never a half-written row.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import timedelta

from soundmate.application.cache import BaseCache
from soundmate.application.services.feature_color_mapper import (
    DEFAULT_FEATURE_VALUE,
    features_to_color,
    generate_mood_tags,
)
from soundmate.application.services.keyed_locks import KeyedLocks
from soundmate.config import AggregationSettings
from soundmate.domain.entities import CellAggregate, utc_now
from soundmate.domain.exceptions import CellNotFoundError
from soundmate.domain.ports import IAggregationStore

logger = logging.getLogger(__name__)


@dataclass
class BatchAggregationResult:
    """Outcome of one batch: aggregated rows, cells without data, failed cells."""

    aggregates: list[CellAggregate] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return len(self.aggregates) + len(self.skipped) + len(self.failed)

    @property
    def succeeded(self) -> int:
        return len(self.aggregates)


class CellAggregator:
    """Recomputes CellAggregate rows and their colors."""

    def __init__(
        self,
        store: IAggregationStore,
        settings: AggregationSettings,
        locks: KeyedLocks | None = None,
        cache: BaseCache[str, object] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._locks = locks or KeyedLocks()
        self._cache = cache

    def is_aggregating(self, cell_id: str) -> bool:
        return self._locks.is_locked(cell_id)

    async def aggregate(self, cell_id: str) -> CellAggregate | None:
        """Recompute one cell.

        Returns:
            The new aggregate, or None when the window holds no feature-bearing events

        Raises:
            CellNotFoundError: The cell has no aggregate row
            TimeoutError: cell_timeout_seconds is set and was exceeded
        """
        async with self._locks.hold(cell_id):
            if self._settings.cell_timeout_seconds:
                async with asyncio.timeout(self._settings.cell_timeout_seconds):
                    aggregate = await self._aggregate_locked(cell_id)
            else:
                aggregate = await self._aggregate_locked(cell_id)

        if aggregate is not None and self._cache is not None:
            await self._cache.clear()
        return aggregate

    async def _aggregate_locked(self, cell_id: str) -> CellAggregate | None:
        now = utc_now()
        window_start = now - timedelta(days=self._settings.window_days)

        async with self._store.transaction() as repo:
            current = await repo.get_cell_aggregate(cell_id)
            if current is None:
                raise CellNotFoundError(cell_id)

            averages = await repo.compute_cell_feature_averages(cell_id, window_start)
            if averages.contributing_events == 0:
                logger.debug(
                    "Cell %s has no feature-bearing events in window, keeping color %s",
                    cell_id,
                    current.color_hex,
                )
                return None

            updated = replace(
                current,
                total_plays=averages.total_plays,
                unique_users=averages.unique_users,
                unique_tracks=averages.unique_tracks,
                avg_energy=averages.energy,
                avg_valence=averages.valence,
                avg_danceability=averages.danceability,
                avg_acousticness=averages.acousticness,
                avg_instrumentalness=averages.instrumentalness,
                last_activity_at=averages.last_activity_at,
                last_aggregation_at=now,
                updated_at=now,
            )
            updated.color_hex = features_to_color(updated.averaged_features())
            await repo.save_cell_aggregation(updated)

        logger.debug(
            "Aggregated cell %s: %d contributing events, color %s",
            cell_id,
            averages.contributing_events,
            updated.color_hex,
        )
        return updated

    async def batch_aggregate(self, cell_ids: list[str]) -> BatchAggregationResult:
        """Aggregate cells independently; one failing cell never aborts the rest."""
        result = BatchAggregationResult()
        started = time.monotonic()

        for cell_id in cell_ids:
            try:
                aggregate = await self.aggregate(cell_id)
            except Exception as e:
                logger.exception(f"Aggregation failed for cell {cell_id}: {e}")
                result.failed.append(cell_id)
                continue

            if aggregate is None:
                result.skipped.append(cell_id)
            else:
                result.aggregates.append(aggregate)

        result.duration_seconds = time.monotonic() - started
        return result

    async def generate_mood_tags(self, cell_id: str) -> list[str]:
        """Mood tags from the cell's current averages; [] when never aggregated."""
        async with self._store.transaction() as repo:
            aggregate = await repo.get_cell_aggregate(cell_id)
        return mood_tags_for(aggregate)


def mood_tags_for(aggregate: CellAggregate | None) -> list[str]:
    """Mood tags of an aggregate, missing averages counted as 0.5."""
    if aggregate is None or not aggregate.has_features:
        return []

    def _or_default(value: float | None) -> float:
        return value if value is not None else DEFAULT_FEATURE_VALUE

    return generate_mood_tags(
        {
            "energy": _or_default(aggregate.avg_energy),
            "valence": _or_default(aggregate.avg_valence),
            "danceability": _or_default(aggregate.avg_danceability),
            "acousticness": _or_default(aggregate.avg_acousticness),
        }
    )
