"""Persistence layer."""

from soundmate.infrastructure.persistence.database import Database
from soundmate.infrastructure.persistence.memory_store import (
    InMemoryAggregationRepository,
    InMemoryAggregationStore,
)
from soundmate.infrastructure.persistence.models import (
    Base,
    CellAggregateModel,
    CellTopTrackModel,
    PlaybackEventModel,
    TrackModel,
    UserModel,
)
from soundmate.infrastructure.persistence.repositories import (
    SqlAlchemyAggregationRepository,
    SqlAlchemyAggregationStore,
)
from soundmate.infrastructure.persistence.store_factory import create_aggregation_store

__all__ = [
    "Base",
    "CellAggregateModel",
    "CellTopTrackModel",
    "Database",
    "InMemoryAggregationRepository",
    "InMemoryAggregationStore",
    "PlaybackEventModel",
    "SqlAlchemyAggregationRepository",
    "SqlAlchemyAggregationStore",
    "TrackModel",
    "UserModel",
    "create_aggregation_store",
]
