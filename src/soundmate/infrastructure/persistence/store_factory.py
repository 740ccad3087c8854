"""Pick the aggregation store implementation from settings."""

import logging

from soundmate.config import Settings
from soundmate.domain.exceptions import ConfigurationError
from soundmate.domain.ports import IAggregationStore
from soundmate.infrastructure.persistence.database import Database
from soundmate.infrastructure.persistence.memory_store import InMemoryAggregationStore
from soundmate.infrastructure.persistence.repositories import (
    SqlAlchemyAggregationStore,
)

logger = logging.getLogger(__name__)


def create_aggregation_store(settings: Settings) -> IAggregationStore:
    """Build the store named by ``settings.database.backend``.

    Raises:
        ConfigurationError: Unknown backend name
    """
    backend = settings.database.backend
    if backend == "sql":
        logger.info("Aggregation store: SQL (%s)", settings.database.url.split("://")[0])
        return SqlAlchemyAggregationStore(
            Database(settings),
            create_tables=settings.database.create_tables_on_startup,
        )
    if backend == "memory":
        logger.info("Aggregation store: in-memory")
        return InMemoryAggregationStore()
    raise ConfigurationError(f"Unknown database backend: {backend}")
