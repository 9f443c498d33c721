"""Storage backends for canonical events and run bookkeeping."""

import logging

from event_ingestion.configs.settings import Settings
from event_ingestion.storage.base import EventStore
from event_ingestion.storage.memory import InMemoryEventStore

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> EventStore:
    """PostgreSQL when DATABASE_URL is set, otherwise the in-memory store."""
    if settings.uses_database:
        from event_ingestion.storage.postgres import PostgresEventStore

        store = PostgresEventStore.from_settings(settings)
        logger.info("Using PostgreSQL event store")
        return store
    logger.warning("DATABASE_URL not set, using in-memory event store")
    return InMemoryEventStore()


__all__ = ["EventStore", "InMemoryEventStore", "create_store"]
