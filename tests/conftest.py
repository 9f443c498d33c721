"""
Shared pytest fixtures for the Event Ingestion Engine test suite.

Provides factories for raw records, canonical events and source configs, a
seeded in-memory store and isolated settings. Test doubles such as the
scripted adapter live in tests/factories.py.
"""

from datetime import datetime

import pytest

from event_ingestion.configs.config import SourceConfig
from event_ingestion.configs.settings import Settings
from event_ingestion.schemas import (
    CanonicalEvent,
    CategorizationResult,
    EventCategory,
    Organizer,
    RawEvent,
)
from event_ingestion.storage import InMemoryEventStore
from tests.factories import LONG_DESCRIPTION, future_date


@pytest.fixture
def create_raw_event():
    """
    Return a function that creates RawEvent objects with sensible defaults.

    Example:
        raw = create_raw_event(name="Kent live", venue_name="Arena Varberg")
    """

    def _create_raw_event(
        name: str = "Jazzkväll med Trio X",
        date_time: datetime | str | None = None,
        venue_name: str | None = "Test Venue",
        **kwargs,
    ) -> RawEvent:
        if date_time is None:
            date_time = future_date()
        defaults = {
            "name": name,
            "date_time": date_time.isoformat() if isinstance(date_time, datetime) else date_time,
            "venue_name": venue_name,
            "location": venue_name,
            "description": LONG_DESCRIPTION,
            "image_url": "https://example.com/image.jpg",
        }
        defaults.update(kwargs)
        return RawEvent(**defaults)

    return _create_raw_event


@pytest.fixture
def create_canonical_event():
    """Return a function that creates persisted-style CanonicalEvents."""

    def _create_canonical_event(
        name: str = "Jazzkväll med Trio X",
        event_id: str | None = None,
        date_time: datetime | None = None,
        venue_name: str | None = "Test Venue",
        **kwargs,
    ) -> CanonicalEvent:
        categorization = CategorizationResult.from_scores({EventCategory.SCEN: 0.9})
        defaults = {
            "event_id": event_id or name.lower().replace(" ", "-"),
            "name": name,
            "date_time": date_time or future_date(),
            "venue_name": venue_name,
            "location": venue_name,
            "description": LONG_DESCRIPTION,
            "image_url": "https://example.com/image.jpg",
            "source_name": "Test Venue",
            "organizer_id": 1,
            "categories": categorization.categories,
            "category_scores": categorization.scores,
        }
        defaults.update(kwargs)
        return CanonicalEvent(**defaults)

    return _create_canonical_event


@pytest.fixture
def create_source():
    """Return a function that creates SourceConfig objects."""

    def _create_source(name: str = "Test Venue", **kwargs) -> SourceConfig:
        defaults = {
            "name": name,
            "adapter": "scripted",
            "url": "https://test-venue.example.com/events",
            "organizer_id": 1,
            "match_organizers": False,
            "trusted": True,
        }
        defaults.update(kwargs)
        return SourceConfig(**defaults)

    return _create_source


@pytest.fixture
def organizers():
    """Organizers known before any run."""
    return [
        Organizer(id=1, name="Test Venue", venue_name="Test Venue"),
        Organizer(
            id=5,
            name="Arena Varberg",
            alternative_names=["Varberg Arena"],
            venue_name="Arena Varberg",
            email="info@arenavarberg.se",
            phone="0340-123 45",
        ),
    ]


@pytest.fixture
def memory_store(organizers):
    """Return an in-memory store seeded with the known organizers."""
    return InMemoryEventStore(organizers=organizers)


@pytest.fixture
def settings():
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        DATABASE_URL=None,
        OPENAI_API_KEY=None,
        ANTHROPIC_API_KEY=None,
        CATEGORIZER_ENABLED=False,
        MODERATION_ENABLED=False,
    )
