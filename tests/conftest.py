"""
Shared pytest fixtures for the campus events ingestion test suite.

Provides factories for raw discovery API items and CanonicalEvent objects,
plus an in-memory downstream store.
"""

from datetime import datetime, timezone
from typing import Optional

import pytest

from campus_events.ingestion.persist import InMemoryEventStore
from campus_events.schemas.event import CanonicalEvent


@pytest.fixture
def create_event():
    """
    Return a function that creates CanonicalEvent objects with sensible defaults.

    Example:
        event = create_event(external_id="A1", title="Welcome Fair")
    """

    def _create_event(
        external_id: str = "A1",
        title: str = "Welcome Fair",
        description: str = "Meet every student org on the South Mall.",
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        **kwargs,
    ) -> CanonicalEvent:
        if starts_at is None:
            starts_at = datetime(2024, 8, 26, 15, 0, tzinfo=timezone.utc)
        if ends_at is None:
            ends_at = datetime(2024, 8, 26, 18, 0, tzinfo=timezone.utc)

        return CanonicalEvent(
            external_id=external_id,
            title=title,
            description=description,
            starts_at=starts_at,
            ends_at=ends_at,
            **kwargs,
        )

    return _create_event


@pytest.fixture
def raw_item():
    """
    Return a function that builds a raw discovery API item.

    Keyword arguments override fields; pass a value of None to drop a field.
    """

    def _raw_item(**overrides) -> dict:
        item = {
            "id": "A1",
            "name": "Welcome Fair",
            "description": "Meet every student org on the South Mall.",
            "startsOn": "2024-08-26T15:00:00+00:00",
            "endsOn": "2024-08-26T18:00:00+00:00",
            "organizationName": "Student Activities",
        }
        for key, value in overrides.items():
            if value is None:
                item.pop(key, None)
            else:
                item[key] = value
        return item

    return _raw_item


@pytest.fixture
def store():
    """Return an empty in-memory event store."""
    return InMemoryEventStore()
