"""
Unit tests for the forwarder module.

Tests for idempotent upserts, retry of transient failures and per-key ordering.
"""

import asyncio
from collections import defaultdict

import pytest

from campus_events.ingestion.deduplication import EventClassification
from campus_events.ingestion.errors import ForwardError
from campus_events.ingestion.forwarder import Forwarder
from campus_events.ingestion.persist import InMemoryEventStore
from campus_events.ingestion.resilience import RetryPolicy

NO_WAIT = RetryPolicy(max_attempts=3, backoff_mode="none")

# =============================================================================
# FIXTURES
# =============================================================================


class FlakyStore(InMemoryEventStore):
    """In-memory store that fails scripted upserts per external_id."""

    def __init__(self, failures=None):
        super().__init__()
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.attempts = defaultdict(int)

    async def upsert(self, event):
        self.attempts[event.external_id] += 1
        pending = self.failures.get(event.external_id)
        if pending:
            raise pending.pop(0)
        await super().upsert(event)


class SlowStore(InMemoryEventStore):
    """In-memory store that tracks concurrent writes per key."""

    def __init__(self):
        super().__init__()
        self.in_flight = defaultdict(int)
        self.max_in_flight = defaultdict(int)

    async def upsert(self, event):
        self.in_flight[event.key] += 1
        self.max_in_flight[event.key] = max(
            self.max_in_flight[event.key], self.in_flight[event.key]
        )
        await asyncio.sleep(0.01)
        await super().upsert(event)
        self.in_flight[event.key] -= 1


def _new(event):
    return (event, EventClassification.NEW)


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestForwarder:
    """Tests for Forwarder.forward."""

    def test_forward_new_events(self, store, create_event):
        """Should upsert every item and report success."""
        forwarder = Forwarder(store, NO_WAIT)
        events = [create_event(external_id=f"E{i}") for i in range(3)]

        outcomes = asyncio.run(forwarder.forward([_new(e) for e in events]))

        assert all(o.success for o in outcomes)
        assert len(store) == 3
        assert [o.event.external_id for o in outcomes] == ["E0", "E1", "E2"]

    def test_upsert_replaces_record(self, store, create_event):
        """Should leave exactly one record per key after an update."""

        async def _go():
            forwarder = Forwarder(store, NO_WAIT)
            await forwarder.forward([_new(create_event(description="v1"))])
            await forwarder.forward(
                [(create_event(description="v2"), EventClassification.UPDATED)]
            )

        asyncio.run(_go())

        assert len(store) == 1
        assert store.get("discovery-api", "A1").description == "v2"

    def test_rejects_unchanged(self, store, create_event):
        """Should refuse to forward UNCHANGED events."""
        forwarder = Forwarder(store, NO_WAIT)
        with pytest.raises(ValueError):
            asyncio.run(
                forwarder.forward([(create_event(), EventClassification.UNCHANGED)])
            )
        assert store.write_count == 0

    def test_transient_failure_retried(self, create_event):
        """Should retry transient errors and succeed."""
        store = FlakyStore({"A1": [ForwardError.temporary("A1", "timeout")]})
        forwarder = Forwarder(store, NO_WAIT)

        outcomes = asyncio.run(forwarder.forward([_new(create_event())]))

        assert outcomes[0].success is True
        assert outcomes[0].attempts == 2
        assert store.attempts["A1"] == 2

    def test_transient_failure_exhausts_attempts(self, create_event):
        """Should give up after max_attempts and mark the outcome transient."""
        store = FlakyStore({"A1": [ForwardError.temporary("A1", "timeout")] * 5})
        forwarder = Forwarder(store, NO_WAIT)

        outcome = asyncio.run(forwarder.forward([_new(create_event())]))[0]

        assert outcome.success is False
        assert outcome.transient is True
        assert outcome.attempts == 3
        assert store.attempts["A1"] == 3

    def test_permanent_failure_not_retried(self, create_event):
        """Should record permanent errors after one attempt."""
        store = FlakyStore({"A1": [ForwardError.rejected("A1", "constraint violation")]})
        forwarder = Forwarder(store, NO_WAIT)

        outcome = asyncio.run(forwarder.forward([_new(create_event())]))[0]

        assert outcome.success is False
        assert outcome.transient is False
        assert outcome.attempts == 1
        assert "constraint violation" in outcome.error

    def test_unexpected_error_is_permanent(self, create_event):
        """Should treat non-ForwardError exceptions as permanent failures."""
        store = FlakyStore({"A1": [KeyError("boom")]})
        forwarder = Forwarder(store, NO_WAIT)

        outcome = asyncio.run(forwarder.forward([_new(create_event())]))[0]

        assert outcome.success is False
        assert outcome.attempts == 1

    def test_failure_isolated(self, create_event):
        """Should not let one failing item block the rest."""
        store = FlakyStore({"E5": [ForwardError.rejected("E5", "bad")]})
        forwarder = Forwarder(store, NO_WAIT)
        events = [create_event(external_id=f"E{i}") for i in range(10)]

        outcomes = asyncio.run(forwarder.forward([_new(e) for e in events]))

        failed = [o.event.external_id for o in outcomes if not o.success]
        assert failed == ["E5"]
        assert len(store) == 9

    def test_same_key_serialised(self, create_event):
        """Should never have two writes for the same key in flight."""
        store = SlowStore()
        forwarder = Forwarder(store, NO_WAIT, max_concurrency=8)
        event = create_event()

        async def _go():
            await asyncio.gather(
                forwarder.forward([_new(event)]),
                forwarder.forward([(event, EventClassification.UPDATED)]),
                forwarder.forward([(event, EventClassification.UPDATED)]),
            )

        asyncio.run(_go())

        assert store.max_in_flight[event.key] == 1
        assert store.write_count == 3

    def test_invalid_concurrency(self, store):
        """Should reject max_concurrency below 1."""
        with pytest.raises(ValueError):
            Forwarder(store, max_concurrency=0)
