"""
Fingerprint / dedupe engine.

Classifies each CanonicalEvent against the seen-event index kept by the
downstream store:

- NEW: no prior record for (source, external_id)
- UPDATED: prior record exists with a different content hash
- UNCHANGED: prior record exists with the same content hash (not forwarded)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from campus_events.schemas.event import CanonicalEvent

logger = logging.getLogger(__name__)


class EventClassification(str, Enum):
    """Outcome of comparing an event with its seen-record."""

    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class SeenEventIndex(Protocol):
    """Read-only view of the seen-event records kept by the downstream store."""

    async def get_content_hash(self, source: str, external_id: str) -> Optional[str]:
        """Return the last stored content hash, or None if never stored."""
        ...


def classify(event: CanonicalEvent, last_hash: Optional[str]) -> EventClassification:
    """Classify a single event given its last stored content hash."""
    if last_hash is None:
        return EventClassification.NEW
    if last_hash != event.content_hash:
        return EventClassification.UPDATED
    return EventClassification.UNCHANGED


@dataclass
class LookupFailure:
    event: CanonicalEvent
    reason: str


@dataclass
class BatchClassification:
    """Result of classifying one page worth of events."""

    to_forward: List[Tuple[CanonicalEvent, EventClassification]] = field(default_factory=list)
    unchanged: int = 0
    superseded: int = 0
    lookup_failures: List[LookupFailure] = field(default_factory=list)

    @property
    def new(self) -> int:
        return sum(1 for _, c in self.to_forward if c == EventClassification.NEW)

    @property
    def updated(self) -> int:
        return sum(1 for _, c in self.to_forward if c == EventClassification.UPDATED)


def collapse_duplicates(events: Sequence[CanonicalEvent]) -> Tuple[List[CanonicalEvent], int]:
    """
    Keep one event per (source, external_id).

    The later occurrence in fetch order wins; its position is that of the
    winning (last) occurrence.

    Returns:
        Tuple of (unique events in fetch order, number superseded)
    """
    last_index: Dict[Tuple[str, str], int] = {}
    for idx, event in enumerate(events):
        last_index[event.key] = idx

    unique = [event for idx, event in enumerate(events) if last_index[event.key] == idx]
    return unique, len(events) - len(unique)


class EventDeduplicator:
    """Classifies batches of canonical events against a SeenEventIndex."""

    def __init__(self, seen: SeenEventIndex):
        """
        Args:
            seen: Lookup of (source, external_id) -> last content hash
        """
        self.seen = seen

    async def classify_event(self, event: CanonicalEvent) -> EventClassification:
        last_hash = await self.seen.get_content_hash(event.source, event.external_id)
        return classify(event, last_hash)

    async def classify_batch(self, events: Sequence[CanonicalEvent]) -> BatchClassification:
        """
        Classify a page of events.

        Upstream duplicates within the batch are collapsed first (later wins,
        earlier counted as superseded), so no key is forwarded twice from the
        same batch. A lookup failure only affects its own event.

        Returns:
            BatchClassification with NEW/UPDATED events in fetch order
        """
        unique, superseded = collapse_duplicates(events)
        if superseded:
            logger.info(f"Collapsed {superseded} duplicate upstream item(s) in batch")

        result = BatchClassification(superseded=superseded)
        for event in unique:
            try:
                classification = await self.classify_event(event)
            except Exception as e:
                logger.error(
                    f"Seen-index lookup failed for {event.external_id}: {e}",
                    exc_info=True,
                )
                result.lookup_failures.append(LookupFailure(event=event, reason=str(e)))
                continue

            if classification == EventClassification.UNCHANGED:
                result.unchanged += 1
            else:
                result.to_forward.append((event, classification))

        return result
