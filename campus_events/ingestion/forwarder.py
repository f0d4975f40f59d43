"""
Forwarder.

Idempotently upserts NEW/UPDATED events into the downstream store.

- Per-item isolation: one failure never blocks the rest of the batch.
- Transient ForwardErrors are retried with bounded exponential backoff;
  permanent ones are recorded immediately.
- Writes for the same (source, external_id) are serialised with a per-key
  lock; different keys go out concurrently up to max_concurrency.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from campus_events.ingestion.deduplication import EventClassification
from campus_events.ingestion.errors import ForwardError
from campus_events.ingestion.persist import EventStore
from campus_events.ingestion.resilience import RetryPolicy
from campus_events.schemas.event import CanonicalEvent

logger = logging.getLogger(__name__)

FORWARDABLE = (EventClassification.NEW, EventClassification.UPDATED)


@dataclass
class ForwardOutcome:
    """Per-event result of a forward attempt."""

    event: CanonicalEvent
    classification: EventClassification
    success: bool
    attempts: int = 0
    error: Optional[str] = None
    transient: bool = False


class Forwarder:
    """Writes classified events to an EventStore."""

    def __init__(
        self,
        store: EventStore,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = 4,
    ):
        """
        Args:
            store: Downstream store (upsert keyed by (source, external_id))
            retry_policy: Backoff for transient failures; 3 attempts, 200ms base by default
            max_concurrency: Upper bound on in-flight upserts
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrency = max_concurrency
        self._key_locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def forward(
        self, items: Sequence[Tuple[CanonicalEvent, EventClassification]]
    ) -> List[ForwardOutcome]:
        """
        Forward a batch of classified events.

        Args:
            items: (event, classification) pairs; classification must be NEW or UPDATED

        Returns:
            One ForwardOutcome per input item, in input order
        """
        for event, classification in items:
            if classification not in FORWARDABLE:
                raise ValueError(
                    f"Cannot forward {event.external_id} classified {classification.value}"
                )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(event: CanonicalEvent, classification: EventClassification) -> ForwardOutcome:
            async with semaphore:
                return await self.forward_one(event, classification)

        return list(await asyncio.gather(*(_bounded(e, c) for e, c in items)))

    async def forward_one(
        self, event: CanonicalEvent, classification: EventClassification
    ) -> ForwardOutcome:
        """Upsert one event, retrying transient failures."""
        async with self._key_locks[event.key]:
            return await self._upsert_with_retry(event, classification)

    async def _upsert_with_retry(
        self, event: CanonicalEvent, classification: EventClassification
    ) -> ForwardOutcome:
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.store.upsert(event)
                logger.debug(
                    f"Forwarded {classification.value} event {event.external_id} (attempt {attempt})"
                )
                return ForwardOutcome(event, classification, success=True, attempts=attempt)

            except ForwardError as e:
                if e.transient and self.retry_policy.should_retry(attempt):
                    wait_time = self.retry_policy.compute_backoff_s(attempt)
                    logger.warning(
                        f"Transient failure forwarding {event.external_id}, "
                        f"retrying in {wait_time:.2f}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                    continue

                logger.error(
                    f"Failed to forward {event.external_id} after {attempt} attempt(s): {e}"
                )
                return ForwardOutcome(
                    event,
                    classification,
                    success=False,
                    attempts=attempt,
                    error=str(e),
                    transient=e.transient,
                )

            except Exception as e:
                logger.error(
                    f"Unexpected error forwarding {event.external_id}: {e}", exc_info=True
                )
                return ForwardOutcome(
                    event, classification, success=False, attempts=attempt, error=str(e)
                )
