"""
Run Coordinator.

Drives one end-to-end ingestion run:

    IDLE -> FETCHING <-> PROCESSING -> DONE
            FETCHING -> FAILED   (first page could not be fetched)

Each fetched page is streamed through Normalizer -> Dedupe -> Forwarder
before the next page is requested. Item-scoped problems are collected on
the IngestionRun; the coordinator only ends FAILED when it has nothing at
all to process.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from campus_events.ingestion.adapters.base_adapter import BaseSourceAdapter
from campus_events.ingestion.adapters.envelopes import DiscoveryPage
from campus_events.ingestion.deduplication import EventDeduplicator
from campus_events.ingestion.errors import FetchError, NormalizationError
from campus_events.ingestion.forwarder import Forwarder
from campus_events.ingestion.normalization.event_normalizer import EventNormalizer
from campus_events.ingestion.resilience import RetryPolicy
from campus_events.schemas.event import CanonicalEvent
from campus_events.schemas.run import IngestionRun, RunState

STOP_MAX_PAGES = "max-pages-reached"
STOP_FETCH_ERROR = "fetch-error"
STOP_TIME_BUDGET = "time-budget-exceeded"
STOP_CANCELLED = "cancelled"


def generate_run_id(source_name: str) -> str:
    """Run id of the form `<source>_<YYYYmmdd_HHMMSS>_<8 hex>`."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{source_name}_{timestamp}_{uuid.uuid4().hex[:8]}"


@dataclass
class RunConfig:
    """Run-level settings for the coordinator."""

    source_name: str = "discovery-api"
    max_pages: int = 20
    fetch_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(base_delay_s=1.0))
    time_budget_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_pages <= 0:
            raise ValueError("max_pages must be a positive integer")


class RunCoordinator:
    """
    Orchestrates a single pipeline invocation.

    The coordinator never raises on item errors. The partial IngestionRun
    of the most recent run is always available on `last_run`, including
    after cancellation.
    """

    def __init__(
        self,
        client: BaseSourceAdapter,
        normalizer: EventNormalizer,
        deduplicator: EventDeduplicator,
        forwarder: Forwarder,
        config: Optional[RunConfig] = None,
    ):
        self.client = client
        self.normalizer = normalizer
        self.deduplicator = deduplicator
        self.forwarder = forwarder
        self.config = config or RunConfig()
        self.logger = logging.getLogger(f"coordinator.{self.config.source_name}")
        self.last_run: Optional[IngestionRun] = None
        self._deadline: Optional[float] = None

    @property
    def state(self) -> RunState:
        return self.last_run.state if self.last_run else RunState.IDLE

    def _log_extra(self, run: IngestionRun, stage: str) -> dict:
        return {"run_id": run.run_id, "source_id": self.config.source_name, "stage": stage}

    def _budget_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def run(self) -> IngestionRun:
        """
        Execute one run.

        Returns:
            The finalised IngestionRun (DONE or FAILED)

        Raises:
            asyncio.CancelledError: re-raised after the partial run is finalised
        """
        run = IngestionRun(
            run_id=generate_run_id(self.config.source_name),
            source_name=self.config.source_name,
        )
        self.last_run = run
        self._deadline = (
            time.monotonic() + self.config.time_budget_seconds
            if self.config.time_budget_seconds
            else None
        )
        self.logger.info("Starting ingestion run", extra=self._log_extra(run, "start"))

        try:
            await self._drive(run)
        except asyncio.CancelledError:
            run.stopped_reason = STOP_CANCELLED
            run.finish(RunState.DONE if run.pages_fetched else RunState.FAILED)
            if not run.pages_fetched:
                run.fatal = "cancelled before the first page was fetched"
            self.logger.warning(
                "Ingestion run cancelled, partial counters kept",
                extra={**self._log_extra(run, "cancel"), "payload": run.to_summary()},
            )
            raise
        except Exception as e:
            self.logger.error(
                f"Ingestion run aborted by unexpected error: {e}",
                exc_info=True,
                extra=self._log_extra(run, "execution"),
            )
            run.fatal = f"unexpected error: {e}"
            run.finish(RunState.DONE if run.pages_fetched else RunState.FAILED)
            return run

        self.logger.info(
            f"Ingestion run finished: {run.state.value}, "
            f"{run.events_new} new, {run.events_updated} updated, "
            f"{run.events_unchanged} unchanged, {len(run.item_errors)} item errors",
            extra={**self._log_extra(run, "finish"), "payload": run.to_summary()},
        )
        return run

    async def _drive(self, run: IngestionRun) -> None:
        cursor: Optional[int] = None

        while True:
            if self._budget_exceeded():
                run.stopped_reason = STOP_TIME_BUDGET
                self.logger.warning(
                    "Time budget exceeded, not fetching further pages",
                    extra=self._log_extra(run, "fetch"),
                )
                break

            run.state = RunState.FETCHING
            try:
                page = await self._fetch_with_retry(run, cursor)
            except FetchError as e:
                if run.pages_fetched == 0:
                    run.fatal = f"first page fetch failed: {e}"
                    self.logger.error(run.fatal, extra=self._log_extra(run, "fetch"))
                    run.finish(RunState.FAILED)
                    return
                run.stopped_reason = STOP_FETCH_ERROR
                run.record_error(None, "fetch", f"page at cursor {cursor}: {e}")
                self.logger.warning(
                    f"Fetch failed after {run.pages_fetched} page(s), keeping partial results: {e}",
                    extra=self._log_extra(run, "fetch"),
                )
                break

            run.pages_fetched += 1
            run.state = RunState.PROCESSING
            await self._process_page(run, page)

            if page.next_cursor is None:
                break
            if run.pages_fetched >= self.config.max_pages:
                run.stopped_reason = STOP_MAX_PAGES
                self.logger.warning(
                    f"Stopping after max_pages={self.config.max_pages}, upstream still reports more",
                    extra=self._log_extra(run, "fetch"),
                )
                break
            cursor = page.next_cursor

        run.finish(RunState.DONE)

    async def _fetch_with_retry(self, run: IngestionRun, cursor: Optional[int]) -> DiscoveryPage:
        policy = self.config.fetch_retry
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.client.fetch_page(cursor)
            except FetchError as e:
                if not e.retryable or not policy.should_retry(attempt) or self._budget_exceeded():
                    raise
                wait_time = policy.compute_backoff_s(attempt)
                self.logger.warning(
                    f"Page fetch failed (attempt {attempt}), retrying in {wait_time:.2f}s: {e}",
                    extra=self._log_extra(run, "fetch"),
                )
                await asyncio.sleep(wait_time)

    async def _process_page(self, run: IngestionRun, page: DiscoveryPage) -> None:
        """Normalizer -> Dedupe -> Forwarder for one page."""
        events: List[CanonicalEvent] = []
        for raw in page.items:
            run.events_seen += 1
            try:
                events.append(self.normalizer.normalize(raw))
            except NormalizationError as e:
                run.record_error(e.external_id, "normalize", str(e))
                self.logger.warning(
                    f"Skipping malformed item: {e}", extra=self._log_extra(run, "normalize")
                )

        batch = await self.deduplicator.classify_batch(events)
        run.events_unchanged += batch.unchanged + batch.superseded
        for failure in batch.lookup_failures:
            run.record_error(failure.event.external_id, "dedupe", failure.reason)

        if not batch.to_forward:
            return

        if self._budget_exceeded():
            run.stopped_reason = STOP_TIME_BUDGET
            self.logger.warning(
                f"Time budget exceeded, {len(batch.to_forward)} event(s) left for the next run",
                extra=self._log_extra(run, "forward"),
            )
            return

        run.events_new += batch.new
        run.events_updated += batch.updated

        outcomes = await self.forwarder.forward(batch.to_forward)
        for outcome in outcomes:
            if outcome.success:
                run.events_forwarded += 1
            else:
                run.record_error(outcome.event.external_id, "forward", outcome.error or "unknown")
