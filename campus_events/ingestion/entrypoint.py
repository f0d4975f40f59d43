"""
Trigger entry point.

An external scheduler (cron, a hosted scheduled function, ...) calls
`main()` or awaits `run_ingestion()` with no required parameters. The
return value is the run summary; the success flag exists purely for
observability, since re-invoking the pipeline is always safe.
"""

import asyncio
import logging
from typing import Optional

import httpx

from campus_events.configs.config import Config, IngestionConfig, build_ingestion_config
from campus_events.configs.settings import Settings, get_settings
from campus_events.ingestion.adapters.discovery_adapter import (
    DiscoveryAdapterConfig,
    DiscoveryAPIAdapter,
)
from campus_events.ingestion.deduplication import EventDeduplicator
from campus_events.ingestion.forwarder import Forwarder
from campus_events.ingestion.normalization.event_normalizer import (
    DEFAULT_FIELD_MAPPINGS,
    EventNormalizer,
)
from campus_events.ingestion.normalization.field_mapper import create_field_mapper_from_config
from campus_events.ingestion.orchestrator import RunConfig, RunCoordinator, generate_run_id
from campus_events.ingestion.persist import EventStore, InMemoryEventStore, PostgresEventStore
from campus_events.monitoring.logging import configure_logging
from campus_events.schemas.event import DEFAULT_SOURCE
from campus_events.schemas.run import IngestionRun, RunState

logger = logging.getLogger(__name__)


def build_normalizer(config: IngestionConfig) -> EventNormalizer:
    """Create the normalizer, adding the event URL template when configured."""
    normalization = dict(config.normalization)
    transformations = dict(normalization.get("transformations") or {})
    if config.event_url_template:
        transformations.setdefault(
            "source_url",
            {"type": "template", "template": config.event_url_template, "when": "external_id"},
        )
    normalization["transformations"] = transformations
    mapper = create_field_mapper_from_config(normalization, DEFAULT_FIELD_MAPPINGS)
    return EventNormalizer(source=config.source_name, field_mapper=mapper)


def build_adapter(
    config: IngestionConfig,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DiscoveryAPIAdapter:
    api_key = settings.DISCOVERY_API_KEY.get_secret_value() if settings.DISCOVERY_API_KEY else None
    adapter_config = DiscoveryAdapterConfig(
        source_id=config.source_name,
        request_timeout=config.request_timeout,
        base_url=settings.DISCOVERY_API_URL or config.endpoint,
        api_key=api_key,
        page_size=config.page_size,
        order_by_field=config.order_by_field,
        order_by_direction=config.order_by_direction,
        status=config.status,
        query_params=config.query_params,
    )
    return DiscoveryAPIAdapter(adapter_config, transport=transport)


def build_store(settings: Settings, max_connections: int = 4) -> EventStore:
    """
    PostgreSQL when DATABASE_URL is set, otherwise an in-memory store.

    Args:
        settings: Application settings
        max_connections: Pool size; match the forwarder concurrency so
            parallel upserts never wait on the pool
    """
    if not settings.DATABASE_URL:
        logger.warning(
            "DATABASE_URL not set, using in-memory event store; "
            "every run will classify all events as new"
        )
        return InMemoryEventStore()

    store = PostgresEventStore(
        settings.get_psycopg2_params(),
        min_connections=1,
        max_connections=max(1, max_connections),
        statement_timeout_ms=settings.DATABASE_STATEMENT_TIMEOUT_MS,
    )
    store.ensure_schema()
    return store


def build_coordinator(
    config: IngestionConfig,
    settings: Settings,
    store: EventStore,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RunCoordinator:
    """Wire adapter, normalizer, dedupe engine and forwarder for one run."""
    return RunCoordinator(
        client=build_adapter(config, settings, transport=transport),
        normalizer=build_normalizer(config),
        deduplicator=EventDeduplicator(store),
        forwarder=Forwarder(
            store,
            retry_policy=config.forward_retry,
            max_concurrency=config.forward_concurrency,
        ),
        config=RunConfig(
            source_name=config.source_name,
            max_pages=config.max_pages,
            fetch_retry=config.fetch_retry,
            time_budget_seconds=config.time_budget_seconds,
        ),
    )


def _setup_failed(source_name: str, error: Exception) -> IngestionRun:
    logger.error(f"Ingestion setup failed: {error}", exc_info=True)
    run = IngestionRun(
        run_id=generate_run_id(source_name),
        source_name=source_name,
        fatal=f"setup failed: {error}",
    )
    run.finish(RunState.FAILED)
    return run


async def run_ingestion(
    settings: Optional[Settings] = None,
    *,
    store: Optional[EventStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    ingestion_config: Optional[IngestionConfig] = None,
) -> IngestionRun:
    """
    Run the pipeline once.

    Args:
        settings: Application settings (defaults to get_settings())
        store: Downstream store; built from settings when omitted
        transport: httpx transport override for the discovery API
        ingestion_config: Source definition; loaded from ingestion.yaml when omitted

    Returns:
        IngestionRun summary. Never raises for pipeline or setup failures;
        the failure is reported on `fatal` instead.
    """
    source_name = ingestion_config.source_name if ingestion_config else DEFAULT_SOURCE
    owned_store = store is None

    try:
        settings = settings or get_settings()
        config = ingestion_config or build_ingestion_config(
            Config.load_ingestion_config(settings.INGESTION_CONFIG_PATH)
        )
        source_name = config.source_name
        if store is None:
            store = await asyncio.to_thread(build_store, settings, config.forward_concurrency)
        coordinator = build_coordinator(config, settings, store, transport=transport)
    except Exception as e:
        if owned_store and isinstance(store, PostgresEventStore):
            store.close()
        return _setup_failed(source_name, e)

    try:
        async with coordinator.client:
            return await coordinator.run()
    finally:
        if owned_store and isinstance(store, PostgresEventStore):
            store.close()


def main() -> int:
    """
    Synchronous trigger for schedulers.

    Returns:
        Process exit code: 0 when the run succeeded, 1 otherwise
    """
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)

    run = asyncio.run(run_ingestion(settings))
    logger.info(
        "Ingestion run summary",
        extra={"run_id": run.run_id, "stage": "summary", "payload": run.to_summary()},
    )
    return 0 if run.success else 1
