"""
Unit tests for the entrypoint module.

End-to-end runs against httpx.MockTransport and an in-memory store.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from campus_events.configs.config import Config, IngestionConfig, build_ingestion_config
from campus_events.configs.settings import Settings
from campus_events.ingestion import entrypoint
from campus_events.ingestion.entrypoint import build_normalizer, build_store, run_ingestion
from campus_events.ingestion.persist import InMemoryEventStore
from campus_events.ingestion.resilience import RetryPolicy
from campus_events.schemas.run import IngestionRun, RunState

# =============================================================================
# TEST DATA
# =============================================================================

WELCOME_FAIR = {
    "id": "A1",
    "name": "Welcome Fair",
    "description": "<p>Meet every student org.</p>",
    "startsOn": "2024-08-26T15:00:00Z",
    "endsOn": "2024-08-26T18:00:00Z",
}

NO_WAIT = RetryPolicy(max_attempts=2, backoff_mode="none")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def settings():
    """Settings isolated from the environment's .env file."""
    return Settings(_env_file=None, DISCOVERY_API_URL="https://engage.example.edu/search")


@pytest.fixture
def ingestion_config():
    """Packaged ingestion.yaml with retries that do not sleep."""
    config = build_ingestion_config(Config.load_ingestion_config())
    config.fetch_retry = NO_WAIT
    config.forward_retry = NO_WAIT
    return config


def _transport(payload=None, status=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload)

    return httpx.MockTransport(handler)


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestRunIngestion:
    """Tests for run_ingestion."""

    def test_welcome_fair_new_then_unchanged(self, settings, ingestion_config):
        """Should forward the event once and skip it on the next run."""
        store = InMemoryEventStore()
        payload = {"value": [WELCOME_FAIR], "@odata.count": 1}
        seen = []

        async def _go():
            first = await run_ingestion(
                settings,
                store=store,
                transport=_transport(payload, seen=seen),
                ingestion_config=ingestion_config,
            )
            second = await run_ingestion(
                settings,
                store=store,
                transport=_transport(payload, seen=seen),
                ingestion_config=ingestion_config,
            )
            return first, second

        first, second = asyncio.run(_go())

        assert first.state == RunState.DONE
        assert first.events_new == 1
        assert second.events_unchanged == 1
        assert second.events_forwarded == 0

        record = store.get("discovery-api", "A1")
        assert record.title == "Welcome Fair"
        assert record.description == "Meet every student org."
        assert record.source_url == "https://utexas.campuslabs.com/engage/event/A1"

        assert seen[0].url.host == "engage.example.edu"
        assert seen[0].url.params["orderByField"] == "endsOn"
        assert seen[0].url.params["status"] == "Approved"

    def test_legacy_events_envelope(self, settings, ingestion_config):
        """Should ingest pages in the legacy 'events' envelope."""
        store = InMemoryEventStore()
        run = asyncio.run(
            run_ingestion(
                settings,
                store=store,
                transport=_transport({"events": [WELCOME_FAIR]}),
                ingestion_config=ingestion_config,
            )
        )
        assert run.events_new == 1
        assert len(store) == 1

    def test_upstream_down(self, settings, ingestion_config):
        """Should report a FAILED run without raising."""
        run = asyncio.run(
            run_ingestion(
                settings,
                store=InMemoryEventStore(),
                transport=_transport(status=503),
                ingestion_config=ingestion_config,
            )
        )
        assert run.state == RunState.FAILED
        assert run.success is False
        assert "503" in run.fatal

    def test_missing_config_file(self):
        """Should report a setup failure instead of raising."""
        settings = Settings(_env_file=None, INGESTION_CONFIG_PATH=Path("/nonexistent/ingestion.yaml"))

        run = asyncio.run(run_ingestion(settings, store=InMemoryEventStore()))

        assert run.run_id.startswith("discovery-api_")
        assert run.state == RunState.FAILED
        assert "setup failed" in run.fatal

    def test_invalid_source_definition(self):
        """Should report a FAILED run when the adapter rejects the source definition."""
        settings = Settings(_env_file=None)
        config = IngestionConfig(source_name="engage-test", endpoint="")

        run = asyncio.run(
            run_ingestion(
                settings,
                store=InMemoryEventStore(),
                transport=_transport({"value": [WELCOME_FAIR]}),
                ingestion_config=config,
            )
        )

        assert run.state == RunState.FAILED
        assert run.success is False
        assert "base_url" in run.fatal
        assert run.source_name == "engage-test"
        assert run.run_id.startswith("engage-test_")

    def test_store_pool_sized_to_forward_concurrency(self, settings, ingestion_config):
        """Should size the store for the configured forwarder concurrency."""
        ingestion_config.forward_concurrency = 7
        with patch.object(entrypoint, "build_store", return_value=InMemoryEventStore()) as build:
            run = asyncio.run(
                run_ingestion(
                    settings,
                    transport=_transport({"value": [WELCOME_FAIR]}),
                    ingestion_config=ingestion_config,
                )
            )

        build.assert_called_once_with(settings, 7)
        assert run.events_new == 1

    def test_setup_failures_have_distinct_run_ids(self):
        """Should give every failed setup its own run id."""
        settings = Settings(_env_file=None, INGESTION_CONFIG_PATH=Path("/nonexistent/ingestion.yaml"))

        async def _go():
            first = await run_ingestion(settings, store=InMemoryEventStore())
            second = await run_ingestion(settings, store=InMemoryEventStore())
            return first, second

        first, second = asyncio.run(_go())
        assert first.run_id != second.run_id


class TestBuilders:
    """Tests for the component builders."""

    def test_build_normalizer_adds_source_url(self):
        """Should build source_url from event_url_template."""
        config = IngestionConfig(event_url_template="https://x.edu/e/{{external_id}}")
        event = build_normalizer(config).normalize({"id": "7", "name": "Open Mic"})
        assert event.source_url == "https://x.edu/e/7"

    def test_build_normalizer_without_template(self):
        """Should leave source_url empty without a template."""
        event = build_normalizer(IngestionConfig()).normalize({"id": "7", "name": "Open Mic"})
        assert event.source_url is None

    def test_build_store_in_memory(self):
        """Should fall back to the in-memory store without DATABASE_URL."""
        store = build_store(Settings(_env_file=None))
        assert isinstance(store, InMemoryEventStore)

    def test_build_store_postgres(self):
        """Should build a PostgreSQL store and ensure the table exists."""
        settings = Settings(
            _env_file=None, DATABASE_URL="postgresql://ingest:pw@db.internal:5432/events"
        )
        with patch.object(entrypoint, "PostgresEventStore") as store_cls:
            store = build_store(settings, max_connections=8)

        params = store_cls.call_args[0][0]
        assert params == {
            "host": "db.internal",
            "port": 5432,
            "dbname": "events",
            "user": "ingest",
            "password": "pw",
        }
        store.ensure_schema.assert_called_once()
        assert store_cls.call_args.kwargs["max_connections"] == 8


class TestMain:
    """Tests for the synchronous trigger."""

    def _run(self, state, fatal=None):
        run = IngestionRun(run_id="r1", source_name="discovery-api", fatal=fatal)
        run.finish(state)
        return run

    def test_exit_code_success(self, settings):
        """Should return 0 for a successful run."""
        with patch.object(entrypoint, "get_settings", return_value=settings), patch.object(
            entrypoint, "configure_logging"
        ), patch.object(
            entrypoint, "run_ingestion", AsyncMock(return_value=self._run(RunState.DONE))
        ):
            assert entrypoint.main() == 0

    def test_exit_code_failure(self, settings):
        """Should return 1 for a failed run."""
        with patch.object(entrypoint, "get_settings", return_value=settings), patch.object(
            entrypoint, "configure_logging"
        ), patch.object(
            entrypoint,
            "run_ingestion",
            AsyncMock(return_value=self._run(RunState.FAILED, fatal="first page fetch failed")),
        ):
            assert entrypoint.main() == 1
