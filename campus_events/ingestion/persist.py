"""
Persistence Layer for campus event ingestion.

Defines the downstream store contract the forwarder writes through, and two
implementations:

- InMemoryEventStore: process-local, for tests and dry runs
- PostgresEventStore: idempotent upsert into PostgreSQL via psycopg2

The store owns the seen-event records: the last content hash of every
event is written in the same statement as the event's fields, so a failed
write never advances the seen-record.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

import psycopg2
import psycopg2.pool

from campus_events.ingestion.errors import ForwardError
from campus_events.schemas.event import CanonicalEvent

logger = logging.getLogger(__name__)


class EventStore(Protocol):
    """Downstream store contract: lookup by key plus idempotent upsert."""

    async def get_content_hash(self, source: str, external_id: str) -> Optional[str]:
        """Return the last stored content hash for the key, or None."""
        ...

    async def upsert(self, event: CanonicalEvent) -> None:
        """
        Insert or fully replace the record keyed by (source, external_id).

        Raises:
            ForwardError: transient=True when a retry may succeed
        """
        ...


@dataclass
class StoredEvent:
    """A record as held by InMemoryEventStore."""

    source: str
    external_id: str
    title: str
    description: str
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    source_url: Optional[str]
    content_hash: str
    first_seen_at: datetime
    updated_at: datetime


class InMemoryEventStore:
    """
    Dict-backed EventStore.

    Suitable for tests and local dry runs only: nothing survives the process,
    so every run against a fresh instance classifies everything as NEW.
    """

    def __init__(self) -> None:
        self.records: Dict[Tuple[str, str], StoredEvent] = {}
        self.write_count = 0

    async def get_content_hash(self, source: str, external_id: str) -> Optional[str]:
        record = self.records.get((source, external_id))
        return record.content_hash if record else None

    async def upsert(self, event: CanonicalEvent) -> None:
        now = datetime.now(timezone.utc)
        existing = self.records.get(event.key)
        self.records[event.key] = StoredEvent(
            source=event.source,
            external_id=event.external_id,
            title=event.title,
            description=event.description,
            starts_at=event.starts_at,
            ends_at=event.ends_at,
            source_url=event.source_url,
            content_hash=event.content_hash,
            first_seen_at=existing.first_seen_at if existing else now,
            updated_at=now,
        )
        self.write_count += 1

    def get(self, source: str, external_id: str) -> Optional[StoredEvent]:
        return self.records.get((source, external_id))

    def __len__(self) -> int:
        return len(self.records)


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS campus_events (
    source        TEXT NOT NULL,
    external_id   TEXT NOT NULL,
    title         TEXT NOT NULL,
    description   TEXT NOT NULL DEFAULT '',
    starts_at     TIMESTAMPTZ,
    ends_at       TIMESTAMPTZ,
    source_url    TEXT,
    content_hash  TEXT NOT NULL,
    first_seen_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (source, external_id)
);
"""

UPSERT_SQL = """
INSERT INTO campus_events (
    source, external_id, title, description, starts_at, ends_at,
    source_url, content_hash
) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (source, external_id)
DO UPDATE SET
    title = EXCLUDED.title,
    description = EXCLUDED.description,
    starts_at = EXCLUDED.starts_at,
    ends_at = EXCLUDED.ends_at,
    source_url = EXCLUDED.source_url,
    content_hash = EXCLUDED.content_hash,
    updated_at = now();
"""

LOOKUP_SQL = "SELECT content_hash FROM campus_events WHERE source = %s AND external_id = %s"

# Errors where the same statement may succeed on a later attempt.
TRANSIENT_ERRORS = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    psycopg2.pool.PoolError,
)


class PostgresEventStore:
    """
    EventStore backed by a PostgreSQL table.

    psycopg2 is blocking, so every call runs in a worker thread with its
    own pooled connection, one transaction per event.
    """

    def __init__(
        self,
        connection_params: Dict[str, Any],
        min_connections: int = 1,
        max_connections: int = 4,
        statement_timeout_ms: int = 5000,
    ) -> None:
        """
        Args:
            connection_params: psycopg2 connection kwargs (host, port, dbname, user, password)
            min_connections: Pool minimum
            max_connections: Pool maximum; bound the forwarder concurrency by this
            statement_timeout_ms: Server-side timeout for every statement
        """
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            min_connections,
            max_connections,
            options=f"-c statement_timeout={int(statement_timeout_ms)}",
            **connection_params,
        )

    def _execute(self, sql: str, params: Tuple = (), fetch: bool = False) -> Any:
        conn = self._pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone() if fetch else None
            conn.commit()
            return row
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def ensure_schema(self) -> None:
        """Create the campus_events table if it does not exist."""
        self._execute(CREATE_TABLE_SQL)
        logger.info("Ensured campus_events table exists")

    async def get_content_hash(self, source: str, external_id: str) -> Optional[str]:
        row = await asyncio.to_thread(self._execute, LOOKUP_SQL, (source, external_id), True)
        return row[0] if row else None

    async def upsert(self, event: CanonicalEvent) -> None:
        params = (
            event.source,
            event.external_id,
            event.title,
            event.description,
            event.starts_at,
            event.ends_at,
            event.source_url,
            event.content_hash,
        )
        try:
            await asyncio.to_thread(self._execute, UPSERT_SQL, params)
        except TRANSIENT_ERRORS as e:
            raise ForwardError.temporary(event.external_id, f"database unavailable: {e}") from e
        except psycopg2.Error as e:
            raise ForwardError.rejected(event.external_id, f"database rejected event: {e}") from e

    def close(self) -> None:
        """Close all pooled connections."""
        self._pool.closeall()
