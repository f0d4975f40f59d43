"""
Discovery API Adapter.

Fetches campus event listings from the Engage discovery search endpoint,
one page per call, ordered ascending by end time so that pagination is
deterministic and resumable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

import httpx

from campus_events.ingestion.adapters.base_adapter import AdapterConfig, BaseSourceAdapter
from campus_events.ingestion.adapters.envelopes import DiscoveryPage, resolve_envelope
from campus_events.ingestion.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://utexas.campuslabs.com/engage/api/discovery/event/search"


@dataclass
class DiscoveryAdapterConfig(AdapterConfig):
    """Configuration for the discovery API adapter."""

    base_url: str = DEFAULT_ENDPOINT
    api_key: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    page_size: int = 15
    order_by_field: str = "endsOn"
    order_by_direction: str = "ascending"
    status: Optional[str] = "Approved"
    query_params: Dict[str, Any] = field(default_factory=dict)


class DiscoveryAPIAdapter(BaseSourceAdapter):
    """
    Adapter for the campus discovery API.

    One instance covers one run: the time window lower bound ("endsAfter")
    is fixed when the adapter is created so that every page of the run
    queries the same window.
    """

    def __init__(
        self,
        config: DiscoveryAdapterConfig,
        window_start: Optional[datetime] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the discovery adapter.

        Args:
            config: DiscoveryAdapterConfig with API settings
            window_start: Events ending after this instant are fetched;
                defaults to now (UTC)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.window_start = (window_start or datetime.now(timezone.utc)).astimezone(timezone.utc)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        super().__init__(config)

    @property
    def api_config(self) -> DiscoveryAdapterConfig:
        """Get typed config."""
        return self.config  # type: ignore[return-value]

    def _validate_config(self) -> None:
        """Validate API configuration."""
        if not self.api_config.base_url:
            raise ValueError("Discovery adapter requires base_url")
        if self.api_config.page_size <= 0:
            raise ValueError("page_size must be a positive integer")

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            headers = {
                "Accept": "application/json",
                "User-Agent": "campus-events-ingest/1.0",
                **self.api_config.headers,
            }
            if self.api_config.api_key:
                headers["Authorization"] = f"Bearer {self.api_config.api_key}"
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=self.api_config.request_timeout,
                transport=self._transport,
            )
        return self._client

    def build_query(self, cursor: Optional[int] = None) -> Dict[str, Any]:
        """
        Build the query string for one page.

        Args:
            cursor: Offset to start from ("skip")

        Returns:
            Dict of query parameters
        """
        params: Dict[str, Any] = {
            "endsAfter": self.window_start.isoformat().replace("+00:00", "Z"),
            "orderByField": self.api_config.order_by_field,
            "orderByDirection": self.api_config.order_by_direction,
            "take": self.api_config.page_size,
            "skip": cursor or 0,
        }
        if self.api_config.status:
            params["status"] = self.api_config.status
        params.update(self.api_config.query_params)
        return params

    async def fetch_page(self, cursor: Optional[int] = None) -> DiscoveryPage:
        """
        Fetch one page from the discovery API.

        Args:
            cursor: Continuation offset from the previous page

        Returns:
            DiscoveryPage (EMPTY when the body has no known envelope)

        Raises:
            FetchError: On transport failure, timeout, non-2xx status or a
                body that is not JSON
        """
        client = self._get_client()
        params = self.build_query(cursor)
        skip = params["skip"]

        try:
            response = await client.get(self.api_config.base_url, params=params)
        except httpx.HTTPError as e:
            self.logger.warning(f"Discovery request failed at skip={skip}: {e}")
            raise FetchError.transport(e) from e

        if not response.is_success:
            self.logger.warning(
                f"Discovery API returned {response.status_code} at skip={skip}"
            )
            raise FetchError.http_error(response.status_code, response.reason_phrase)

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError.invalid_body(e) from e

        page = resolve_envelope(payload, skip=skip, page_size=self.api_config.page_size)
        self.logger.debug(
            f"Fetched {len(page.items)} items ({page.kind.value}) at skip={skip}, "
            f"next={page.next_cursor}"
        )
        return page

    async def close(self) -> None:
        """Close async HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
