"""
Discovery API response envelopes.

The discovery API has shipped two response shapes:

    {"value": [...], "@odata.count": 42}       # OData-style search endpoint
    {"events": [...], "total": 42}             # legacy events endpoint

Both are resolved here, once, into a DiscoveryPage tagged with the envelope
kind. Everything downstream of the adapter only ever sees DiscoveryPage.items,
a list of RawEventEnvelope dicts.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

RawEventEnvelope = Dict[str, Any]


class EnvelopeKind(str, Enum):
    """Which top-level container a page arrived in."""

    VALUE = "value"
    EVENTS = "events"
    EMPTY = "empty"


class DiscoveryPage(BaseModel):
    """One page of raw events plus the continuation offset, if any."""

    model_config = ConfigDict(frozen=True)

    kind: EnvelopeKind
    items: List[RawEventEnvelope] = Field(default_factory=list)
    total: Optional[int] = None
    skip: int = 0
    next_cursor: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.items


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _explicit_cursor(payload: Dict[str, Any]) -> Optional[int]:
    """
    Continuation offset the upstream handed us, if it did.

    Either a plain "nextCursor"/"nextSkip" value, or the "$skip"/"skip"
    query parameter of an "@odata.nextLink" URL.
    """
    for key in ("nextCursor", "nextSkip"):
        cursor = _as_int(payload.get(key))
        if cursor is not None:
            return cursor

    next_link = payload.get("@odata.nextLink")
    if isinstance(next_link, str) and next_link:
        query = parse_qs(urlparse(next_link).query)
        for key in ("$skip", "skip"):
            values = query.get(key)
            if values:
                cursor = _as_int(values[0])
                if cursor is not None:
                    return cursor
    return None


def _items(container: Any) -> List[RawEventEnvelope]:
    if not isinstance(container, list):
        return []
    return list(container)


def resolve_envelope(payload: Any, *, skip: int, page_size: int) -> DiscoveryPage:
    """
    Resolve a decoded JSON response body into a DiscoveryPage.

    Args:
        payload: Decoded JSON body
        skip: Offset the page was requested at
        page_size: Requested page size ("take")

    Returns:
        DiscoveryPage; an EMPTY page when neither known container is present
    """
    if not isinstance(payload, dict):
        logger.warning(f"Unexpected discovery payload type {type(payload).__name__}, treating page as empty")
        return DiscoveryPage(kind=EnvelopeKind.EMPTY, skip=skip)

    # A null or non-list "value" falls through to "events".
    if isinstance(payload.get("value"), list):
        kind = EnvelopeKind.VALUE
        items = _items(payload.get("value"))
        total = _as_int(payload.get("@odata.count"))
    elif isinstance(payload.get("events"), list):
        kind = EnvelopeKind.EVENTS
        items = _items(payload.get("events"))
        total = _as_int(payload.get("total", payload.get("totalItems")))
    else:
        logger.warning(
            f"Discovery payload has neither 'value' nor 'events' (keys: {sorted(payload)[:10]}), "
            "treating page as empty"
        )
        return DiscoveryPage(kind=EnvelopeKind.EMPTY, skip=skip)

    next_cursor = _explicit_cursor(payload)
    if next_cursor is not None and next_cursor <= skip:
        # A cursor that does not advance would refetch the same page forever.
        logger.warning(f"Ignoring non-advancing cursor {next_cursor} at skip={skip}")
        next_cursor = None
    elif next_cursor is None and items and len(items) >= page_size:
        next_cursor = skip + len(items)
        if total is not None and next_cursor >= total:
            next_cursor = None

    return DiscoveryPage(
        kind=kind,
        items=items,
        total=total,
        skip=skip,
        next_cursor=next_cursor,
    )
