# campus_events/schemas/event.py
"""
Canonical Event Schema for campus event ingestion.

Every upstream listing, whichever discovery API envelope it arrived in, is
normalized into a CanonicalEvent before dedupe and forwarding. The pair
(source, external_id) is the identity of an event across all runs; the
content_hash tells an update apart from a re-fetch of the same data.
"""

import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

DEFAULT_SOURCE = "discovery-api"

_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(value: Optional[str]) -> str:
    """Trim and collapse runs of whitespace into single spaces."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def compute_content_hash(
    title: str,
    description: str,
    starts_at: Optional[datetime],
    ends_at: Optional[datetime],
) -> str:
    """
    Deterministic digest over the fields that define "the event changed".

    Whitespace is collapsed and keys are sorted, so re-fetching an unchanged
    upstream record always yields the same hash regardless of field order
    or incidental formatting.

    Returns:
        SHA-256 hex digest
    """
    payload = {
        "title": collapse_whitespace(title),
        "description": collapse_whitespace(description),
        "starts_at": _iso_or_none(starts_at),
        "ends_at": _iso_or_none(ends_at),
    }
    canonical = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CanonicalEvent(BaseModel):
    """
    The pipeline's internal representation of one upstream listing.

    Example:
        >>> event = CanonicalEvent(external_id="A1", title="Welcome Fair")
        >>> event.key
        ('discovery-api', 'A1')
    """

    model_config = ConfigDict(frozen=True)

    external_id: str = Field(..., min_length=1, description="Upstream-assigned identifier")
    source: str = Field(default=DEFAULT_SOURCE, min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    source_url: Optional[str] = None

    @field_validator("external_id", "title", mode="before")
    @classmethod
    def _collapse(cls, v):
        if isinstance(v, str):
            return collapse_whitespace(v)
        return v

    @field_validator("description", mode="before")
    @classmethod
    def _description_never_null(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_hash(self) -> str:
        """Digest over title, description and timestamps."""
        return compute_content_hash(
            self.title, self.description, self.starts_at, self.ends_at
        )

    @property
    def key(self) -> Tuple[str, str]:
        """Dedupe / upsert key."""
        return (self.source, self.external_id)
