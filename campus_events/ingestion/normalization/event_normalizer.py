"""
Event Normalizer.

Turns one RawEventEnvelope (a discovery API item, in either API version's
field naming) into a CanonicalEvent, or raises NormalizationError. The
normalizer is a pure function of its input: no I/O and no shared mutable
state, so items can be normalized in any order or concurrently.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from campus_events.ingestion.errors import NormalizationError
from campus_events.ingestion.normalization.field_mapper import FieldMapper, FieldPath
from campus_events.schemas.event import DEFAULT_SOURCE, CanonicalEvent, collapse_whitespace

logger = logging.getLogger(__name__)

# Both discovery API versions, newest naming first.
DEFAULT_FIELD_MAPPINGS: Dict[str, FieldPath] = {
    "external_id": ["id", "eventId"],
    "title": ["name", "title"],
    "description": ["description", "summary"],
    "starts_at": ["startsOn", "startsAt", "startDate"],
    "ends_at": ["endsOn", "endsAt", "endDate"],
}

REQUIRED_FIELDS = ("external_id", "title")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an upstream timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (with or without offset, "Z" suffix included)
    and epoch seconds. Naive values are taken as UTC.

    Returns:
        datetime or None when absent or unparseable
    """
    if value is None or value == "":
        return None

    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return collapse_whitespace(str(value))


class EventNormalizer:
    """
    Maps raw discovery API items onto CanonicalEvent.

    Required-field policy: an item without a usable identifier or title is
    rejected with reason "missing-required-field". Optional fields default
    to "" / None rather than failing.
    """

    def __init__(
        self,
        source: str = DEFAULT_SOURCE,
        field_mapper: Optional[FieldMapper] = None,
    ):
        """
        Args:
            source: Constant identifying the upstream integration
            field_mapper: Mapper for raw items; defaults to both API versions'
                field names
        """
        self.source = source
        self.field_mapper = field_mapper or FieldMapper(DEFAULT_FIELD_MAPPINGS)

    def normalize(self, raw: Any) -> CanonicalEvent:
        """
        Normalize one raw item.

        Args:
            raw: A RawEventEnvelope (dict) from a DiscoveryPage

        Returns:
            CanonicalEvent with content_hash computed

        Raises:
            NormalizationError: If the item is malformed or lacks id/title
        """
        if not isinstance(raw, dict):
            raise NormalizationError.malformed(raw)

        mapped = self.field_mapper.map_event(raw)

        external_id = _as_text(mapped.get("external_id"))
        for field_name in REQUIRED_FIELDS:
            if not _as_text(mapped.get(field_name)):
                raise NormalizationError.missing_field(
                    field_name, raw, external_id=external_id or None
                )

        starts_at = self._timestamp(mapped, "starts_at", external_id)
        ends_at = self._timestamp(mapped, "ends_at", external_id)

        description = mapped.get("description")
        source_url = mapped.get("source_url")

        try:
            return CanonicalEvent(
                external_id=external_id,
                source=self.source,
                title=_as_text(mapped.get("title")),
                description=description if isinstance(description, str) else "",
                starts_at=starts_at,
                ends_at=ends_at,
                source_url=source_url if isinstance(source_url, str) and source_url else None,
            )
        except ValidationError as e:
            raise NormalizationError(
                NormalizationError.MALFORMED_ITEM,
                raw,
                external_id=external_id,
                detail=str(e),
            ) from e

    def _timestamp(
        self, mapped: Dict[str, Any], field_name: str, external_id: str
    ) -> Optional[datetime]:
        value = mapped.get(field_name)
        parsed = parse_timestamp(value)
        if parsed is None and value not in (None, ""):
            logger.debug(
                f"Ignoring unparseable {field_name}={value!r} for event {external_id}"
            )
        return parsed
