"""
Unit tests for the event_normalizer module.

Tests for EventNormalizer and timestamp parsing.
"""

from datetime import datetime, timezone

import pytest

from campus_events.ingestion.errors import NormalizationError
from campus_events.ingestion.normalization.event_normalizer import (
    EventNormalizer,
    parse_timestamp,
)
from campus_events.ingestion.normalization.field_mapper import FieldMapper


@pytest.fixture
def normalizer():
    """Create a normalizer with default field mappings."""
    return EventNormalizer()


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_iso_with_offset(self):
        """Should convert offset timestamps to UTC."""
        assert parse_timestamp("2024-08-26T10:00:00-05:00") == datetime(
            2024, 8, 26, 15, 0, tzinfo=timezone.utc
        )

    def test_z_suffix(self):
        """Should accept the Z suffix."""
        assert parse_timestamp("2024-08-26T15:00:00Z") == datetime(
            2024, 8, 26, 15, 0, tzinfo=timezone.utc
        )

    def test_naive_assumed_utc(self):
        """Should treat naive timestamps as UTC."""
        assert parse_timestamp("2024-08-26T15:00:00").tzinfo == timezone.utc

    def test_epoch_seconds(self):
        """Should accept epoch seconds."""
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "next tuesday", {"date": "x"}, True])
    def test_unusable_values(self, value):
        """Should return None for absent or unparseable values."""
        assert parse_timestamp(value) is None


class TestNormalize:
    """Tests for EventNormalizer.normalize."""

    def test_welcome_fair(self, normalizer):
        """Should map the discovery API fields onto CanonicalEvent."""
        event = normalizer.normalize(
            {"id": "A1", "name": "Welcome Fair", "description": "Meet every org."}
        )
        assert event.external_id == "A1"
        assert event.title == "Welcome Fair"
        assert event.description == "Meet every org."
        assert event.source == "discovery-api"
        assert event.content_hash

    def test_timestamps(self, normalizer, raw_item):
        """Should parse startsOn and endsOn."""
        event = normalizer.normalize(raw_item())
        assert event.starts_at == datetime(2024, 8, 26, 15, 0, tzinfo=timezone.utc)
        assert event.ends_at == datetime(2024, 8, 26, 18, 0, tzinfo=timezone.utc)

    def test_legacy_field_names(self, normalizer):
        """Should accept the legacy API's field names."""
        event = normalizer.normalize(
            {
                "eventId": 981,
                "title": "Career Expo",
                "summary": "Bring resumes.",
                "startsAt": "2024-09-10T14:00:00Z",
                "endsAt": "2024-09-10T17:00:00Z",
            }
        )
        assert event.external_id == "981"
        assert event.title == "Career Expo"
        assert event.description == "Bring resumes."
        assert event.ends_at == datetime(2024, 9, 10, 17, 0, tzinfo=timezone.utc)

    def test_integer_id_stringified(self, normalizer, raw_item):
        """Should stringify numeric identifiers."""
        assert normalizer.normalize(raw_item(id=10402)).external_id == "10402"

    def test_missing_optional_fields_default(self, normalizer):
        """Should default description to '' and timestamps to None."""
        event = normalizer.normalize({"id": "A1", "name": "Welcome Fair"})
        assert event.description == ""
        assert event.starts_at is None
        assert event.ends_at is None

    def test_null_description(self, normalizer, raw_item):
        """Should turn a null description into ''."""
        item = raw_item()
        item["description"] = None
        assert normalizer.normalize(item).description == ""

    def test_unparseable_timestamp_is_none(self, normalizer, raw_item):
        """Should not reject an item for a bad optional timestamp."""
        event = normalizer.normalize(raw_item(endsOn="sometime soon"))
        assert event.ends_at is None

    def test_missing_id_rejected(self, normalizer, raw_item):
        """Should reject an item without an identifier."""
        with pytest.raises(NormalizationError) as exc_info:
            normalizer.normalize(raw_item(id=None))
        assert exc_info.value.reason == "missing-required-field"
        assert exc_info.value.item["name"] == "Welcome Fair"

    def test_blank_title_rejected(self, normalizer, raw_item):
        """Should reject an item whose title is only whitespace."""
        with pytest.raises(NormalizationError) as exc_info:
            normalizer.normalize(raw_item(name="   "))
        assert exc_info.value.reason == "missing-required-field"
        assert exc_info.value.external_id == "A1"

    def test_non_dict_rejected(self, normalizer):
        """Should reject items that are not objects."""
        with pytest.raises(NormalizationError) as exc_info:
            normalizer.normalize(["not", "an", "event"])
        assert exc_info.value.reason == "malformed-item"

    def test_same_input_same_hash(self, normalizer, raw_item):
        """Should yield the same hash when an unchanged item is re-fetched."""
        first = normalizer.normalize(raw_item())
        reordered = dict(reversed(list(raw_item().items())))
        assert normalizer.normalize(reordered).content_hash == first.content_hash

    def test_custom_source(self, raw_item):
        """Should stamp the configured source."""
        event = EventNormalizer(source="engage-utexas").normalize(raw_item())
        assert event.key == ("engage-utexas", "A1")

    def test_source_url_from_template(self, raw_item):
        """Should carry a source URL built by the field mapper."""
        mapper = FieldMapper(
            {"external_id": ["id"], "title": ["name"]},
            {"source_url": {"type": "template", "template": "https://x.edu/event/{{external_id}}"}},
        )
        event = EventNormalizer(field_mapper=mapper).normalize(raw_item())
        assert event.source_url == "https://x.edu/event/A1"

    def test_does_not_mutate_input(self, normalizer, raw_item):
        """Should leave the raw item untouched."""
        item = raw_item()
        snapshot = dict(item)
        normalizer.normalize(item)
        assert item == snapshot
