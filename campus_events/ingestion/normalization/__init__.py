"""
Normalization layer.

- FieldMapper: config-driven extraction of fields from raw items
- EventNormalizer: raw item -> CanonicalEvent
"""

from .event_normalizer import DEFAULT_FIELD_MAPPINGS, EventNormalizer, parse_timestamp
from .field_mapper import FieldMapper, create_field_mapper_from_config

__all__ = [
    "DEFAULT_FIELD_MAPPINGS",
    "EventNormalizer",
    "FieldMapper",
    "create_field_mapper_from_config",
    "parse_timestamp",
]
