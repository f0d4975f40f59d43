"""Canonical data models shared by every ingestion stage."""

from .event import DEFAULT_SOURCE, CanonicalEvent, compute_content_hash
from .run import IngestionRun, ItemError, RunState

__all__ = [
    "DEFAULT_SOURCE",
    "CanonicalEvent",
    "compute_content_hash",
    "IngestionRun",
    "ItemError",
    "RunState",
]
