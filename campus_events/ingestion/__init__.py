"""
Ingestion Layer for campus events.

This package fetches listings from the campus discovery API, normalizes
them into CanonicalEvent, classifies them against previously seen events
and forwards new or changed ones to the downstream store.

Key Components:
- DiscoveryAPIAdapter: paginated upstream client
- EventNormalizer: raw item -> CanonicalEvent
- EventDeduplicator: NEW / UPDATED / UNCHANGED classification
- Forwarder: idempotent upserts with retries
- RunCoordinator: one end-to-end run
"""
