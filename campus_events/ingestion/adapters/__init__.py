"""
Source Adapters for campus event ingestion.

Usage:
    from campus_events.ingestion.adapters import DiscoveryAPIAdapter, DiscoveryAdapterConfig

    async with DiscoveryAPIAdapter(DiscoveryAdapterConfig(source_id="discovery-api")) as adapter:
        page = await adapter.fetch_page()
"""

from .base_adapter import AdapterConfig, BaseSourceAdapter
from .discovery_adapter import DiscoveryAdapterConfig, DiscoveryAPIAdapter
from .envelopes import DiscoveryPage, EnvelopeKind, RawEventEnvelope, resolve_envelope

__all__ = [
    "AdapterConfig",
    "BaseSourceAdapter",
    "DiscoveryAdapterConfig",
    "DiscoveryAPIAdapter",
    "DiscoveryPage",
    "EnvelopeKind",
    "RawEventEnvelope",
    "resolve_envelope",
]
