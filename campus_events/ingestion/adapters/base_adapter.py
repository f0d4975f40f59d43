"""
Base Source Adapter.

Abstract base class defining the interface for upstream source adapters.
The run coordinator only talks to this interface, so tests can swap in a
scripted adapter.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

from campus_events.ingestion.adapters.envelopes import DiscoveryPage


@dataclass
class AdapterConfig:
    """
    Base configuration for source adapters.

    Extended by specific adapter types.
    """

    source_id: str
    request_timeout: float = 30.0
    custom_config: Dict[str, Any] = field(default_factory=dict)


class BaseSourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    Subclasses must implement:
        - fetch_page(): Fetch one page of raw events
        - _validate_config(): Validate adapter-specific configuration
    """

    def __init__(self, config: AdapterConfig):
        """
        Initialize the adapter.

        Args:
            config: AdapterConfig with source-specific settings
        """
        self.config = config
        self.logger = logging.getLogger(f"adapter.{config.source_id}")
        self._validate_config()

    @property
    def source_id(self) -> str:
        """Get the source identifier."""
        return self.config.source_id

    @abstractmethod
    async def fetch_page(self, cursor: Optional[int] = None) -> DiscoveryPage:
        """
        Fetch one page of raw events.

        Args:
            cursor: Continuation offset from the previous page, None for the first

        Returns:
            DiscoveryPage with raw items and the next cursor

        Raises:
            FetchError: On transport failure or non-success HTTP status
        """
        pass

    @abstractmethod
    def _validate_config(self) -> None:
        """
        Validate adapter-specific configuration.

        Raises:
            ValueError: If configuration is invalid
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the adapter."""
        pass

    async def __aenter__(self) -> "BaseSourceAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
