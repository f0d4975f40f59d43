# campus_events/configs/config.py
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from campus_events.ingestion.adapters.discovery_adapter import DEFAULT_ENDPOINT
from campus_events.ingestion.resilience import RetryPolicy


class Config:
    """
    File-based configuration for the ingestion pipeline.
    """

    # This points to campus_events/configs/
    CONFIG_DIR = Path(__file__).parent.resolve()
    INGESTION_CONFIG_PATH = CONFIG_DIR / "ingestion.yaml"

    @classmethod
    @lru_cache
    def load_ingestion_config(cls, path: Optional[Path] = None) -> dict:
        """Loads the YAML configuration for the discovery source."""
        config_path = Path(path) if path else cls.INGESTION_CONFIG_PATH
        if not config_path.exists():
            raise FileNotFoundError(f"Missing config at {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}


@dataclass
class IngestionConfig:
    """Typed view of ingestion.yaml."""

    source_name: str = "discovery-api"
    endpoint: str = DEFAULT_ENDPOINT
    event_url_template: Optional[str] = None
    status: Optional[str] = "Approved"
    order_by_field: str = "endsOn"
    order_by_direction: str = "ascending"
    query_params: Dict[str, Any] = field(default_factory=dict)
    page_size: int = 15
    max_pages: int = 20
    request_timeout: float = 15.0
    time_budget_seconds: Optional[float] = None
    fetch_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(base_delay_s=1.0))
    forward_retry: RetryPolicy = field(default_factory=RetryPolicy)
    forward_concurrency: int = 4
    normalization: Dict[str, Any] = field(default_factory=dict)


def build_ingestion_config(data: Dict[str, Any]) -> IngestionConfig:
    """
    Convert a raw ingestion.yaml mapping into an IngestionConfig.

    Raises:
        ValueError: If page_size, max_pages or forward_concurrency are not positive
    """
    defaults = IngestionConfig()

    page_size = int(data.get("page_size", defaults.page_size))
    max_pages = int(data.get("max_pages", defaults.max_pages))
    forward_concurrency = int(data.get("forward_concurrency", defaults.forward_concurrency))
    for name, value in (
        ("page_size", page_size),
        ("max_pages", max_pages),
        ("forward_concurrency", forward_concurrency),
    ):
        if value <= 0:
            raise ValueError(f"{name} must be a positive integer, got {value}")

    time_budget = data.get("time_budget_seconds")

    return IngestionConfig(
        source_name=data.get("source_name", defaults.source_name),
        endpoint=data.get("endpoint", defaults.endpoint),
        event_url_template=data.get("event_url_template"),
        status=data.get("status", defaults.status),
        order_by_field=data.get("order_by_field", defaults.order_by_field),
        order_by_direction=data.get("order_by_direction", defaults.order_by_direction),
        query_params=dict(data.get("query_params") or {}),
        page_size=page_size,
        max_pages=max_pages,
        request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
        time_budget_seconds=float(time_budget) if time_budget else None,
        fetch_retry=RetryPolicy.from_dict(data.get("fetch_retry")) if data.get("fetch_retry") else defaults.fetch_retry,
        forward_retry=RetryPolicy.from_dict(data.get("forward_retry")),
        forward_concurrency=forward_concurrency,
        normalization=dict(data.get("normalization") or {}),
    )
