"""Scheduled ingestion of campus event listings."""

__version__ = "0.1.0"
