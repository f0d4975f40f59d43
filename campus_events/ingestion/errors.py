"""
Ingestion error taxonomy.

- FetchError: transport or HTTP failure talking to the discovery API
- NormalizationError: a single malformed upstream item (item-scoped)
- ForwardError: a single downstream write failure (item-scoped)
"""

from __future__ import annotations

from typing import Any

RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class IngestionError(RuntimeError):
    """Base class for all ingestion pipeline errors."""


class FetchError(IngestionError):
    """Raised when a discovery API page cannot be fetched."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialise with a message, optional HTTP status and cause."""
        self.status_code = status_code
        self.cause = cause
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Transport failures, timeouts, throttling and 5xx are worth retrying."""
        if self.status_code is None:
            return self.cause is not None
        return self.status_code in RETRYABLE_STATUS_CODES

    @classmethod
    def http_error(cls, status_code: int, reason: str = "") -> FetchError:
        """Return an error for non-2xx HTTP responses."""
        message = f"Discovery API HTTP {status_code}"
        if reason:
            message = f"{message}: {reason}"
        return cls(message, status_code=status_code)

    @classmethod
    def transport(cls, cause: BaseException) -> FetchError:
        """Return an error for connection failures and timeouts."""
        return cls(f"Discovery API request failed: {cause}", cause=cause)

    @classmethod
    def invalid_body(cls, cause: BaseException) -> FetchError:
        """Return an error for a response body that is not a JSON object."""
        return cls(f"Discovery API returned an invalid body: {cause}")


class NormalizationError(IngestionError):
    """Raised when a raw upstream item cannot become a CanonicalEvent."""

    MISSING_REQUIRED_FIELD = "missing-required-field"
    MALFORMED_ITEM = "malformed-item"

    def __init__(
        self,
        reason: str,
        item: Any = None,
        *,
        external_id: str | None = None,
        detail: str = "",
    ) -> None:
        """Initialise with a machine-readable reason and the offending item."""
        self.reason = reason
        self.item = item
        self.external_id = external_id
        self.detail = detail
        message = f"{reason}: {detail}" if detail else reason
        super().__init__(message)

    @classmethod
    def missing_field(
        cls, field_name: str, item: Any, external_id: str | None = None
    ) -> NormalizationError:
        """Return an error for an item lacking a required field."""
        return cls(
            cls.MISSING_REQUIRED_FIELD,
            item,
            external_id=external_id,
            detail=f"'{field_name}' is missing or empty",
        )

    @classmethod
    def malformed(cls, item: Any) -> NormalizationError:
        """Return an error for an item that is not a JSON object."""
        return cls(
            cls.MALFORMED_ITEM,
            item,
            detail=f"expected an object, got {type(item).__name__}",
        )


class ForwardError(IngestionError):
    """Raised by a downstream store when an upsert fails."""

    def __init__(
        self,
        message: str,
        *,
        external_id: str | None = None,
        transient: bool = False,
    ) -> None:
        """Initialise with the failing event id and whether a retry may help."""
        self.external_id = external_id
        self.transient = transient
        super().__init__(message)

    @classmethod
    def temporary(cls, external_id: str, reason: str) -> ForwardError:
        """Return a retryable error (timeouts, unavailable store)."""
        return cls(reason, external_id=external_id, transient=True)

    @classmethod
    def rejected(cls, external_id: str, reason: str) -> ForwardError:
        """Return a permanent error (validation, constraint violations)."""
        return cls(reason, external_id=external_id, transient=False)
