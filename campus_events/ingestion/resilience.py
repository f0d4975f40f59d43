"""
campus_events.ingestion.resilience

Retry policy shared by the run coordinator (page fetches) and the
forwarder (downstream upserts).
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_mode: str = "exp"  # exp | fixed | none
    base_delay_s: float = 0.2
    max_delay_s: float = 10.0
    jitter: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_mode not in ("exp", "fixed", "none"):
            raise ValueError(f"Unknown backoff_mode '{self.backoff_mode}'")

    def compute_backoff_s(self, attempt: int) -> float:
        """
        Delay to wait after a failed attempt.

        attempt: 1..N (the attempt that just failed)
        """
        if self.backoff_mode == "none":
            return 0.0
        if self.backoff_mode == "fixed":
            delay = self.base_delay_s
        else:
            delay = self.base_delay_s * (2 ** max(0, attempt - 1))

        delay = min(delay, self.max_delay_s)
        if self.jitter > 0:
            delay = delay * (1.0 + (random.random() * 2 - 1) * self.jitter)  # +- jitter
        return max(0.0, delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RetryPolicy":
        """Build a policy from a YAML mapping, ignoring unknown keys."""
        if not data:
            return cls()
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)
