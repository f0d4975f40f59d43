"""
Run summary model.

An IngestionRun exists only for the duration of one invocation. It is
handed back to the trigger (and logged) and never persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class RunState(str, Enum):
    """Run coordinator state machine."""

    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ItemError:
    """A problem scoped to one upstream item or one page fetch."""

    external_id: Optional[str]
    stage: str  # fetch | normalize | dedupe | forward
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"external_id": self.external_id, "stage": self.stage, "reason": self.reason}


@dataclass
class IngestionRun:
    """Counters and errors accumulated over one pipeline invocation."""

    run_id: str
    source_name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    state: RunState = RunState.IDLE
    pages_fetched: int = 0
    events_seen: int = 0
    events_new: int = 0
    events_updated: int = 0
    events_unchanged: int = 0
    events_forwarded: int = 0
    item_errors: List[ItemError] = field(default_factory=list)
    fatal: Optional[str] = None
    stopped_reason: Optional[str] = None

    @property
    def success(self) -> bool:
        """True when the run finished and nothing fatal happened."""
        return self.state == RunState.DONE and self.fatal is None

    @property
    def duration_seconds(self) -> float:
        """Calculate run duration."""
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def record_error(self, external_id: Optional[str], stage: str, reason: str) -> None:
        self.item_errors.append(ItemError(external_id=external_id, stage=stage, reason=reason))

    def finish(self, state: RunState) -> None:
        self.state = state
        self.ended_at = datetime.now(timezone.utc)

    def to_summary(self) -> Dict[str, Any]:
        """Structured summary for logging and alerting."""
        return {
            "run_id": self.run_id,
            "source": self.source_name,
            "state": self.state.value,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_s": round(self.duration_seconds, 3),
            "pages_fetched": self.pages_fetched,
            "events_seen": self.events_seen,
            "events_new": self.events_new,
            "events_updated": self.events_updated,
            "events_unchanged": self.events_unchanged,
            "events_forwarded": self.events_forwarded,
            "item_errors": [e.to_dict() for e in self.item_errors],
            "fatal": self.fatal,
            "stopped_reason": self.stopped_reason,
        }
