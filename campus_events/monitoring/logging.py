"""Structured logging with context injection.

Features:
- single console handler on the root logger
- JSON logs optional (for log shippers), text otherwise
- run context (run_id/source_id/stage) passed through `extra=`
- structured `payload` dict (the run summary) rendered with the message
"""

from __future__ import annotations

import json
import logging
import sys
import time
from typing import Any

# record attribute -> label used by the text formatter
CONTEXT_KEYS = {"run_id": "run", "source_id": "source", "stage": "stage"}

_HANDLER_MARK = "_campus_events"


def _payload(record: logging.LogRecord) -> dict[str, Any] | None:
    payload = getattr(record, "payload", None)
    return payload if isinstance(payload, dict) else None


# ---------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        doc: dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        doc.update({k: getattr(record, k) for k in CONTEXT_KEYS if hasattr(record, k)})

        payload = _payload(record)
        if payload is not None:
            doc["payload"] = payload
        if record.exc_info:
            doc["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(doc, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """`<time> LEVEL logger [run=.. source=.. stage=..] message {payload}`"""

    def format(self, record: logging.LogRecord) -> str:
        ctx = " ".join(
            f"{label}={getattr(record, key)}"
            for key, label in CONTEXT_KEYS.items()
            if getattr(record, key, None)
        )

        line = f"{self.formatTime(record)} {record.levelname} {record.name}"
        if ctx:
            line += f" [{ctx}]"
        line += f" {record.getMessage()}"

        payload = _payload(record)
        if payload is not None:
            line += " " + json.dumps(payload, ensure_ascii=False, default=str)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ---------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------


def configure_logging(level: str | int = "INFO", json_logs: bool = False) -> logging.Logger:
    """
    Install a single console handler on the root logger.

    Safe to call more than once: a handler installed by an earlier call is
    replaced, not duplicated.
    """
    root = logging.getLogger()
    root.setLevel(level if isinstance(level, int) else level.upper())

    for existing in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_logs else TextFormatter())
    setattr(handler, _HANDLER_MARK, True)
    root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return root
