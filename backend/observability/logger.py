"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
from enum import Enum
from typing import Any, Callable, Mapping


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

# Event types dropped unless LOG_LEVEL is DEBUG
_DEBUG_EVENT_TYPES = frozenset({"METRIC_TIMER"})

_debug_enabled = True


def configure(log_level: str) -> None:
    """Apply the configured log level ("DEBUG" keeps timing metrics)."""
    global _debug_enabled  # pylint: disable=global-statement
    _debug_enabled = log_level.upper() == "DEBUG"


def _default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller is responsible for supplying a fully-formed event dict
    (ts_ms, event_type, status, ...).

    This function:
    - Serializes to JSON (enums by value)
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    if not _debug_enabled and event.get("event_type") in _DEBUG_EVENT_TYPES:
        return

    try:
        line = json.dumps(
            event, ensure_ascii=False, separators=(",", ":"), default=_default
        )
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
