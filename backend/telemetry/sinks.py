"""
Telemetry sinks.

A sink receives (event_name, properties) pairs, fire-and-forget. Sinks may
raise; the reporter swallows and logs their failures.
"""

from __future__ import annotations

from typing import Any, Protocol

from observability.logger import log_event


class TelemetrySink(Protocol):
    def emit(self, name: str, properties: dict[str, Any]) -> None: ...


class LogTelemetrySink:
    """Writes telemetry into the JSONL log stream."""

    def emit(self, name: str, properties: dict[str, Any]) -> None:
        log_event({
            "ts_ms": properties.get("ts_ms"),
            "event_type": "TELEMETRY",
            "name": name,
            "properties": properties,
        })

