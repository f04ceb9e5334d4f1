"""
Session / telemetry reporter.

Responsibilities:
- Forward engine telemetry events to the sink, stamped with ts_ms and the
  open session id
- Track the single open listening session and flush it on close
- Run the periodic heartbeat while playback is live

Every sink call is wrapped: an unavailable sink is logged and otherwise
ignored, it never reaches the engine.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Callable

from constants import HEARTBEAT_INTERVAL_S
from observability.logger import log_event
from telemetry.sinks import TelemetrySink


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class TelemetryReporter:

    def __init__(
        self,
        sink: TelemetrySink,
        *,
        heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._sink = sink
        self._heartbeat_interval_s = heartbeat_interval_s
        self._clock = clock

        self._session_id: str | None = None
        self._session_start_ts_ms: int | None = None

        self._heartbeat: asyncio.Task[None] | None = None
        self._heartbeat_properties: Callable[[], dict[str, Any]] | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat is not None and not self._heartbeat.done()

    def continuous_minutes(self, now_ms: int | None = None) -> float:
        if self._session_start_ts_ms is None:
            return 0.0
        now = self._clock() if now_ms is None else now_ms
        return round(max(0, now - self._session_start_ts_ms) / 60_000, 2)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def emit(self, name: str, properties: dict[str, Any]) -> None:
        payload = {
            "ts_ms": self._clock(),
            "session_id": self._session_id,
            **properties,
        }
        try:
            self._sink.emit(name, payload)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": payload["ts_ms"],
                "event_type": "TELEMETRY_SINK_FAILED",
                "name": name,
                "error_type": type(exc).__name__,
                "error": str(exc),
            })

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def open_session(self, start_ts_ms: int) -> None:
        if self._session_id is not None:
            # Exactly one open session; a second open is a no-op
            return
        self._session_id = uuid.uuid4().hex
        self._session_start_ts_ms = start_ts_ms
        self.emit("session_started", {"start_ts_ms": start_ts_ms})

    def close_session(self, *, reason: str, ts_ms: int, total_reconnections: int) -> None:
        if self._session_id is None:
            return
        self.emit("session_ended", {
            "reason": reason,
            "start_ts_ms": self._session_start_ts_ms,
            "end_ts_ms": ts_ms,
            "continuous_minutes": self.continuous_minutes(ts_ms),
            "total_reconnections": total_reconnections,
        })
        self._session_id = None
        self._session_start_ts_ms = None

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def start_heartbeat(self, properties: Callable[[], dict[str, Any]]) -> None:
        """Start the heartbeat (idempotent; a running one keeps its schedule)."""
        self._heartbeat_properties = properties
        if self.heartbeat_running:
            return
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def stop_heartbeat(self) -> None:
        task = self._heartbeat
        self._heartbeat = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval_s)
            properties: dict[str, Any] = {}
            provider = self._heartbeat_properties
            if provider is not None:
                try:
                    properties = provider()
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    properties = {"properties_error": type(exc).__name__}
            self.emit("heartbeat", {
                **properties,
                "continuous_minutes": self.continuous_minutes(),
            })
