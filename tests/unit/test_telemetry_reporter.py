# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any

import pytest
from fakes import MemoryTelemetrySink

import telemetry.reporter as reporter_mod
from telemetry.reporter import TelemetryReporter


class BrokenSink:
    def emit(self, name: str, properties: dict[str, Any]) -> None:
        raise ConnectionError("collector down")


def test_events_are_stamped_with_session_id():
    sink = MemoryTelemetrySink()
    reporter = TelemetryReporter(sink, clock=lambda: 1_000)

    reporter.emit("before_session", {})
    reporter.open_session(1_000)
    reporter.emit("inside_session", {"x": 1})

    (_, before), (_, started), (_, inside) = sink.events
    assert before["session_id"] is None
    assert started["session_id"] == reporter.session_id
    assert inside == {"ts_ms": 1_000, "session_id": reporter.session_id, "x": 1}


def test_single_open_session_and_flush_on_close():
    sink = MemoryTelemetrySink()
    reporter = TelemetryReporter(sink, clock=lambda: 0)

    reporter.open_session(0)
    first_id = reporter.session_id
    reporter.open_session(5_000)
    assert reporter.session_id == first_id

    reporter.close_session(reason="user_stop", ts_ms=180_000, total_reconnections=2)
    reporter.close_session(reason="user_stop", ts_ms=190_000, total_reconnections=2)

    assert sink.names() == ["session_started", "session_ended"]
    ended = sink.events[-1][1]
    assert ended["continuous_minutes"] == 3.0
    assert ended["total_reconnections"] == 2
    assert reporter.session_id is None


def test_sink_failure_is_logged_not_raised(monkeypatch: pytest.MonkeyPatch):
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(reporter_mod, "log_event", logged.append)

    TelemetryReporter(BrokenSink()).emit("anything", {})

    assert logged[0]["event_type"] == "TELEMETRY_SINK_FAILED"
    assert logged[0]["error_type"] == "ConnectionError"


def test_heartbeat_runs_until_stopped():
    async def scenario() -> MemoryTelemetrySink:
        sink = MemoryTelemetrySink()
        reporter = TelemetryReporter(sink, heartbeat_interval_s=0.01)

        reporter.start_heartbeat(lambda: {"status": "PLAYING"})
        reporter.start_heartbeat(lambda: {"status": "PLAYING"})
        await asyncio.sleep(0.05)
        await reporter.stop_heartbeat()
        await reporter.stop_heartbeat()

        assert not reporter.heartbeat_running
        count = sink.names().count("heartbeat")
        await asyncio.sleep(0.03)
        assert sink.names().count("heartbeat") == count
        return sink

    sink = asyncio.run(scenario())

    heartbeats = [props for name, props in sink.events if name == "heartbeat"]
    assert heartbeats
    assert all(props["status"] == "PLAYING" for props in heartbeats)
