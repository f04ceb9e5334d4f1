"""
Runtime execution tests.

Covers the imperative shell around the reducer:
- probe -> player -> ready signal round trip
- failures from collaborators become events, never exceptions
- detached events from a torn-down player
- status snapshot published once per change
- idempotent, failure-tolerant shutdown
"""

import asyncio
from typing import Any

from fakes import FakeBridge, FakePlayerFactory, FakeProbe, MemoryTelemetrySink

from constants import MSG_CONNECT_ERROR, MSG_NO_CONNECTION, MSG_RECONNECTED
from engine.enums.status import PlaybackStatus
from engine.events import EventType, ForceRestart, Play, Stop
from engine.retry import ReconnectPolicy
from engine.runtime import Runtime
from engine.runtime_context import RuntimeExecutionContext
from engine.state_dataclass import EngineState
from engine.status_snapshot import StatusSnapshot
from telemetry.reporter import TelemetryReporter


def build(
    *,
    reachable: bool = True,
    policy: ReconnectPolicy | None = None,
    bridge: FakeBridge | None = None,
    **player_kwargs: Any,
) -> dict[str, Any]:
    factory = FakePlayerFactory(**player_kwargs)
    probe = FakeProbe(reachable=reachable)
    bridge = bridge or FakeBridge()
    sink = MemoryTelemetrySink()
    published: list[StatusSnapshot] = []

    runtime = Runtime(
        initial_state=EngineState(
            stream_url="http://radio.test/stream",
            reconnect_policy=policy or ReconnectPolicy(),
        ),
        context=RuntimeExecutionContext(
            player_factory=factory,
            probe=probe,
            bridge=bridge,
            reporter=TelemetryReporter(sink, heartbeat_interval_s=3600),
            publish=published.append,
        ),
    )
    return {
        "runtime": runtime,
        "factory": factory,
        "probe": probe,
        "bridge": bridge,
        "sink": sink,
        "published": published,
    }


def play_event() -> Play:
    return Play(event_type=EventType.PLAY, ts_ms=1_000)


def test_play_round_trip_reaches_playing():
    async def scenario() -> None:
        env = build()
        runtime: Runtime = env["runtime"]

        await runtime.handle_event(play_event())
        await runtime.wait_idle()

        assert runtime.state.status is PlaybackStatus.PLAYING
        assert env["probe"].urls == ["http://radio.test/stream"]

        player = env["factory"].current
        assert player.url == "http://radio.test/stream"
        assert player.calls == ["set_volume", "stop", "set_url", "play"]

        assert runtime.wake_lock_held
        assert env["bridge"].acquired == 1

        statuses = [s.status for s in env["published"]]
        assert statuses == [PlaybackStatus.CONNECTING, PlaybackStatus.PLAYING]

        names = env["sink"].names()
        assert "play_requested" in names
        assert "session_started" in names
        assert "playback_started" in names

        await runtime.shutdown()

    asyncio.run(scenario())


def test_unreachable_probe_schedules_reconnect_without_player():
    async def scenario() -> None:
        env = build(reachable=False)
        runtime: Runtime = env["runtime"]

        await runtime.handle_event(play_event())
        await runtime.wait_idle()

        assert runtime.state.status is PlaybackStatus.ERROR
        assert runtime.state.error_message == MSG_NO_CONNECTION
        assert runtime.state.retry.connect_in_flight
        assert env["factory"].players == []

        await runtime.shutdown()

    asyncio.run(scenario())


def test_failed_play_command_becomes_an_event():
    async def scenario() -> None:
        env = build(fail_play=True)
        runtime: Runtime = env["runtime"]

        await runtime.handle_event(play_event())
        await runtime.wait_idle()

        assert runtime.state.status is PlaybackStatus.ERROR
        assert runtime.state.error_message == MSG_CONNECT_ERROR
        assert runtime.state.retry.consecutive_error_count == 1

        await runtime.shutdown()

    asyncio.run(scenario())


def test_reconnect_timer_recovers_the_stream():
    async def scenario() -> None:
        policy = ReconnectPolicy(
            initial_delay_ms=10,
            min_delay_ms=10,
            max_delay_ms=50,
            debounce_ms=0,
            success_cooldown_ms=0,
        )
        env = build(reachable=False, policy=policy)
        runtime: Runtime = env["runtime"]

        await runtime.handle_event(play_event())
        await runtime.wait_idle()
        assert runtime.state.status is PlaybackStatus.ERROR

        env["probe"].reachable = True
        await asyncio.sleep(0.1)
        await runtime.wait_idle()

        assert runtime.state.status is PlaybackStatus.PLAYING
        assert runtime.state.status_message == MSG_RECONNECTED
        assert "reconnect_succeeded" in env["sink"].names()

        await runtime.shutdown()

    asyncio.run(scenario())


def test_events_from_torn_down_player_are_detached():
    async def scenario() -> None:
        env = build()
        runtime: Runtime = env["runtime"]

        await runtime.handle_event(play_event())
        await runtime.wait_idle()
        old_player = env["factory"].current

        await runtime.handle_event(
            ForceRestart(event_type=EventType.FORCE_RESTART, ts_ms=2_000)
        )
        await runtime.wait_idle()

        assert old_player.disposed
        assert runtime.state.status is PlaybackStatus.RESTARTING

        await old_player.emit_ready()

        assert runtime.state.status is PlaybackStatus.RESTARTING

        await runtime.shutdown()

    asyncio.run(scenario())


def test_snapshot_is_published_once_per_change():
    async def scenario() -> None:
        env = build()
        runtime: Runtime = env["runtime"]

        await runtime.handle_event(Stop(event_type=EventType.STOP, ts_ms=0))
        await runtime.handle_event(Stop(event_type=EventType.STOP, ts_ms=10))

        # IDLE -> IDLE with nothing else changed publishes nothing
        assert env["published"] == []

        await runtime.shutdown()

    asyncio.run(scenario())


def test_concurrent_caller_returns_after_its_own_event():
    async def scenario() -> None:
        gate = asyncio.Event()
        env = build(bridge=FakeBridge(hold_acquire=gate))
        runtime: Runtime = env["runtime"]

        play_task = asyncio.create_task(runtime.handle_event(play_event()))
        while env["bridge"].acquired == 0:
            await asyncio.sleep(0)
        assert runtime.state.status is PlaybackStatus.CONNECTING

        # Play is still executing its commands; Stop has to queue behind it
        stop_task = asyncio.create_task(
            runtime.handle_event(Stop(event_type=EventType.STOP, ts_ms=1_100))
        )
        for _ in range(5):
            await asyncio.sleep(0)
        assert not stop_task.done()

        gate.set()
        await stop_task

        assert runtime.state.status is PlaybackStatus.IDLE
        assert runtime.snapshot.status is PlaybackStatus.IDLE
        await play_task
        await runtime.wait_idle()
        await runtime.shutdown()

    asyncio.run(scenario())


def test_shutdown_is_idempotent_and_tolerates_failures():
    async def scenario() -> None:
        env = build(bridge=FakeBridge(fail_release=True))
        runtime: Runtime = env["runtime"]

        await runtime.handle_event(play_event())
        await runtime.wait_idle()
        player = env["factory"].current

        await runtime.shutdown()
        await runtime.shutdown()

        assert runtime.is_shut_down
        assert not runtime.wake_lock_held
        assert env["bridge"].released == 1
        assert player.disposed
        assert env["sink"].names().count("session_ended") == 1

        # Events after shutdown are dropped
        before = runtime.state
        await runtime.handle_event(play_event())
        assert runtime.state is before

    asyncio.run(scenario())
