# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any

import httpx
import pytest
from fakes import FakePlayerFactory, FakeProbe, FakeWakeLock, MemoryTelemetrySink

from adapters.audio_focus.bridge import AudioFocusBridge, WakeLockCapability
from config import AppConfig
from engine.enums.status import PlaybackStatus
from service.radio_service import RadioService, build_player_factory
from telemetry.reporter import TelemetryReporter


def make_config(**overrides: Any) -> AppConfig:
    values: dict[str, Any] = {
        "env": "test",
        "log_level": "INFO",
        "stream_url": "http://default.test/stream",
        "remote_config_url": None,
        "player_backend": "simulated",
        "ffplay_binary": "ffplay",
        "max_retries": 5,
        "restart_threshold": 3,
        "terminal_max_attempts": 50,
        "host": "127.0.0.1",
        "port": 8000,
    }
    values.update(overrides)
    return AppConfig(**values)


def make_service(wake_lock: FakeWakeLock | None = None) -> tuple[RadioService, MemoryTelemetrySink]:
    sink = MemoryTelemetrySink()
    service = RadioService(
        stream_url="http://radio.test/stream",
        player_factory=FakePlayerFactory(),
        probe=FakeProbe(),
        bridge=AudioFocusBridge(wake_lock=wake_lock),
        reporter=TelemetryReporter(sink, heartbeat_interval_s=3600),
        volume=0.5,
    )
    return service, sink


def test_play_publishes_status_channels():
    async def scenario() -> None:
        wake_lock = FakeWakeLock()
        service, _ = make_service(wake_lock)

        await service.play()
        await service.runtime.wait_idle()

        assert service.channels.status.value == "PLAYING"
        assert service.channels.is_playing.value is True
        assert service.channels.volume.value == 0.5
        assert wake_lock.acquired == 1

        await service.dispose()

    asyncio.run(scenario())


def test_toggle_playback():
    async def scenario() -> None:
        service, _ = make_service()

        await service.toggle_playback()
        await service.runtime.wait_idle()
        assert service.state.status is PlaybackStatus.PLAYING

        await service.toggle_playback()
        assert service.state.status is PlaybackStatus.PAUSED

        await service.toggle_playback()
        await service.runtime.wait_idle()
        assert service.state.status is PlaybackStatus.PLAYING

        await service.dispose()

    asyncio.run(scenario())


def test_platform_signals_go_through_the_bridge():
    async def scenario() -> None:
        service, _ = make_service()
        await service.play()
        await service.runtime.wait_idle()

        await service.on_interruption_begin()
        assert service.state.status is PlaybackStatus.PAUSED
        assert service.state.interrupted

        await service.on_interruption_end(True)
        await service.runtime.wait_idle()
        assert service.state.status is PlaybackStatus.PLAYING

        await service.on_app_backgrounded()
        assert service.state.backgrounded
        await service.on_app_foregrounded()
        assert not service.state.backgrounded

        await service.dispose()

    asyncio.run(scenario())


def test_dispose_is_idempotent_and_releases_everything():
    async def scenario() -> None:
        wake_lock = FakeWakeLock()
        service, sink = make_service(wake_lock)
        subscription = service.channels.snapshot.subscribe()

        await service.play()
        await service.runtime.wait_idle()

        await service.dispose()
        await service.dispose()

        assert service.disposed
        assert all(channel.closed for channel in service.channels.all())
        assert wake_lock.released == 1
        assert sink.names().count("session_ended") == 1
        assert not service.reporter.heartbeat_running

        # The subscriber still gets the last value, then the stream ends
        received = [snapshot async for snapshot in subscription]
        assert received[-1].status is PlaybackStatus.PLAYING

        # Commands after dispose are ignored
        await service.play()
        await service.on_becoming_noisy()
        assert service.state.status is PlaybackStatus.PLAYING

    asyncio.run(scenario())


def test_missing_wake_lock_is_reported_not_raised():
    async def scenario() -> None:
        service, _ = make_service(wake_lock=None)
        assert service.bridge.capability is WakeLockCapability.ABSENT

        await service.play()
        await service.runtime.wait_idle()

        assert service.state.status is PlaybackStatus.PLAYING
        assert not service.runtime.wake_lock_held
        assert service.diagnostics()["wake_lock"] == {"capability": "ABSENT", "held": False}

        await service.dispose()

    asyncio.run(scenario())


def test_create_resolves_remote_stream_url():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/config.json"
        return httpx.Response(200, json={"stream_url": "http://remote.test/live"})

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            service = await RadioService.create(
                make_config(remote_config_url="http://config.test/config.json"),
                player_factory=FakePlayerFactory(),
                probe=FakeProbe(),
                bridge=AudioFocusBridge(),
                sink=MemoryTelemetrySink(),
                http_client=client,
            )
            async with service:
                assert service.state.stream_url == "http://remote.test/live"
                assert service.state.reconnect_policy.max_retries == 5
            assert service.disposed

    asyncio.run(scenario())


def test_unknown_player_backend_is_rejected():
    with pytest.raises(ValueError, match="vlc"):
        build_player_factory(make_config(player_backend="vlc"))
