"""
Radio service.

The single, explicitly constructed owner of the stream engine. There is no
global instance: the host builds one (RadioService.create) and injects it
where it is needed.

Responsibilities:
- Resolve the stream URL once (remote config) before the first connect
- Wire runtime, player factory, probe, platform bridge, telemetry
  reporter and status channels together
- Expose the host-facing API (play / pause / stop / toggle / restart /
  volume / foreground content / platform signals)
- Dispose everything exactly once

Contains no engine logic: every call becomes an event for the runtime.
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Any

import httpx

from adapters.audio_focus.bridge import AudioFocusBridge
from adapters.audio_focus.wake_lock import SystemdInhibitWakeLock
from adapters.player.ffplay import FFplayPlayer
from adapters.player.simulated import SimulatedPlayer
from adapters.probe.connectivity import HttpConnectivityProbe
from config import AppConfig
from engine.buffer_health import BufferPolicy
from engine.enums.status import PlaybackStatus
from engine.events import (
    Event,
    EventType,
    ForceRestart,
    Pause,
    PauseForForegroundContent,
    Play,
    ResumeAfterForegroundContent,
    SetVolume,
    Stop,
)
from engine.retry import ReconnectPolicy
from engine.runtime import Runtime
from engine.runtime_context import (
    ConnectivityProbeProtocol,
    EventSink,
    PlayerFactory,
    PlayerProtocol,
    RuntimeExecutionContext,
)
from engine.state_dataclass import EngineState
from engine.status_snapshot import StatusSnapshot, diagnostics_of, snapshot_of
from observability.logger import log_event
from service.remote_config import resolve_stream_url
from service.status_channels import StatusChannels
from telemetry.reporter import TelemetryReporter
from telemetry.sinks import LogTelemetrySink, TelemetrySink


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# ---------------------------------------------------------------------
# Collaborator builders
# ---------------------------------------------------------------------

def build_player_factory(config: AppConfig) -> PlayerFactory:
    """Select the player backend named by PLAYER_BACKEND."""
    backend = config.player_backend.lower()

    if backend == "ffplay":
        def _ffplay(emit_event: EventSink) -> PlayerProtocol:
            return FFplayPlayer(emit_event=emit_event, binary=config.ffplay_binary)
        return _ffplay

    if backend == "simulated":
        def _simulated(emit_event: EventSink) -> PlayerProtocol:
            return SimulatedPlayer(emit_event=emit_event)
        return _simulated

    raise ValueError(f"Unknown PLAYER_BACKEND: {config.player_backend!r}")


def build_bridge() -> AudioFocusBridge:
    """Bridge with a wake lock when the host offers one."""
    if SystemdInhibitWakeLock.available():
        return AudioFocusBridge(wake_lock=SystemdInhibitWakeLock())
    return AudioFocusBridge()


def reconnect_policy_from(config: AppConfig) -> ReconnectPolicy:
    return ReconnectPolicy(
        max_retries=config.max_retries,
        restart_threshold=config.restart_threshold,
        terminal_max_attempts=config.terminal_max_attempts,
    )


# ---------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------

class RadioService:
    """
    Host-facing facade over the stream engine.

    Usage:
        async with await RadioService.create(config) as radio:
            await radio.play()
    """

    def __init__(
        self,
        *,
        stream_url: str,
        player_factory: PlayerFactory,
        probe: ConnectivityProbeProtocol,
        bridge: AudioFocusBridge,
        reporter: TelemetryReporter,
        reconnect_policy: ReconnectPolicy | None = None,
        buffer_policy: BufferPolicy | None = None,
        volume: float | None = None,
    ) -> None:
        initial_state = EngineState(
            stream_url=stream_url,
            reconnect_policy=reconnect_policy or ReconnectPolicy(),
            buffer_policy=buffer_policy or BufferPolicy(),
        )
        if volume is not None:
            initial_state = replace(initial_state, volume=max(0.0, min(1.0, volume)))

        self.channels = StatusChannels(snapshot_of(initial_state))
        self.bridge = bridge
        self.reporter = reporter

        self._runtime = Runtime(
            initial_state=initial_state,
            context=RuntimeExecutionContext(
                player_factory=player_factory,
                probe=probe,
                bridge=bridge,
                reporter=reporter,
                publish=self.channels.publish,
            ),
        )
        self.bridge.bind(self._runtime.handle_event)
        self._disposed = False

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "RADIO_SERVICE_CREATED",
            "stream_url": stream_url,
            "wake_lock": bridge.capability.value,
        })

    @classmethod
    async def create(
        cls,
        config: AppConfig,
        *,
        player_factory: PlayerFactory | None = None,
        probe: ConnectivityProbeProtocol | None = None,
        bridge: AudioFocusBridge | None = None,
        sink: TelemetrySink | None = None,
        http_client: httpx.AsyncClient | None = None,
        buffer_policy: BufferPolicy | None = None,
    ) -> RadioService:
        """
        Build a service from configuration.

        The stream URL is resolved here, once, before anything can connect.
        """
        stream_url = await resolve_stream_url(
            config.remote_config_url, config.stream_url, client=http_client
        )
        return cls(
            stream_url=stream_url,
            player_factory=player_factory or build_player_factory(config),
            probe=probe or HttpConnectivityProbe(client=http_client),
            bridge=bridge or build_bridge(),
            reporter=TelemetryReporter(sink or LogTelemetrySink()),
            reconnect_policy=reconnect_policy_from(config),
            buffer_policy=buffer_policy,
        )

    async def __aenter__(self) -> RadioService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def runtime(self) -> Runtime:
        return self._runtime

    @property
    def state(self) -> EngineState:
        return self._runtime.state

    @property
    def snapshot(self) -> StatusSnapshot:
        return self._runtime.snapshot

    @property
    def disposed(self) -> bool:
        return self._disposed

    def diagnostics(self) -> dict[str, Any]:
        return {
            **diagnostics_of(self._runtime.state),
            "wake_lock": {
                "capability": self.bridge.capability.value,
                "held": self._runtime.wake_lock_held,
            },
            "telemetry_session_id": self.reporter.session_id,
        }

    # ------------------------------------------------------------------
    # Host commands
    # ------------------------------------------------------------------

    async def play(self) -> None:
        await self._send(Play(event_type=EventType.PLAY, ts_ms=_now_ms()))

    async def pause(self) -> None:
        await self._send(Pause(event_type=EventType.PAUSE, ts_ms=_now_ms()))

    async def stop(self) -> None:
        await self._send(Stop(event_type=EventType.STOP, ts_ms=_now_ms()))

    async def toggle_playback(self) -> None:
        """Pause when playing or trying to play, otherwise play."""
        state = self._runtime.state
        if state.status in (PlaybackStatus.PAUSED, PlaybackStatus.IDLE) or state.retry.terminal:
            await self.play()
        else:
            await self.pause()

    async def force_restart(self) -> None:
        await self._send(ForceRestart(event_type=EventType.FORCE_RESTART, ts_ms=_now_ms()))

    async def set_volume(self, volume: float) -> None:
        await self._send(
            SetVolume(event_type=EventType.SET_VOLUME, ts_ms=_now_ms(), volume=volume)
        )

    async def pause_for_foreground_content(self) -> None:
        await self._send(
            PauseForForegroundContent(
                event_type=EventType.PAUSE_FOR_FOREGROUND, ts_ms=_now_ms()
            )
        )

    async def resume_after_foreground_content(self) -> None:
        await self._send(
            ResumeAfterForegroundContent(
                event_type=EventType.RESUME_AFTER_FOREGROUND, ts_ms=_now_ms()
            )
        )

    # ------------------------------------------------------------------
    # Platform signals
    # ------------------------------------------------------------------

    async def on_interruption_begin(self) -> None:
        if not self._disposed:
            await self.bridge.on_interruption_begin()

    async def on_interruption_end(self, resumable: bool) -> None:
        if not self._disposed:
            await self.bridge.on_interruption_end(resumable)

    async def on_becoming_noisy(self) -> None:
        if not self._disposed:
            await self.bridge.on_becoming_noisy()

    async def on_app_backgrounded(self) -> None:
        if not self._disposed:
            await self.bridge.on_app_backgrounded()

    async def on_app_foregrounded(self) -> None:
        if not self._disposed:
            await self.bridge.on_app_foregrounded()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def dispose(self) -> None:
        """
        Tear everything down; safe to call any number of times.

        Channels are closed even if the runtime shutdown fails.
        """
        if self._disposed:
            return
        self._disposed = True
        try:
            await self._runtime.shutdown()
        finally:
            closed = self.channels.close_all()
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "RADIO_SERVICE_DISPOSED",
                "channels_closed": closed,
            })

    async def _send(self, event: Event) -> None:
        if self._disposed:
            log_event({
                "ts_ms": event.ts_ms,
                "event_type": "COMMAND_AFTER_DISPOSE",
                "command": event.event_type.value,
            })
            return
        await self._runtime.handle_event(event)
