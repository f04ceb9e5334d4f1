# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
"""
In-memory collaborators for runtime / service / route tests.

Nothing here touches the network, subprocesses or the sound card.
"""

from __future__ import annotations

import asyncio
from typing import Any

from engine.enums.player_state import ProcessingState
from engine.events import EventType, PlayerEvent
from engine.runtime_context import EventSink, ProbeResult
from errors import PlayerCommandError


class FakePlayer:
    """Records every call; reports READY on play() unless told otherwise."""

    def __init__(
        self,
        emit_event: EventSink,
        *,
        ready_on_play: bool = True,
        fail_play: bool = False,
    ) -> None:
        self.emit_event = emit_event
        self.ready_on_play = ready_on_play
        self.fail_play = fail_play
        self.calls: list[str] = []
        self.url: str | None = None
        self.volume: float | None = None
        self.disposed = False

    async def set_url(self, url: str) -> None:
        self.calls.append("set_url")
        self.url = url

    async def play(self) -> None:
        self.calls.append("play")
        if self.fail_play:
            raise PlayerCommandError("play", "device busy")
        if self.ready_on_play:
            await self.emit_ready()

    async def pause(self) -> None:
        self.calls.append("pause")

    async def stop(self) -> None:
        self.calls.append("stop")

    async def set_volume(self, volume: float) -> None:
        self.calls.append("set_volume")
        self.volume = volume

    async def dispose(self) -> None:
        self.calls.append("dispose")
        self.disposed = True

    async def emit_ready(self) -> None:
        await self.emit_event(
            PlayerEvent(
                event_type=EventType.PLAYER_PLAYING,
                ts_ms=0,
                processing=ProcessingState.READY,
            )
        )

    async def emit_buffering(self) -> None:
        await self.emit_event(
            PlayerEvent(event_type=EventType.PLAYER_BUFFERING, ts_ms=0)
        )


class FakePlayerFactory:
    """Player factory that keeps every player it built."""

    def __init__(self, **player_kwargs: Any) -> None:
        self.player_kwargs = player_kwargs
        self.players: list[FakePlayer] = []

    def __call__(self, emit_event: EventSink) -> FakePlayer:
        player = FakePlayer(emit_event, **self.player_kwargs)
        self.players.append(player)
        return player

    @property
    def current(self) -> FakePlayer:
        return self.players[-1]


class FakeProbe:
    def __init__(self, reachable: bool = True) -> None:
        self.reachable = reachable
        self.urls: list[str] = []

    async def check(self, url: str, *, timeout_s: float) -> ProbeResult:
        self.urls.append(url)
        return ProbeResult(reachable=self.reachable, detail="fake")


class FakeBridge:
    """Platform bridge with a wake lock that can be made to fail."""

    def __init__(
        self,
        *,
        fail_release: bool = False,
        hold_acquire: asyncio.Event | None = None,
    ) -> None:
        self.fail_release = fail_release
        self.hold_acquire = hold_acquire
        self.acquired = 0
        self.released = 0

    async def acquire_wake_lock(self) -> bool:
        self.acquired += 1
        if self.hold_acquire is not None:
            await self.hold_acquire.wait()
        return True

    async def release_wake_lock(self) -> bool:
        self.released += 1
        if self.fail_release:
            raise RuntimeError("wake lock service gone")
        return True


class FakeWakeLock:
    def __init__(self) -> None:
        self.acquired = 0
        self.released = 0

    async def acquire(self) -> bool:
        self.acquired += 1
        return True

    async def release(self) -> bool:
        self.released += 1
        return True


class MemoryTelemetrySink:
    """Keeps every emitted telemetry event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, name: str, properties: dict[str, Any]) -> None:
        self.events.append((name, dict(properties)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]
