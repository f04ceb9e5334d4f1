"""
In-process simulated player.

Used when no audio output is available (PLAYER_BACKEND=simulated), e.g. on
headless hosts or in demos of the control surface. It never touches the
network: play() reports LOADING and then READY after a short delay.
"""

from __future__ import annotations

import asyncio

from adapters.player.base import EmitEvent, StreamPlayer
from engine.enums.player_state import ProcessingState
from engine.events import EventType
from errors import PlayerCommandError


class SimulatedPlayer(StreamPlayer):

    def __init__(self, *, emit_event: EmitEvent, ready_delay_s: float = 0.3) -> None:
        super().__init__(emit_event=emit_event)
        self._ready_delay_s = ready_delay_s
        self._url: str | None = None
        self._volume = 1.0
        self._playing = False
        self._ready_task: asyncio.Task[None] | None = None

    @property
    def volume(self) -> float:
        return self._volume

    async def set_url(self, url: str) -> None:
        self._url = url

    async def play(self) -> None:
        if self._disposed:
            raise PlayerCommandError("play", "player disposed")
        if self._url is None:
            raise PlayerCommandError("play", "no source selected")
        if self._playing:
            return
        self._playing = True
        await self._emit_state(EventType.PLAYER_PLAYING, ProcessingState.LOADING)
        self._ready_task = asyncio.create_task(self._become_ready())

    async def pause(self) -> None:
        if self._halt():
            await self._emit_state(EventType.PLAYER_PAUSED)

    async def stop(self) -> None:
        self._halt()

    async def set_volume(self, volume: float) -> None:
        self._volume = max(0.0, min(1.0, volume))

    async def dispose(self) -> None:
        self._halt()
        self._disposed = True

    def _halt(self) -> bool:
        was_playing = self._playing
        self._playing = False
        if self._ready_task is not None and self._ready_task is not asyncio.current_task():
            self._ready_task.cancel()
        self._ready_task = None
        return was_playing

    async def _become_ready(self) -> None:
        await asyncio.sleep(self._ready_delay_s)
        if self._playing:
            await self._emit_state(EventType.PLAYER_PLAYING, ProcessingState.READY)
