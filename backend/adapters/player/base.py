"""
Stream player adapter contract.

This module defines the *interface only*. No reconnection policy, no
timers and no engine decisions live in a player.

Key invariants:
- The player reports raw state transitions through the async emit_event
  callback it receives at construction: PlayerEvent for
  playing / paused / buffering / idle / completed (with an optional
  ProcessingState sub-state) and PlayerError for stream-level faults.
- Commands may raise; the runtime converts failures into
  PLAYER_COMMAND_FAILED events. A player never retries internally.
- After dispose() the player must not emit any further events.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from engine.enums.player_state import ProcessingState
from engine.events import Event, EventType, PlayerError, PlayerEvent


EmitEvent = Callable[[Event], Awaitable[None]]


class StreamPlayer(ABC):
    """
    Abstract interface for an underlying stream player.

    Implementations are responsible for:
    - Opening and playing a network audio stream
    - Reporting raw transitions via emit_event

    Non-responsibilities:
    - No buffering heuristics (the engine classifies buffering)
    - No retries or reconnects
    - No status publishing
    """

    def __init__(self, *, emit_event: EmitEvent) -> None:
        self._emit_event = emit_event
        self._disposed = False

    @abstractmethod
    async def set_url(self, url: str) -> None:
        """Select the stream source for the next play()."""
        raise NotImplementedError

    @abstractmethod
    async def play(self) -> None:
        """Start playing the selected source."""
        raise NotImplementedError

    @abstractmethod
    async def pause(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def set_volume(self, volume: float) -> None:
        """Apply a volume in [0.0, 1.0]."""
        raise NotImplementedError

    @abstractmethod
    async def dispose(self) -> None:
        """
        Release every resource held by the player.

        Must be idempotent.
        """
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Emission helpers
    # ------------------------------------------------------------------

    async def _emit_state(
        self,
        event_type: EventType,
        processing: ProcessingState | None = None,
    ) -> None:
        if self._disposed:
            return
        await self._emit_event(
            PlayerEvent(
                event_type=event_type,
                ts_ms=time.time_ns() // 1_000_000,
                processing=processing,
            )
        )

    async def _emit_error(self, reason: str) -> None:
        if self._disposed:
            return
        await self._emit_event(
            PlayerError(
                event_type=EventType.PLAYER_ERROR,
                ts_ms=time.time_ns() // 1_000_000,
                reason=reason,
            )
        )
