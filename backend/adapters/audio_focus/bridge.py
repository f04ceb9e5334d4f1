"""
Platform audio-focus bridge.

Responsibilities:
- Translates platform signals (interruption begin/end, becoming noisy,
  app lifecycle) into engine events
- Offers best-effort wake-lock acquire/release

Wake-lock support is capability-optional. A bridge without a backend is in
the WakeLockCapability.ABSENT state: calls log once and return False, they
never raise.
"""

from __future__ import annotations

import time
from enum import Enum

from adapters.audio_focus.wake_lock import WakeLockBackend
from engine.events import (
    AppBackgrounded,
    AppForegrounded,
    BecomingNoisy,
    Event,
    EventType,
    InterruptionBegan,
    InterruptionEnded,
)
from engine.runtime_context import EventSink
from observability.logger import log_event


class WakeLockCapability(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class AudioFocusBridge:
    """
    Platform bridge consumed by the engine.

    emit_event is bound after construction (the runtime that receives the
    events is created later by the service).
    """

    def __init__(self, *, wake_lock: WakeLockBackend | None = None) -> None:
        self._wake_lock = wake_lock
        self._emit_event: EventSink | None = None
        self._absence_logged = False

    @property
    def capability(self) -> WakeLockCapability:
        if self._wake_lock is None:
            return WakeLockCapability.ABSENT
        return WakeLockCapability.PRESENT

    def bind(self, emit_event: EventSink) -> None:
        self._emit_event = emit_event

    # ------------------------------------------------------------------
    # Platform signals -> engine events
    # ------------------------------------------------------------------

    async def on_interruption_begin(self) -> None:
        await self._emit(
            InterruptionBegan(event_type=EventType.INTERRUPTION_BEGAN, ts_ms=_now_ms())
        )

    async def on_interruption_end(self, resumable: bool) -> None:
        await self._emit(
            InterruptionEnded(
                event_type=EventType.INTERRUPTION_ENDED,
                ts_ms=_now_ms(),
                resumable=resumable,
            )
        )

    async def on_becoming_noisy(self) -> None:
        await self._emit(
            BecomingNoisy(event_type=EventType.BECOMING_NOISY, ts_ms=_now_ms())
        )

    async def on_app_backgrounded(self) -> None:
        await self._emit(
            AppBackgrounded(event_type=EventType.APP_BACKGROUNDED, ts_ms=_now_ms())
        )

    async def on_app_foregrounded(self) -> None:
        await self._emit(
            AppForegrounded(event_type=EventType.APP_FOREGROUNDED, ts_ms=_now_ms())
        )

    async def _emit(self, event: Event) -> None:
        if self._emit_event is None:
            log_event({
                "ts_ms": event.ts_ms,
                "event_type": "PLATFORM_SIGNAL_UNBOUND",
                "signal": event.event_type.value,
            })
            return
        await self._emit_event(event)

    # ------------------------------------------------------------------
    # Wake lock
    # ------------------------------------------------------------------

    async def acquire_wake_lock(self) -> bool:
        if self._wake_lock is None:
            self._log_absent()
            return False
        return await self._wake_lock.acquire()

    async def release_wake_lock(self) -> bool:
        if self._wake_lock is None:
            return False
        return await self._wake_lock.release()

    def _log_absent(self) -> None:
        if self._absence_logged:
            return
        self._absence_logged = True
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "WAKE_LOCK_UNAVAILABLE",
            "capability": WakeLockCapability.ABSENT.value,
        })
