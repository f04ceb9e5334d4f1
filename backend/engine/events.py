"""
Unified event definitions for the stream engine reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Timer events and probe results carry the connect run_id that was current
when they were requested, so the reducer can drop stale deliveries.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from engine.enums.player_state import ProcessingState
from engine.enums.probe_purpose import ProbePurpose


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (status, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Underlying player
    # ------------------------------------------------------------------
    PLAYER_PLAYING = "PLAYER_PLAYING"
    PLAYER_PAUSED = "PLAYER_PAUSED"
    PLAYER_BUFFERING = "PLAYER_BUFFERING"
    PLAYER_IDLE = "PLAYER_IDLE"
    PLAYER_COMPLETED = "PLAYER_COMPLETED"
    PLAYER_ERROR = "PLAYER_ERROR"
    PLAYER_COMMAND_FAILED = "PLAYER_COMMAND_FAILED"

    # ------------------------------------------------------------------
    # Host / user commands
    # ------------------------------------------------------------------
    PLAY = "PLAY"
    PAUSE = "PAUSE"
    STOP = "STOP"
    FORCE_RESTART = "FORCE_RESTART"
    SET_VOLUME = "SET_VOLUME"
    PAUSE_FOR_FOREGROUND = "PAUSE_FOR_FOREGROUND"
    RESUME_AFTER_FOREGROUND = "RESUME_AFTER_FOREGROUND"

    # ------------------------------------------------------------------
    # Platform audio focus / lifecycle
    # ------------------------------------------------------------------
    INTERRUPTION_BEGAN = "INTERRUPTION_BEGAN"
    INTERRUPTION_ENDED = "INTERRUPTION_ENDED"
    BECOMING_NOISY = "BECOMING_NOISY"
    APP_BACKGROUNDED = "APP_BACKGROUNDED"
    APP_FOREGROUNDED = "APP_FOREGROUNDED"

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------
    CONNECTIVITY_PROBED = "CONNECTIVITY_PROBED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    RECONNECT_DUE = "RECONNECT_DUE"
    RECONNECT_REEVALUATE = "RECONNECT_REEVALUATE"
    CONNECT_TIMEOUT = "CONNECT_TIMEOUT"
    BUFFER_CHECK_TICK = "BUFFER_CHECK_TICK"
    BUFFER_TIMEOUT = "BUFFER_TIMEOUT"
    RESTART_TEARDOWN_ELAPSED = "RESTART_TEARDOWN_ELAPSED"
    FOREGROUND_SETTLED = "FOREGROUND_SETTLED"
    LIVENESS_DUE = "LIVENESS_DUE"
    BACKGROUND_LIMIT_REACHED = "BACKGROUND_LIMIT_REACHED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Player Events
# =============================================================================

@dataclass(frozen=True)
class PlayerEvent(Event):
    """
    Raw state transition reported by the underlying player.

    processing is the optional sub-state; PLAYER_PLAYING with
    processing READY (or None, for players without sub-states)
    is the "ready" signal.
    """
    processing: ProcessingState | None = None


@dataclass(frozen=True)
class PlayerError(Event):
    """Player reported a stream-level fault through its event channel."""
    reason: str


@dataclass(frozen=True)
class PlayerCommandFailed(Event):
    """
    A player command raised or timed out.

    Emitted by the runtime, never by the player itself.
    """
    run_id: int
    command: str
    reason: str


# =============================================================================
# Host / User Commands
# =============================================================================

@dataclass(frozen=True)
class Play(Event):
    """User pressed play (also the only exit from terminal exhaustion)."""


@dataclass(frozen=True)
class Pause(Event):
    """User paused playback."""


@dataclass(frozen=True)
class Stop(Event):
    """User stopped playback."""


@dataclass(frozen=True)
class ForceRestart(Event):
    """Host requested a full player restart."""


@dataclass(frozen=True)
class SetVolume(Event):
    """Host changed the output volume."""
    volume: float


@dataclass(frozen=True)
class PauseForForegroundContent(Event):
    """Host paused the stream to play other audio (e.g. article narration)."""


@dataclass(frozen=True)
class ResumeAfterForegroundContent(Event):
    """Host finished its own audio; the stream may resume."""


# =============================================================================
# Platform Events
# =============================================================================

@dataclass(frozen=True)
class InterruptionBegan(Event):
    """OS audio session interruption started (call, alarm, other app)."""


@dataclass(frozen=True)
class InterruptionEnded(Event):
    """OS audio session interruption ended."""
    resumable: bool


@dataclass(frozen=True)
class BecomingNoisy(Event):
    """Audio output is about to switch to the speaker (headphones unplugged)."""


@dataclass(frozen=True)
class AppBackgrounded(Event):
    """Host application moved to the background."""


@dataclass(frozen=True)
class AppForegrounded(Event):
    """Host application returned to the foreground."""


# =============================================================================
# Connectivity
# =============================================================================

@dataclass(frozen=True)
class ConnectivityProbed(Event):
    """Result of a connectivity probe against the stream endpoint."""
    run_id: int
    purpose: ProbePurpose
    reachable: bool
    detail: str | None = None


# =============================================================================
# Timer Events
# =============================================================================

@dataclass(frozen=True)
class TimerEvent(Event):
    """
    Base class for timer expiries.

    run_id is the connect run captured when the timer was armed.
    """
    run_id: int = 0


@dataclass(frozen=True)
class ReconnectDue(TimerEvent):
    """Backoff delay elapsed; perform the reconnect attempt."""


@dataclass(frozen=True)
class ReconnectReevaluate(TimerEvent):
    """Debounce / cooldown window elapsed; re-run scheduling."""


@dataclass(frozen=True)
class ConnectTimeout(TimerEvent):
    """No ready signal arrived within the connect timeout."""


@dataclass(frozen=True)
class BufferCheckTick(TimerEvent):
    """Progressive buffering check interval elapsed."""


@dataclass(frozen=True)
class BufferTimeout(TimerEvent):
    """Adaptive buffering timeout elapsed."""


@dataclass(frozen=True)
class RestartTeardownElapsed(TimerEvent):
    """Pause after player teardown elapsed; reinitialize now."""


@dataclass(frozen=True)
class ForegroundSettled(TimerEvent):
    """Settle delay after foreground content elapsed."""


@dataclass(frozen=True)
class LivenessDue(TimerEvent):
    """Periodic liveness probe is due."""


@dataclass(frozen=True)
class BackgroundLimitReached(TimerEvent):
    """App stayed in the background without playback past the limit."""
