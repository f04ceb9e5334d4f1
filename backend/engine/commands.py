"""
Side-effect command definitions for the stream engine.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from engine.enums.probe_purpose import ProbePurpose
from engine.events import EventType

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Player
    PLAYER_PLAY = "PLAYER_PLAY"
    PLAYER_PAUSE = "PLAYER_PAUSE"
    PLAYER_STOP = "PLAYER_STOP"
    PLAYER_SET_VOLUME = "PLAYER_SET_VOLUME"
    PLAYER_TEARDOWN = "PLAYER_TEARDOWN"
    PLAYER_REINITIALIZE = "PLAYER_REINITIALIZE"

    # Connectivity
    PROBE_CONNECTIVITY = "PROBE_CONNECTIVITY"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Platform
    ACQUIRE_WAKE_LOCK = "ACQUIRE_WAKE_LOCK"
    RELEASE_WAKE_LOCK = "RELEASE_WAKE_LOCK"

    # Session / telemetry
    OPEN_SESSION = "OPEN_SESSION"
    CLOSE_SESSION = "CLOSE_SESSION"
    START_HEARTBEAT = "START_HEARTBEAT"
    STOP_HEARTBEAT = "STOP_HEARTBEAT"
    EMIT_TELEMETRY = "EMIT_TELEMETRY"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Player Commands
# =============================================================================

@dataclass(frozen=True)
class PlayerPlay(Command):
    """
    Start (or restart) the stream.

    stop_first: stop the current source before playing
    settle_ms: pause between stop and play
    """
    run_id: int
    url: str
    stop_first: bool = False
    settle_ms: int = 0
    command_type: CommandType = CommandType.PLAYER_PLAY


@dataclass(frozen=True)
class PlayerPause(Command):
    """Pause the underlying player."""
    command_type: CommandType = CommandType.PLAYER_PAUSE


@dataclass(frozen=True)
class PlayerStop(Command):
    """Stop the underlying player."""
    command_type: CommandType = CommandType.PLAYER_STOP


@dataclass(frozen=True)
class PlayerSetVolume(Command):
    """Apply a (pre-clamped) volume to the player."""
    volume: float
    command_type: CommandType = CommandType.PLAYER_SET_VOLUME


@dataclass(frozen=True)
class PlayerTeardown(Command):
    """Stop and dispose the player resource; events from it are detached."""
    command_type: CommandType = CommandType.PLAYER_TEARDOWN


@dataclass(frozen=True)
class PlayerReinitialize(Command):
    """Construct a fresh player resource and restore its volume."""
    volume: float
    command_type: CommandType = CommandType.PLAYER_REINITIALIZE


# =============================================================================
# Connectivity Commands
# =============================================================================

@dataclass(frozen=True)
class ProbeConnectivity(Command):
    """
    Request a non-blocking connectivity probe.

    Runtime emits ConnectivityProbed(run_id, purpose, ...) on completion.
    """
    run_id: int
    purpose: ProbePurpose
    command_type: CommandType = CommandType.PROBE_CONNECTIVITY


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start (or replace) a named timer.

    On expiration, the runtime must inject the specified timeout event,
    stamped with run_id.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    run_id: int = 0
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Platform Commands
# =============================================================================

@dataclass(frozen=True)
class AcquireWakeLock(Command):
    """Best-effort wake lock acquisition."""
    command_type: CommandType = CommandType.ACQUIRE_WAKE_LOCK


@dataclass(frozen=True)
class ReleaseWakeLock(Command):
    """Release the wake lock if held."""
    command_type: CommandType = CommandType.RELEASE_WAKE_LOCK


# =============================================================================
# Session / Telemetry Commands
# =============================================================================

@dataclass(frozen=True)
class OpenSession(Command):
    """A listening session started."""
    start_ts_ms: int
    command_type: CommandType = CommandType.OPEN_SESSION


@dataclass(frozen=True)
class CloseSession(Command):
    """Flush the open listening session to telemetry."""
    reason: str
    ts_ms: int
    total_reconnections: int
    command_type: CommandType = CommandType.CLOSE_SESSION


@dataclass(frozen=True)
class StartHeartbeat(Command):
    """Start the periodic telemetry heartbeat (idempotent)."""
    command_type: CommandType = CommandType.START_HEARTBEAT


@dataclass(frozen=True)
class StopHeartbeat(Command):
    """Stop the periodic telemetry heartbeat (idempotent)."""
    command_type: CommandType = CommandType.STOP_HEARTBEAT


@dataclass(frozen=True)
class EmitTelemetry(Command):
    """Fire-and-forget telemetry event."""
    name: str
    properties: dict[str, Any]
    command_type: CommandType = CommandType.EMIT_TELEMETRY


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
