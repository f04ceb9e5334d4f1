"""
Authoritative engine state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from constants import DEFAULT_STREAM_URL, DEFAULT_VOLUME
from engine.buffer_health import BufferHealthState, BufferPolicy
from engine.enums.status import PlaybackStatus
from engine.retry import ReconnectPolicy, RetryState


# =============================================================================
# Listening Session
# =============================================================================

@dataclass(frozen=True)
class ListeningSession:
    """
    One continuous listening session.

    continuous minutes are derived from start_ts_ms by the reporter.
    """
    start_ts_ms: int
    total_reconnections: int = 0


# =============================================================================
# Engine State
# =============================================================================

@dataclass(frozen=True)
class EngineState:
    """Immutable snapshot of all engine-owned state."""

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------
    stream_url: str = DEFAULT_STREAM_URL
    volume: float = DEFAULT_VOLUME

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    status: PlaybackStatus = PlaybackStatus.IDLE

    # Monotonic id of the current connect attempt; bumped on every
    # play / reconnect / restart, never on stop.
    connect_run_id: int = 0

    # ------------------------------------------------------------------
    # Intent flags
    # ------------------------------------------------------------------
    user_stopped_manually: bool = False
    paused_for_foreground_content: bool = False
    # Whether the stream was live when the foreground pause began
    resume_after_foreground: bool = False
    interrupted: bool = False
    backgrounded: bool = False

    # ------------------------------------------------------------------
    # Published text
    # ------------------------------------------------------------------
    error_message: str = ""
    status_message: str = ""

    # ------------------------------------------------------------------
    # Sub-components
    # ------------------------------------------------------------------
    buffer: BufferHealthState = field(default_factory=BufferHealthState)
    retry: RetryState = field(default_factory=RetryState)
    session: ListeningSession | None = None

    # ------------------------------------------------------------------
    # Policy (injected at construction)
    # ------------------------------------------------------------------
    reconnect_policy: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    buffer_policy: BufferPolicy = field(default_factory=BufferPolicy)
