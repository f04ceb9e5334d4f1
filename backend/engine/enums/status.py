"""
Authoritative playback status enumeration.

Rules:
- This enum defines ONLY the externally observable playback states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class PlaybackStatus(str, Enum):
    """
    High-level playback states of the stream engine.

    These states represent what the listener experiences, NOT the raw
    state reported by the underlying player.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    PLAYING = "PLAYING"
    BUFFERING = "BUFFERING"
    PAUSED = "PAUSED"
    ERROR = "ERROR"
    RESTARTING = "RESTARTING"
