"""
Why a connectivity probe was requested.

The reducer routes probe results by purpose; the probe itself is
purpose-agnostic.
"""

from __future__ import annotations

from enum import Enum


class ProbePurpose(str, Enum):
    """
    PLAY:
        Pre-flight check for a user-initiated play.

    RECONNECT:
        Pre-flight check for a scheduled reconnect attempt.

    LIVENESS:
        Periodic check while the stream reports PLAYING.
    """

    PLAY = "PLAY"
    RECONNECT = "RECONNECT"
    LIVENESS = "LIVENESS"
