"""
Raw player state vocabulary.

The underlying player reports a coarse state plus an optional processing
sub-state. Both are classified by the reducer; neither is ever published
to consumers as-is.
"""

from __future__ import annotations

from enum import Enum


class ProcessingState(str, Enum):
    """
    Processing sub-state attached to a player event.

    READY is the "ready" sub-signal: enough data is buffered for
    continuous playback.
    """

    IDLE = "idle"
    LOADING = "loading"
    BUFFERING = "buffering"
    READY = "ready"
    COMPLETED = "completed"
