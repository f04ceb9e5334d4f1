"""
Observable status derived from engine state.

The runtime publishes a new snapshot only when one of these fields changes,
so each externally visible transition is published exactly once.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from engine.enums.status import PlaybackStatus
from engine.state_dataclass import EngineState

_LOADING_STATUSES = frozenset({
    PlaybackStatus.CONNECTING,
    PlaybackStatus.BUFFERING,
    PlaybackStatus.RESTARTING,
})


@dataclass(frozen=True)
class StatusSnapshot:
    status: PlaybackStatus
    is_playing: bool
    is_loading: bool
    error_message: str
    status_message: str
    volume: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def snapshot_of(state: EngineState) -> StatusSnapshot:
    """Project engine state onto the published observables."""
    return StatusSnapshot(
        status=state.status,
        is_playing=state.status is PlaybackStatus.PLAYING,
        is_loading=state.status in _LOADING_STATUSES,
        error_message=state.error_message,
        status_message=state.status_message,
        volume=state.volume,
    )


def diagnostics_of(state: EngineState) -> dict[str, Any]:
    """Extended, non-published view used by the /status endpoint."""
    return {
        **snapshot_of(state).to_dict(),
        "connect_run_id": state.connect_run_id,
        "stream_url": state.stream_url,
        "user_stopped_manually": state.user_stopped_manually,
        "paused_for_foreground_content": state.paused_for_foreground_content,
        "interrupted": state.interrupted,
        "backgrounded": state.backgrounded,
        "buffer": {
            "health": state.buffer.health,
            "stability_score": round(state.buffer.stability_score, 3),
            "degraded": state.buffer.degraded,
            "episodes": len(state.buffer.episodes),
        },
        "retry": {
            "attempt_count": state.retry.attempt_count,
            "max_retries": state.reconnect_policy.max_retries,
            "consecutive_error_count": state.retry.consecutive_error_count,
            "total_attempts": state.retry.total_attempts,
            "connect_in_flight": state.retry.connect_in_flight,
            "restart_in_progress": state.retry.restart_in_progress,
            "terminal": state.retry.terminal,
        },
        "session": (
            None if state.session is None else {
                "start_ts_ms": state.session.start_ts_ms,
                "total_reconnections": state.session.total_reconnections,
            }
        ),
    }
