"""
POLICY-AS-CONSTANTS
-------------------
Single source of truth for all behavioral tunables of the stream engine.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Policy dataclasses (engine.retry, engine.buffer_health) take their
  defaults from this file; AppConfig may override a few of them.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Stream endpoint
# =============================================================================

DEFAULT_STREAM_URL: Final[str] = "https://radio06.cehis.net:9036/stream"
DEFAULT_VOLUME: Final[float] = 0.7

# Remote key-value config (resolved once, before the first connect)
REMOTE_CONFIG_TIMEOUT_S: Final[float] = 3.0
REMOTE_CONFIG_STREAM_URL_KEY: Final[str] = "stream_url"

# =============================================================================
# Connectivity probe
# =============================================================================

PROBE_TIMEOUT_S: Final[float] = 5.0
# Any response below this status proves the endpoint is alive
# (Icecast servers commonly answer HEAD with 4xx).
PROBE_UNHEALTHY_STATUS_MIN: Final[int] = 500
LIVENESS_CHECK_INTERVAL_MS: Final[int] = 10_000

# =============================================================================
# Player command timing
# =============================================================================

CONNECT_TIMEOUT_MS: Final[int] = 15_000
PLAYER_COMMAND_TIMEOUT_S: Final[float] = 15.0
PLAY_SETTLE_MS: Final[int] = 200
RECONNECT_SETTLE_MS: Final[int] = 500
FOREGROUND_RESUME_SETTLE_MS: Final[int] = 500

# Child processes (ffplay, wake-lock inhibitor)
SUBPROCESS_TERMINATE_GRACE_S: Final[float] = 2.0
# Consecutive empty audio-queue status lines before reporting buffering
FFPLAY_EMPTY_QUEUE_LINES: Final[int] = 3

# =============================================================================
# Buffer health
# =============================================================================

BUFFER_HEALTH_MAX: Final[int] = 3
BUFFER_HEALTH_MIN: Final[int] = 0

STABILITY_WINDOW_MS: Final[int] = 5 * 60 * 1000
STABILITY_SCORE_MIN: Final[float] = 0.1
STABILITY_SCORE_MAX: Final[float] = 1.0
STABILITY_DEGRADED_THRESHOLD: Final[float] = 0.6

BUFFER_CHECK_INTERVAL_MS: Final[int] = 3_000
BUFFER_CHECK_MAX_COUNT: Final[int] = 3

# (minimum score, timeout_ms), evaluated top-down; last tier is the fallback
BUFFER_TIMEOUT_TIERS_MS: Final[Tuple[Tuple[float, int], ...]] = (
    (0.8, 15_000),
    (0.6, 10_000),
    (0.0, 8_000),
)

# Progressive wording, indexed by completed checks
BUFFERING_MESSAGES: Final[Tuple[str, ...]] = (
    "Buffering...",
    "Still buffering, waiting for the stream...",
    "Weak connection, hold on...",
)

# =============================================================================
# Reconnection
# =============================================================================

RECONNECT_INITIAL_DELAY_MS: Final[int] = 2_000
RECONNECT_MIN_DELAY_MS: Final[int] = 2_000
RECONNECT_MAX_DELAY_MS: Final[int] = 30_000
RECONNECT_MAX_RETRIES: Final[int] = 5

RECONNECT_DEBOUNCE_MS: Final[int] = 2_000
RECONNECT_SUCCESS_COOLDOWN_MS: Final[int] = 5_000

# consecutive_error_count strictly above this forces a full restart
RECONNECT_RESTART_THRESHOLD: Final[int] = 3
RESTART_TEARDOWN_PAUSE_MS: Final[int] = 1_000

# Attempts since the last success before giving up until the user presses play
RECONNECT_TERMINAL_MAX_ATTEMPTS: Final[int] = 50

# =============================================================================
# Session / telemetry
# =============================================================================

HEARTBEAT_INTERVAL_S: Final[float] = 30.0
BACKGROUND_SESSION_LIMIT_MS: Final[int] = 10 * 60 * 1000

# Platform channel calls must never hang the engine
PLATFORM_CALL_TIMEOUT_S: Final[float] = 2.0

# =============================================================================
# User-facing messages
# =============================================================================

MSG_NO_CONNECTION: Final[str] = "No internet connection. Retrying..."
MSG_SERVER_TIMEOUT: Final[str] = "Server not responding. Retrying..."
MSG_CONNECT_ERROR: Final[str] = "Error connecting. Retrying..."
MSG_STREAM_DROPPED: Final[str] = "Stream interrupted. Reconnecting..."
MSG_UNSTABLE: Final[str] = "Unstable connection. Reconnecting..."
MSG_RESTARTING: Final[str] = "Restarting the player..."
MSG_RECONNECTED: Final[str] = "Reconnected"
MSG_TERMINAL: Final[str] = (
    "Could not reach the station. Press play to try again."
)

# =============================================================================
# Control server
# =============================================================================

DEFAULT_HTTP_HOST: Final[str] = "0.0.0.0"
DEFAULT_HTTP_PORT: Final[int] = 8000


def reconnect_wait_message(delay_ms: int, attempt: int, max_retries: int) -> str:
    """Human-readable status for a scheduled reconnect."""
    seconds = max(1, round(delay_ms / 1000))
    return f"Reconnecting in {seconds}s (attempt {attempt}/{max_retries})..."


def buffering_message(checks_done: int) -> str:
    """Progressive buffering wording; saturates at the last message."""
    if checks_done <= 0:
        return BUFFERING_MESSAGES[0]
    idx = min(checks_done, len(BUFFERING_MESSAGES) - 1)
    return BUFFERING_MESSAGES[idx]
