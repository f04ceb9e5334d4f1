"""
Reconnection policy helpers.

Purpose:
- Centralize the backoff, escalation and exhaustion rules
- Keep reducer pure
- Allow runtime to make deterministic retry decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from constants import (
    RECONNECT_DEBOUNCE_MS,
    RECONNECT_INITIAL_DELAY_MS,
    RECONNECT_MAX_DELAY_MS,
    RECONNECT_MAX_RETRIES,
    RECONNECT_MIN_DELAY_MS,
    RECONNECT_RESTART_THRESHOLD,
    RECONNECT_SUCCESS_COOLDOWN_MS,
    RECONNECT_TERMINAL_MAX_ATTEMPTS,
    RESTART_TEARDOWN_PAUSE_MS,
)


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Immutable reconnection tunables.

    terminal_max_attempts <= 0 disables terminal exhaustion (retry forever).
    """
    initial_delay_ms: int = RECONNECT_INITIAL_DELAY_MS
    min_delay_ms: int = RECONNECT_MIN_DELAY_MS
    max_delay_ms: int = RECONNECT_MAX_DELAY_MS
    max_retries: int = RECONNECT_MAX_RETRIES
    debounce_ms: int = RECONNECT_DEBOUNCE_MS
    success_cooldown_ms: int = RECONNECT_SUCCESS_COOLDOWN_MS
    restart_threshold: int = RECONNECT_RESTART_THRESHOLD
    restart_teardown_ms: int = RESTART_TEARDOWN_PAUSE_MS
    terminal_max_attempts: int = RECONNECT_TERMINAL_MAX_ATTEMPTS


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryState:
    """
    Immutable retry bookkeeping.

    Semantics:
    - attempt_count drives the backoff exponent; it is bounded by
      max_retries and wraps to 0 once the delay is pinned.
    - consecutive_error_count counts failures with no intervening ready
      signal; it drives escalation to a full restart.
    - total_attempts counts attempts since the last success; it drives
      terminal exhaustion and never wraps.
    - connect_in_flight is True while a reconnect timer, probe or play
      is outstanding. At most one exists at a time.
    """
    attempt_count: int = 0
    consecutive_error_count: int = 0
    total_attempts: int = 0
    last_attempt_ts_ms: int | None = None
    last_successful_reconnect_ts_ms: int | None = None
    connect_in_flight: bool = False
    restart_in_progress: bool = False
    terminal: bool = False


def reset_after_success(retry: RetryState, *, now_ms: int | None) -> RetryState:
    """
    Clear all failure counters after sustained playback.

    now_ms is stamped as last_successful_reconnect_ts_ms when the success
    ended a recovery; pass None for a plain first connect.
    """
    return RetryState(
        last_attempt_ts_ms=retry.last_attempt_ts_ms,
        last_successful_reconnect_ts_ms=(
            now_ms if now_ms is not None
            else retry.last_successful_reconnect_ts_ms
        ),
    )


def reset_for_manual_play(retry: RetryState) -> RetryState:
    """Counters reset on an explicit user play; timestamps are kept."""
    return replace(
        RetryState(),
        last_attempt_ts_ms=retry.last_attempt_ts_ms,
        last_successful_reconnect_ts_ms=retry.last_successful_reconnect_ts_ms,
    )


def is_recovering(retry: RetryState) -> bool:
    """True if the next ready signal ends a recovery."""
    return (
        retry.attempt_count > 0
        or retry.consecutive_error_count > 0
        or retry.total_attempts > 0
        or retry.restart_in_progress
    )


# =============================================================================
# Delay Calculation
# =============================================================================

def backoff_delay_ms(policy: ReconnectPolicy, attempt_count: int) -> int:
    """
    delay = initial * 2^attempt_count, clamped to [min, max].

    Monotonically non-decreasing in attempt_count.
    """
    exponent = max(0, attempt_count)
    # Cap the exponent so huge counters cannot build enormous ints
    raw = policy.initial_delay_ms * (1 << min(exponent, 30))
    return max(policy.min_delay_ms, min(raw, policy.max_delay_ms))


def next_backoff(policy: ReconnectPolicy, attempt_count: int) -> tuple[int, int]:
    """
    Returns (delay_ms, attempt_count_to_store).

    Once attempt_count reaches max_retries the delay is pinned to the
    maximum and the counter wraps to 0; retries never stop here.
    """
    if attempt_count >= policy.max_retries:
        return policy.max_delay_ms, 0
    return backoff_delay_ms(policy, attempt_count), attempt_count


# =============================================================================
# Escalation / Guards
# =============================================================================

def should_force_restart(policy: ReconnectPolicy, retry: RetryState) -> bool:
    """Consecutive errors strictly above the threshold force a full restart."""
    return retry.consecutive_error_count > policy.restart_threshold


def is_exhausted(policy: ReconnectPolicy, retry: RetryState) -> bool:
    """True once the hard attempt maximum is reached with no success."""
    if policy.terminal_max_attempts <= 0:
        return False
    return retry.total_attempts >= policy.terminal_max_attempts


def remaining_window_ms(
    now_ms: int,
    since_ms: int | None,
    window_ms: int,
) -> int:
    """
    Milliseconds left in a window opened at since_ms.

    Returns 0 if the window never opened or has elapsed.
    """
    if since_ms is None or window_ms <= 0:
        return 0
    elapsed = now_ms - since_ms
    if elapsed < 0:
        # Clock went backwards; treat as a fresh window
        return window_ms
    return max(0, window_ms - elapsed)
