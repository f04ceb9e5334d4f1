"""
Buffer health bookkeeping.

Tracks buffering episodes, the 0..3 health counter and the network
stability score derived from a trailing window of episode durations.

Pure functions over immutable state; the reducer decides what to do with
the results (progressive checks, adaptive timeout, escalation).
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from constants import (
    BUFFER_CHECK_INTERVAL_MS,
    BUFFER_CHECK_MAX_COUNT,
    BUFFER_HEALTH_MAX,
    BUFFER_HEALTH_MIN,
    BUFFER_TIMEOUT_TIERS_MS,
    STABILITY_DEGRADED_THRESHOLD,
    STABILITY_SCORE_MAX,
    STABILITY_SCORE_MIN,
    STABILITY_WINDOW_MS,
)


@dataclass(frozen=True)
class BufferPolicy:
    """Immutable buffering tunables."""
    health_max: int = BUFFER_HEALTH_MAX
    health_min: int = BUFFER_HEALTH_MIN
    window_ms: int = STABILITY_WINDOW_MS
    score_min: float = STABILITY_SCORE_MIN
    score_max: float = STABILITY_SCORE_MAX
    degraded_threshold: float = STABILITY_DEGRADED_THRESHOLD
    check_interval_ms: int = BUFFER_CHECK_INTERVAL_MS
    check_max_count: int = BUFFER_CHECK_MAX_COUNT
    timeout_tiers_ms: tuple[tuple[float, int], ...] = BUFFER_TIMEOUT_TIERS_MS


@dataclass(frozen=True)
class BufferHealthState:
    """
    Immutable buffering snapshot.

    episodes: (end_ts_ms, duration_ms) pairs inside the trailing window.
    buffering_since_ts_ms: start of the open episode, None when not buffering.
    checks_done: progressive checks completed for the open episode.
    """
    health: int = BUFFER_HEALTH_MAX
    episodes: tuple[tuple[int, int], ...] = ()
    stability_score: float = STABILITY_SCORE_MAX
    degraded: bool = False
    buffering_since_ts_ms: int | None = None
    checks_done: int = 0


# =============================================================================
# Score
# =============================================================================

def prune_episodes(
    episodes: tuple[tuple[int, int], ...],
    now_ms: int,
    window_ms: int,
) -> tuple[tuple[int, int], ...]:
    """Drop episodes that ended before the trailing window."""
    cutoff = now_ms - window_ms
    return tuple(ep for ep in episodes if ep[0] >= cutoff)


def stability_score(
    episodes: tuple[tuple[int, int], ...],
    policy: BufferPolicy,
) -> float:
    """
    1 - (cumulative buffering / window), clamped to [score_min, score_max].

    Callers prune first.
    """
    if policy.window_ms <= 0:
        return policy.score_max
    buffered_ms = sum(duration for _, duration in episodes)
    raw = 1.0 - (buffered_ms / policy.window_ms)
    return max(policy.score_min, min(policy.score_max, raw))


def adaptive_timeout_ms(score: float, policy: BufferPolicy) -> int:
    """Longer grace on a stable network, shorter on a degraded one."""
    for min_score, timeout_ms in policy.timeout_tiers_ms:
        if score >= min_score:
            return timeout_ms
    return policy.timeout_tiers_ms[-1][1]


def _rescore(
    buffer: BufferHealthState,
    episodes: tuple[tuple[int, int], ...],
    now_ms: int,
    policy: BufferPolicy,
) -> BufferHealthState:
    kept = prune_episodes(episodes, now_ms, policy.window_ms)
    score = stability_score(kept, policy)
    return replace(
        buffer,
        episodes=kept,
        stability_score=score,
        degraded=score < policy.degraded_threshold,
    )


# =============================================================================
# Episode lifecycle
# =============================================================================

def start_episode(
    buffer: BufferHealthState,
    now_ms: int,
    policy: BufferPolicy,
) -> BufferHealthState:
    """
    A buffering episode began.

    - A repeated start inside an open episode keeps its start time and
      progressive check count
    - Health drops by exactly one, floored at health_min
    """
    already_open = buffer.buffering_since_ts_ms is not None
    started = replace(
        buffer,
        health=max(policy.health_min, buffer.health - 1),
        buffering_since_ts_ms=buffer.buffering_since_ts_ms if already_open else now_ms,
        checks_done=buffer.checks_done if already_open else 0,
    )
    return _rescore(started, started.episodes, now_ms, policy)


def resolve_episode(
    buffer: BufferHealthState,
    now_ms: int,
    policy: BufferPolicy,
) -> BufferHealthState:
    """
    Buffering cleared on its own.

    Records the episode duration and restores one health point (capped).
    """
    episodes = buffer.episodes
    if buffer.buffering_since_ts_ms is not None:
        duration = max(0, now_ms - buffer.buffering_since_ts_ms)
        episodes = episodes + ((now_ms, duration),)

    resolved = replace(
        buffer,
        health=min(policy.health_max, buffer.health + 1),
        buffering_since_ts_ms=None,
        checks_done=0,
    )
    return _rescore(resolved, episodes, now_ms, policy)


def abandon_episode(
    buffer: BufferHealthState,
    now_ms: int,
    policy: BufferPolicy,
) -> BufferHealthState:
    """
    Buffering ended by escalation (or by a stream drop).

    The duration still counts against stability; health is untouched.
    """
    if buffer.buffering_since_ts_ms is None:
        return buffer
    duration = max(0, now_ms - buffer.buffering_since_ts_ms)
    closed = replace(buffer, buffering_since_ts_ms=None, checks_done=0)
    return _rescore(closed, closed.episodes + ((now_ms, duration),), now_ms, policy)


def mark_fully_healthy(
    buffer: BufferHealthState,
    policy: BufferPolicy,
) -> BufferHealthState:
    """Fresh connection became ready: health back to max, window kept."""
    return replace(
        buffer,
        health=policy.health_max,
        buffering_since_ts_ms=None,
        checks_done=0,
    )
