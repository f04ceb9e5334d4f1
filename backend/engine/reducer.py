# pylint: disable=too-many-lines
"""
Pure stream engine reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).

The reducer hosts three cooperating policies:
- playback state machine (status transitions, intent flags, session)
- buffer health monitor (episodes, stability score, progressive checks)
- reconnection scheduler (guards, backoff, escalation, exhaustion)
"""

# Reducer owns timer semantics; runtime must not cancel timers implicitly.

from __future__ import annotations

from dataclasses import replace
from typing import Any

from constants import (
    BACKGROUND_SESSION_LIMIT_MS,
    CONNECT_TIMEOUT_MS,
    FOREGROUND_RESUME_SETTLE_MS,
    LIVENESS_CHECK_INTERVAL_MS,
    MSG_CONNECT_ERROR,
    MSG_NO_CONNECTION,
    MSG_RECONNECTED,
    MSG_RESTARTING,
    MSG_SERVER_TIMEOUT,
    MSG_STREAM_DROPPED,
    MSG_TERMINAL,
    MSG_UNSTABLE,
    PLAY_SETTLE_MS,
    RECONNECT_SETTLE_MS,
    buffering_message,
    reconnect_wait_message,
)
from engine.buffer_health import (
    abandon_episode,
    adaptive_timeout_ms,
    mark_fully_healthy,
    resolve_episode,
    start_episode,
)
from engine.commands import (
    AcquireWakeLock,
    CancelTimer,
    CloseSession,
    Command,
    EmitTelemetry,
    LogEvent,
    OpenSession,
    PlayerPause,
    PlayerPlay,
    PlayerReinitialize,
    PlayerSetVolume,
    PlayerStop,
    PlayerTeardown,
    ProbeConnectivity,
    ReleaseWakeLock,
    StartHeartbeat,
    StartTimer,
    StopHeartbeat,
)
from engine.enums.player_state import ProcessingState
from engine.enums.probe_purpose import ProbePurpose
from engine.enums.status import PlaybackStatus
from engine.events import (
    AppBackgrounded,
    AppForegrounded,
    BackgroundLimitReached,
    BecomingNoisy,
    BufferCheckTick,
    BufferTimeout,
    ConnectivityProbed,
    ConnectTimeout,
    Event,
    EventType,
    ForceRestart,
    ForegroundSettled,
    InterruptionBegan,
    InterruptionEnded,
    LivenessDue,
    Pause,
    PauseForForegroundContent,
    Play,
    PlayerCommandFailed,
    PlayerError,
    PlayerEvent,
    ReconnectDue,
    ReconnectReevaluate,
    RestartTeardownElapsed,
    ResumeAfterForegroundContent,
    SetVolume,
    Stop,
    TimerEvent,
)
from engine.retry import (
    is_exhausted,
    is_recovering,
    next_backoff,
    remaining_window_ms,
    reset_after_success,
    reset_for_manual_play,
    should_force_restart,
)
from engine.state_dataclass import EngineState, ListeningSession

# =============================================================================
# Timer IDs
# =============================================================================

TIMER_RECONNECT = "reconnect"
TIMER_CONNECT = "connect_timeout"
TIMER_BUFFER_CHECK = "buffer_check"
TIMER_BUFFER_TIMEOUT = "buffer_timeout"
TIMER_RESTART_TEARDOWN = "restart_teardown"
TIMER_FOREGROUND_SETTLE = "foreground_settle"
TIMER_LIVENESS = "liveness"
TIMER_BACKGROUND_LIMIT = "background_limit"

_LIVE_STATUSES = frozenset({
    PlaybackStatus.PLAYING,
    PlaybackStatus.BUFFERING,
    PlaybackStatus.CONNECTING,
    PlaybackStatus.ERROR,
    PlaybackStatus.RESTARTING,
})

Result = tuple[EngineState, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: EngineState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "status": state.status.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "connect_run_id": state.connect_run_id,
            "retry": {
                "attempt": state.retry.attempt_count,
                "consecutive_errors": state.retry.consecutive_error_count,
                "total_attempts": state.retry.total_attempts,
                "in_flight": state.retry.connect_in_flight,
            },
            "buffer": {
                "health": state.buffer.health,
                "stability_score": round(state.buffer.stability_score, 3),
            },
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _finish(
    old: EngineState,
    new: EngineState,
    event: Event,
    commands: list[Command],
    source: str,
) -> Result:
    """Attach a state_changed log when the status moved, then order logs last."""
    if old.status is not new.status:
        commands.append(
            _log(
                new,
                event,
                "state_changed",
                {
                    "from_status": old.status.value,
                    "to_status": new.status.value,
                    "source": source,
                },
            )
        )
    return new, _logs_last(tuple(commands))


def _ignore(state: EngineState, event: Event, reason: str) -> Result:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _telemetry(
    state: EngineState,
    name: str,
    extra: dict[str, Any] | None = None,
) -> EmitTelemetry:
    properties: dict[str, Any] = {
        "status": state.status.value,
        "attempt": state.retry.attempt_count,
        "max_retries": state.reconnect_policy.max_retries,
        "consecutive_errors": state.retry.consecutive_error_count,
        "buffer_health": state.buffer.health,
        "stability_score": round(state.buffer.stability_score, 3),
        "degraded": state.buffer.degraded,
    }
    if extra:
        properties.update(extra)
    return EmitTelemetry(name=name, properties=properties)


def _is_stale(state: EngineState, run_id: int) -> bool:
    return run_id != state.connect_run_id


def _cancel_buffer_timers() -> list[Command]:
    return [
        CancelTimer(timer_id=TIMER_BUFFER_CHECK),
        CancelTimer(timer_id=TIMER_BUFFER_TIMEOUT),
    ]


def _cancel_recovery_timers() -> list[Command]:
    """Reconnect, connect-timeout, buffering and liveness timers."""
    return [
        CancelTimer(timer_id=TIMER_RECONNECT),
        CancelTimer(timer_id=TIMER_CONNECT),
        CancelTimer(timer_id=TIMER_LIVENESS),
        *_cancel_buffer_timers(),
    ]


def _start_play(state: EngineState, *, stop_first: bool, settle_ms: int) -> list[Command]:
    return [
        PlayerPlay(
            run_id=state.connect_run_id,
            url=state.stream_url,
            stop_first=stop_first,
            settle_ms=settle_ms,
        ),
        StartTimer(
            timer_id=TIMER_CONNECT,
            duration_ms=CONNECT_TIMEOUT_MS,
            timeout_event_type=EventType.CONNECT_TIMEOUT,
            run_id=state.connect_run_id,
        ),
    ]


def _arm_liveness(state: EngineState) -> StartTimer:
    return StartTimer(
        timer_id=TIMER_LIVENESS,
        duration_ms=LIVENESS_CHECK_INTERVAL_MS,
        timeout_event_type=EventType.LIVENESS_DUE,
        run_id=state.connect_run_id,
    )


def _maybe_arm_background_limit(state: EngineState) -> list[Command]:
    if state.backgrounded and state.session is not None:
        return [
            StartTimer(
                timer_id=TIMER_BACKGROUND_LIMIT,
                duration_ms=BACKGROUND_SESSION_LIMIT_MS,
                timeout_event_type=EventType.BACKGROUND_LIMIT_REACHED,
                run_id=state.connect_run_id,
            )
        ]
    return []


def _halt_stream(state: EngineState, now_ms: int) -> EngineState:
    """
    Common bookkeeping when playback is halted on purpose.

    Closes an open buffering episode and drops the in-flight marker.
    Counters are left untouched.
    """
    return replace(
        state,
        buffer=abandon_episode(state.buffer, now_ms, state.buffer_policy),
        retry=replace(state.retry, connect_in_flight=False),
    )


# =============================================================================
# Reconnection scheduler
# =============================================================================

def _schedule_reconnect(
    state: EngineState,
    event: Event,
    commands: list[Command],
    source: str,
) -> Result:
    """
    Decide whether and when to retry.

    Guard order:
    user stop -> foreground pause -> restart in progress -> escalation
    -> attempt in flight -> terminal -> cooldown/debounce -> exhaustion
    """
    policy = state.reconnect_policy
    retry = state.retry

    def _suppressed(reason: str) -> Result:
        commands.append(_log(state, event, "reconnect_suppressed", {"reason": reason}))
        return state, _logs_last(tuple(commands))

    if state.user_stopped_manually:
        return _suppressed("user_stopped")
    if state.paused_for_foreground_content:
        return _suppressed("paused_for_foreground_content")
    if retry.restart_in_progress:
        return _suppressed("restart_in_progress")

    if should_force_restart(policy, retry):
        return _force_restart(state, event, commands, source="consecutive_errors")

    if retry.connect_in_flight:
        return _suppressed("reconnect_in_flight")
    if retry.terminal:
        return _suppressed("terminal")

    now = event.ts_ms
    wait_ms = max(
        remaining_window_ms(
            now, retry.last_successful_reconnect_ts_ms, policy.success_cooldown_ms
        ),
        remaining_window_ms(now, retry.last_attempt_ts_ms, policy.debounce_ms),
    )
    if wait_ms > 0:
        deferred = replace(state, retry=replace(retry, connect_in_flight=True))
        commands.extend([
            StartTimer(
                timer_id=TIMER_RECONNECT,
                duration_ms=wait_ms,
                timeout_event_type=EventType.RECONNECT_REEVALUATE,
                run_id=state.connect_run_id,
            ),
            _log(deferred, event, "reconnect_deferred", {
                "wait_ms": wait_ms,
                "source": source,
            }),
        ])
        return deferred, _logs_last(tuple(commands))

    if is_exhausted(policy, retry):
        return _enter_terminal(state, event, commands)

    delay_ms, stored_attempt = next_backoff(policy, retry.attempt_count)
    pinned = retry.attempt_count >= policy.max_retries
    next_attempt = stored_attempt + 1

    new_state = replace(
        state,
        retry=replace(retry, attempt_count=stored_attempt, connect_in_flight=True),
        status_message=reconnect_wait_message(delay_ms, next_attempt, policy.max_retries),
    )
    commands.extend([
        StartTimer(
            timer_id=TIMER_RECONNECT,
            duration_ms=delay_ms,
            timeout_event_type=EventType.RECONNECT_DUE,
            run_id=state.connect_run_id,
        ),
        _telemetry(new_state, "reconnect_scheduled", {
            "attempt": next_attempt,
            "delay_ms": delay_ms,
            "pinned": pinned,
        }),
        _log(new_state, event, "reconnect_scheduled", {
            "delay_ms": delay_ms,
            "attempt": next_attempt,
            "pinned": pinned,
            "source": source,
        }),
    ])
    return new_state, _logs_last(tuple(commands))


def _attempt_reconnect(state: EngineState, event: ReconnectDue) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if not state.retry.connect_in_flight:
        return _ignore(state, event, "no_reconnect_pending")
    if state.user_stopped_manually or state.paused_for_foreground_content:
        aborted = replace(state, retry=replace(state.retry, connect_in_flight=False))
        return aborted, (_log(aborted, event, "reconnect_aborted", {
            "user_stopped": state.user_stopped_manually,
            "paused_for_foreground_content": state.paused_for_foreground_content,
        }),)

    commands: list[Command] = []
    if should_force_restart(state.reconnect_policy, state.retry):
        cleared = replace(state, retry=replace(state.retry, connect_in_flight=False))
        new_state, cmds = _force_restart(cleared, event, commands, source="attempt_escalation")
        return _finish(state, new_state, event, list(cmds), "force_restart")

    retry = replace(
        state.retry,
        attempt_count=state.retry.attempt_count + 1,
        total_attempts=state.retry.total_attempts + 1,
        last_attempt_ts_ms=event.ts_ms,
        connect_in_flight=True,
    )
    run_id = state.connect_run_id + 1
    new_state = replace(
        state,
        status=PlaybackStatus.CONNECTING,
        connect_run_id=run_id,
        retry=retry,
        status_message=(
            f"Reconnecting (attempt {retry.attempt_count}/"
            f"{state.reconnect_policy.max_retries})..."
        ),
    )
    commands.extend([
        ProbeConnectivity(run_id=run_id, purpose=ProbePurpose.RECONNECT),
        _telemetry(new_state, "reconnect_attempt", {
            "total_attempts": retry.total_attempts,
        }),
        _log(new_state, event, "reconnect_attempt", {"attempt": retry.attempt_count}),
    ])
    return _finish(state, new_state, event, commands, "reconnect_attempt")


def _reevaluate_reconnect(state: EngineState, event: ReconnectReevaluate) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if not state.retry.connect_in_flight:
        return _ignore(state, event, "no_reconnect_pending")
    cleared = replace(state, retry=replace(state.retry, connect_in_flight=False))
    new_state, cmds = _schedule_reconnect(cleared, event, [], source="reevaluate")
    return _finish(state, new_state, event, list(cmds), "reconnect_reevaluate")


def _force_restart(
    state: EngineState,
    event: Event,
    commands: list[Command],
    source: str,
) -> Result:
    """
    Tear the player down, wait, then rebuild it from scratch.

    Supersedes (cancels) any pending incremental reconnect.
    """
    run_id = state.connect_run_id + 1
    new_state = replace(
        state,
        status=PlaybackStatus.RESTARTING,
        connect_run_id=run_id,
        buffer=abandon_episode(state.buffer, event.ts_ms, state.buffer_policy),
        retry=replace(state.retry, restart_in_progress=True, connect_in_flight=True),
        status_message=MSG_RESTARTING,
    )
    commands.extend([
        *_cancel_recovery_timers(),
        PlayerTeardown(),
        StopHeartbeat(),
        StartTimer(
            timer_id=TIMER_RESTART_TEARDOWN,
            duration_ms=state.reconnect_policy.restart_teardown_ms,
            timeout_event_type=EventType.RESTART_TEARDOWN_ELAPSED,
            run_id=run_id,
        ),
        _telemetry(new_state, "forced_restart", {"source": source}),
        _log(new_state, event, "force_restart", {"source": source}),
    ])
    return new_state, _logs_last(tuple(commands))


def _restart_teardown_elapsed(state: EngineState, event: RestartTeardownElapsed) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if not state.retry.restart_in_progress:
        return _ignore(state, event, "no_restart_in_progress")

    if state.user_stopped_manually or state.paused_for_foreground_content:
        aborted = replace(
            state,
            retry=replace(state.retry, restart_in_progress=False, connect_in_flight=False),
        )
        return aborted, (_log(aborted, event, "restart_aborted", {
            "user_stopped": state.user_stopped_manually,
        }),)

    # All retry/error counters restart from zero; total_attempts keeps
    # counting so exhaustion still applies across restarts.
    retry = replace(
        state.retry,
        attempt_count=0,
        consecutive_error_count=0,
        total_attempts=state.retry.total_attempts + 1,
        last_attempt_ts_ms=event.ts_ms,
        restart_in_progress=True,
        connect_in_flight=True,
    )
    new_state = replace(state, status=PlaybackStatus.CONNECTING, retry=retry)
    commands: list[Command] = [
        PlayerReinitialize(volume=state.volume),
        *_start_play(new_state, stop_first=False, settle_ms=0),
        _log(new_state, event, "restart_reinitialized"),
    ]
    return _finish(state, new_state, event, commands, "restart_reinitialized")


def _enter_terminal(
    state: EngineState,
    event: Event,
    commands: list[Command],
) -> Result:
    """Stop every automatic retry until the user presses play."""
    new_state = replace(
        state,
        status=PlaybackStatus.ERROR,
        retry=replace(state.retry, terminal=True, connect_in_flight=False),
        error_message=MSG_TERMINAL,
        status_message="",
    )
    commands.extend([
        *_cancel_recovery_timers(),
        StopHeartbeat(),
        ReleaseWakeLock(),
        *_maybe_arm_background_limit(new_state),
        _telemetry(new_state, "reconnect_exhausted", {
            "total_attempts": state.retry.total_attempts,
        }),
        _log(new_state, event, "enter_terminal", {
            "total_attempts": state.retry.total_attempts,
        }),
    ])
    return new_state, _logs_last(tuple(commands))


# =============================================================================
# Failure paths
# =============================================================================

def _attempt_failed(
    state: EngineState,
    event: Event,
    reason: str,
    message: str,
) -> Result:
    """The in-flight connect attempt failed (probe, play command, timeout)."""
    new_state = replace(
        state,
        status=PlaybackStatus.ERROR,
        retry=replace(
            state.retry,
            consecutive_error_count=state.retry.consecutive_error_count + 1,
            connect_in_flight=False,
            restart_in_progress=False,
        ),
        error_message=message,
    )
    commands: list[Command] = [
        CancelTimer(timer_id=TIMER_CONNECT),
        _telemetry(new_state, "connect_failed", {"reason": reason}),
        _log(new_state, event, "attempt_failed", {"reason": reason}),
    ]
    scheduled, cmds = _schedule_reconnect(new_state, event, commands, source=reason)
    return _finish(state, scheduled, event, list(cmds), "attempt_failed")


def _stream_fault(
    state: EngineState,
    event: Event,
    reason: str,
    message: str,
) -> Result:
    """An established (or already failing) stream dropped."""
    new_state = replace(
        state,
        status=PlaybackStatus.ERROR,
        buffer=abandon_episode(state.buffer, event.ts_ms, state.buffer_policy),
        retry=replace(
            state.retry,
            consecutive_error_count=state.retry.consecutive_error_count + 1,
        ),
        error_message=message,
    )
    commands: list[Command] = [
        *_cancel_buffer_timers(),
        CancelTimer(timer_id=TIMER_LIVENESS),
    ]
    if state.status in (PlaybackStatus.PLAYING, PlaybackStatus.BUFFERING):
        commands.extend([
            StopHeartbeat(),
            _telemetry(new_state, "stream_dropped", {"reason": reason}),
        ])
    commands.append(_log(new_state, event, "stream_fault", {"reason": reason}))
    scheduled, cmds = _schedule_reconnect(new_state, event, commands, source=reason)
    return _finish(state, scheduled, event, list(cmds), "stream_fault")


# =============================================================================
# Buffer health monitor
# =============================================================================

def _on_buffering_start(state: EngineState, event: Event) -> Result:
    policy = state.buffer_policy
    buffer = start_episode(state.buffer, event.ts_ms, policy)
    new_state = replace(state, status=PlaybackStatus.BUFFERING, buffer=buffer)

    commands: list[Command] = [
        CancelTimer(timer_id=TIMER_LIVENESS),
        _telemetry(new_state, "buffering_started"),
    ]

    if buffer.health <= policy.health_min:
        # Network already judged unstable: no grace period
        commands.append(_log(new_state, event, "buffering_escalate_immediately"))
        escalated, cmds = _stream_fault(new_state, event, "buffer_health_exhausted", MSG_UNSTABLE)
        return escalated, _logs_last(tuple(commands) + cmds)

    timeout_ms = adaptive_timeout_ms(buffer.stability_score, policy)
    commands.append(
        StartTimer(
            timer_id=TIMER_BUFFER_TIMEOUT,
            duration_ms=timeout_ms,
            timeout_event_type=EventType.BUFFER_TIMEOUT,
            run_id=state.connect_run_id,
        )
    )
    if not state.backgrounded:
        new_state = replace(new_state, status_message=buffering_message(0))
        commands.append(
            StartTimer(
                timer_id=TIMER_BUFFER_CHECK,
                duration_ms=policy.check_interval_ms,
                timeout_event_type=EventType.BUFFER_CHECK_TICK,
                run_id=state.connect_run_id,
            )
        )
    commands.append(_log(new_state, event, "buffering_started", {
        "timeout_ms": timeout_ms,
        "progressive_checks": not state.backgrounded,
    }))
    return _finish(state, new_state, event, commands, "buffering_started")


def _on_buffering_repeated(state: EngineState, event: Event) -> Result:
    """Another stall inside the open episode: timers keep running."""
    policy = state.buffer_policy
    buffer = start_episode(state.buffer, event.ts_ms, policy)
    new_state = replace(state, buffer=buffer)

    if buffer.health <= policy.health_min:
        log = _log(new_state, event, "buffering_escalate_immediately", {"repeated": True})
        escalated, cmds = _stream_fault(new_state, event, "buffer_health_exhausted", MSG_UNSTABLE)
        return escalated, _logs_last((log,) + cmds)

    return _finish(state, new_state, event, [
        _log(new_state, event, "buffering_repeated", {"health": buffer.health}),
    ], "buffering_repeated")


def _on_buffering_resolved(state: EngineState, event: Event) -> Result:
    episode_start = state.buffer.buffering_since_ts_ms
    buffer = resolve_episode(state.buffer, event.ts_ms, state.buffer_policy)
    recovering = is_recovering(state.retry)
    new_state = replace(
        state,
        status=PlaybackStatus.PLAYING,
        buffer=buffer,
        retry=reset_after_success(state.retry, now_ms=event.ts_ms if recovering else None),
        error_message="",
        status_message="",
    )
    duration_ms = (
        event.ts_ms - episode_start if episode_start is not None else 0
    )
    commands: list[Command] = [
        *_cancel_buffer_timers(),
        _arm_liveness(new_state),
        _telemetry(new_state, "buffering_resolved", {"duration_ms": duration_ms}),
        _log(new_state, event, "buffering_resolved", {"duration_ms": duration_ms}),
    ]
    return _finish(state, new_state, event, commands, "buffering_resolved")


def _on_buffer_check_tick(state: EngineState, event: BufferCheckTick) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if state.status is not PlaybackStatus.BUFFERING:
        return _ignore(state, event, "not_buffering")

    policy = state.buffer_policy
    checks = state.buffer.checks_done + 1
    if checks >= policy.check_max_count:
        return _stream_fault(state, event, "buffer_checks_exhausted", MSG_UNSTABLE)

    new_state = replace(
        state,
        buffer=replace(state.buffer, checks_done=checks),
        status_message=buffering_message(checks),
    )
    return _finish(state, new_state, event, [
        StartTimer(
            timer_id=TIMER_BUFFER_CHECK,
            duration_ms=policy.check_interval_ms,
            timeout_event_type=EventType.BUFFER_CHECK_TICK,
            run_id=state.connect_run_id,
        ),
        _log(new_state, event, "buffering_check", {"checks_done": checks}),
    ], "buffering_check")


def _on_buffer_timeout(state: EngineState, event: BufferTimeout) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if state.status is not PlaybackStatus.BUFFERING:
        return _ignore(state, event, "not_buffering")
    return _stream_fault(state, event, "buffer_timeout", MSG_UNSTABLE)


# =============================================================================
# Player events
# =============================================================================

def _on_player_ready(state: EngineState, event: PlayerEvent) -> Result:
    if state.user_stopped_manually:
        return state, _logs_last((
            PlayerStop(),
            _log(state, event, "ready_after_user_stop"),
        ))
    if state.paused_for_foreground_content or state.interrupted:
        return state, _logs_last((
            PlayerPause(),
            _log(state, event, "ready_while_paused"),
        ))
    if state.status is PlaybackStatus.RESTARTING:
        return _ignore(state, event, "restart_teardown")
    if state.status is PlaybackStatus.PLAYING:
        return _ignore(state, event, "duplicate_ready")
    if state.status is PlaybackStatus.BUFFERING:
        return _on_buffering_resolved(state, event)

    recovering = is_recovering(state.retry)
    now = event.ts_ms

    session = state.session
    commands: list[Command] = [
        CancelTimer(timer_id=TIMER_RECONNECT),
        CancelTimer(timer_id=TIMER_CONNECT),
        CancelTimer(timer_id=TIMER_BACKGROUND_LIMIT),
        *_cancel_buffer_timers(),
    ]
    if session is None:
        session = ListeningSession(start_ts_ms=now)
        commands.append(OpenSession(start_ts_ms=now))
    elif recovering:
        session = replace(session, total_reconnections=session.total_reconnections + 1)

    new_state = replace(
        state,
        status=PlaybackStatus.PLAYING,
        buffer=mark_fully_healthy(state.buffer, state.buffer_policy),
        retry=reset_after_success(state.retry, now_ms=now if recovering else None),
        session=session,
        error_message="",
        status_message=MSG_RECONNECTED if recovering else "",
    )
    commands.extend([
        StartHeartbeat(),
        _arm_liveness(new_state),
        _telemetry(
            new_state,
            "reconnect_succeeded" if recovering else "playback_started",
            {"total_reconnections": session.total_reconnections},
        ),
        _log(new_state, event, "playing_ready", {"recovered": recovering}),
    ])
    return _finish(state, new_state, event, commands, "playing_ready")


def _on_player_buffering(state: EngineState, event: PlayerEvent) -> Result:
    if state.user_stopped_manually:
        return _ignore(state, event, "user_stopped")
    if state.paused_for_foreground_content:
        return _ignore(state, event, "paused_for_foreground_content")
    if state.status is PlaybackStatus.CONNECTING:
        return _ignore(state, event, "loading_while_connecting")
    if state.status is PlaybackStatus.BUFFERING:
        return _on_buffering_repeated(state, event)
    if state.status is not PlaybackStatus.PLAYING:
        return _ignore(state, event, f"buffering_in_{state.status.value.lower()}")
    return _on_buffering_start(state, event)


def _on_player_playing(state: EngineState, event: PlayerEvent) -> Result:
    processing = event.processing
    if processing in (ProcessingState.LOADING, ProcessingState.BUFFERING):
        return _on_player_buffering(state, event)
    if processing is ProcessingState.COMPLETED:
        return _on_player_stream_end(state, event)
    if processing is ProcessingState.IDLE:
        return _ignore(state, event, "playing_without_source")
    return _on_player_ready(state, event)


def _stream_event_ignored(state: EngineState) -> str | None:
    """Reason a stream-level player fault must not trigger recovery."""
    if state.status is PlaybackStatus.RESTARTING:
        return "restart_teardown"
    if state.user_stopped_manually:
        return "user_stopped"
    if state.paused_for_foreground_content:
        return "paused_for_foreground_content"
    if state.status in (PlaybackStatus.PAUSED, PlaybackStatus.IDLE):
        return f"status_{state.status.value.lower()}"
    if state.retry.terminal:
        return "terminal"
    return None


def _on_player_stream_end(state: EngineState, event: PlayerEvent) -> Result:
    reason = _stream_event_ignored(state)
    if reason is not None:
        return _ignore(state, event, reason)
    if state.status is PlaybackStatus.CONNECTING:
        # The player emits idle while its source is being replaced
        return _ignore(state, event, "transient_while_connecting")
    return _stream_fault(state, event, event.event_type.value.lower(), MSG_STREAM_DROPPED)


def _on_player_error(state: EngineState, event: PlayerError) -> Result:
    reason = _stream_event_ignored(state)
    if reason is not None:
        return _ignore(state, event, reason)
    if state.status is PlaybackStatus.CONNECTING:
        return _attempt_failed(state, event, f"player_error:{event.reason}", MSG_CONNECT_ERROR)
    return _stream_fault(state, event, f"player_error:{event.reason}", MSG_CONNECT_ERROR)


def _on_player_paused(state: EngineState, event: PlayerEvent) -> Result:
    if state.status not in (PlaybackStatus.PLAYING, PlaybackStatus.BUFFERING):
        return _ignore(state, event, "pause_echo")
    if state.paused_for_foreground_content or state.interrupted:
        return _ignore(state, event, "pause_echo")

    # Paused outside the engine (lock screen, media keys): a user decision
    halted = _halt_stream(state, event.ts_ms)
    new_state = replace(
        halted,
        status=PlaybackStatus.PAUSED,
        user_stopped_manually=True,
        status_message="",
    )
    commands: list[Command] = [
        *_cancel_recovery_timers(),
        StopHeartbeat(),
        *_maybe_arm_background_limit(new_state),
        _telemetry(new_state, "playback_paused", {"source": "player"}),
        _log(new_state, event, "external_pause"),
    ]
    return _finish(state, new_state, event, commands, "external_pause")


def _on_player_command_failed(state: EngineState, event: PlayerCommandFailed) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if state.user_stopped_manually or state.paused_for_foreground_content:
        return _ignore(state, event, "not_auto_reconnecting")
    if state.status is not PlaybackStatus.CONNECTING:
        return _ignore(state, event, "not_connecting")
    message = MSG_SERVER_TIMEOUT if event.reason == "timeout" else MSG_CONNECT_ERROR
    return _attempt_failed(state, event, f"{event.command}:{event.reason}", message)


def _on_connect_timeout(state: EngineState, event: ConnectTimeout) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if state.status is not PlaybackStatus.CONNECTING:
        return _ignore(state, event, "not_connecting")
    return _attempt_failed(state, event, "connect_timeout", MSG_SERVER_TIMEOUT)


# =============================================================================
# Connectivity
# =============================================================================

def _on_connectivity_probed(state: EngineState, event: ConnectivityProbed) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")

    if event.purpose is ProbePurpose.LIVENESS:
        if state.status is not PlaybackStatus.PLAYING or state.user_stopped_manually:
            return _ignore(state, event, "liveness_not_playing")
        if event.reachable:
            return state, (
                _arm_liveness(state),
                _log(state, event, "liveness_ok"),
            )
        return _stream_fault(state, event, "liveness_probe_failed", MSG_NO_CONNECTION)

    if state.user_stopped_manually or state.paused_for_foreground_content:
        return _ignore(state, event, "not_auto_reconnecting")
    if state.status is not PlaybackStatus.CONNECTING:
        return _ignore(state, event, "not_connecting")

    if not event.reachable:
        return _attempt_failed(
            state, event, f"unreachable:{event.detail or 'unknown'}", MSG_NO_CONNECTION
        )

    settle_ms = PLAY_SETTLE_MS if event.purpose is ProbePurpose.PLAY else RECONNECT_SETTLE_MS
    return state, _logs_last((
        *_start_play(state, stop_first=True, settle_ms=settle_ms),
        _log(state, event, "connectivity_ok", {"purpose": event.purpose.value}),
    ))


def _on_liveness_due(state: EngineState, event: LivenessDue) -> Result:
    if _is_stale(state, event.run_id):
        return _ignore(state, event, "stale_run")
    if state.status is not PlaybackStatus.PLAYING or state.user_stopped_manually:
        return _ignore(state, event, "liveness_not_playing")
    return state, (
        ProbeConnectivity(run_id=state.connect_run_id, purpose=ProbePurpose.LIVENESS),
        _log(state, event, "liveness_probe"),
    )


# =============================================================================
# Host / user commands
# =============================================================================

def _direct_play(state: EngineState, event: Event, source: str) -> Result:
    """Reissue play without a probe (resume paths); counters untouched."""
    run_id = state.connect_run_id + 1
    new_state = replace(
        state,
        status=PlaybackStatus.CONNECTING,
        connect_run_id=run_id,
        retry=replace(state.retry, connect_in_flight=True, restart_in_progress=False),
        error_message="",
        status_message="",
    )
    commands: list[Command] = [
        CancelTimer(timer_id=TIMER_RESTART_TEARDOWN),
        AcquireWakeLock(),
        *_start_play(new_state, stop_first=False, settle_ms=0),
        _telemetry(new_state, "playback_resumed", {"source": source}),
        _log(new_state, event, "resume_play", {"source": source}),
    ]
    return _finish(state, new_state, event, commands, source)


def _on_play(state: EngineState, event: Play) -> Result:
    if state.status in (PlaybackStatus.PLAYING, PlaybackStatus.BUFFERING):
        return _ignore(state, event, "already_playing")

    cleared = replace(
        state,
        user_stopped_manually=False,
        paused_for_foreground_content=False,
        resume_after_foreground=False,
        interrupted=False,
    )

    if state.retry.restart_in_progress and state.status is not PlaybackStatus.CONNECTING:
        # The pending teardown timer finishes the restart
        new_state = replace(cleared, status=PlaybackStatus.RESTARTING)
        return _finish(state, new_state, event, [
            AcquireWakeLock(),
            _log(new_state, event, "play_joins_restart"),
        ], "user_play")

    if state.status is PlaybackStatus.CONNECTING and state.retry.connect_in_flight:
        return _finish(state, cleared, event, [
            _log(cleared, event, "play_while_connecting"),
        ], "user_play")

    run_id = state.connect_run_id + 1
    new_state = replace(
        cleared,
        status=PlaybackStatus.CONNECTING,
        connect_run_id=run_id,
        retry=replace(reset_for_manual_play(state.retry), connect_in_flight=True),
        error_message="",
        status_message="",
    )
    commands: list[Command] = [
        CancelTimer(timer_id=TIMER_RECONNECT),
        CancelTimer(timer_id=TIMER_FOREGROUND_SETTLE),
        AcquireWakeLock(),
        ProbeConnectivity(run_id=run_id, purpose=ProbePurpose.PLAY),
        _telemetry(new_state, "play_requested", {"was_terminal": state.retry.terminal}),
        _log(new_state, event, "user_play"),
    ]
    return _finish(state, new_state, event, commands, "user_play")


def _on_pause(state: EngineState, event: Pause) -> Result:
    if state.status is PlaybackStatus.IDLE:
        return _ignore(state, event, "nothing_to_pause")

    halted = _halt_stream(state, event.ts_ms)
    new_state = replace(
        halted,
        status=PlaybackStatus.PAUSED,
        user_stopped_manually=True,
        interrupted=False,
        paused_for_foreground_content=False,
        resume_after_foreground=False,
        error_message="",
        status_message="",
    )
    commands: list[Command] = [
        *_cancel_recovery_timers(),
        CancelTimer(timer_id=TIMER_FOREGROUND_SETTLE),
        PlayerPause(),
        StopHeartbeat(),
        *_maybe_arm_background_limit(new_state),
        _telemetry(new_state, "playback_paused", {"source": "user"}),
        _log(new_state, event, "user_pause"),
    ]
    return _finish(state, new_state, event, commands, "user_pause")


def _on_stop(state: EngineState, event: Stop) -> Result:
    halted = _halt_stream(state, event.ts_ms)
    new_state = replace(
        halted,
        status=PlaybackStatus.IDLE,
        user_stopped_manually=True,
        interrupted=False,
        paused_for_foreground_content=False,
        resume_after_foreground=False,
        error_message="",
        status_message="",
        session=None,
    )
    commands: list[Command] = [
        *_cancel_recovery_timers(),
        CancelTimer(timer_id=TIMER_FOREGROUND_SETTLE),
        CancelTimer(timer_id=TIMER_BACKGROUND_LIMIT),
        PlayerStop(),
        StopHeartbeat(),
    ]
    if state.session is not None:
        commands.append(
            CloseSession(
                reason="user_stop",
                ts_ms=event.ts_ms,
                total_reconnections=state.session.total_reconnections,
            )
        )
    commands.extend([
        ReleaseWakeLock(),
        _telemetry(new_state, "playback_stopped"),
        _log(new_state, event, "user_stop"),
    ])
    return _finish(state, new_state, event, commands, "user_stop")


def _on_force_restart(state: EngineState, event: ForceRestart) -> Result:
    if state.user_stopped_manually:
        return _ignore(state, event, "user_stopped")
    if state.paused_for_foreground_content:
        return _ignore(state, event, "paused_for_foreground_content")
    if state.retry.restart_in_progress:
        return _ignore(state, event, "restart_in_progress")
    new_state, cmds = _force_restart(state, event, [], source="host_request")
    return _finish(state, new_state, event, list(cmds), "force_restart")


def _on_set_volume(state: EngineState, event: SetVolume) -> Result:
    volume = max(0.0, min(1.0, float(event.volume)))
    new_state = replace(state, volume=volume)
    return new_state, (
        PlayerSetVolume(volume=volume),
        _log(new_state, event, "set_volume", {"volume": volume}),
    )


def _on_pause_for_foreground(state: EngineState, event: PauseForForegroundContent) -> Result:
    if state.paused_for_foreground_content:
        return _ignore(state, event, "already_paused_for_foreground_content")

    live = (
        not state.user_stopped_manually
        and not state.retry.terminal
        and state.status in _LIVE_STATUSES
    )
    halted = _halt_stream(state, event.ts_ms)
    new_state = replace(
        halted,
        paused_for_foreground_content=True,
        resume_after_foreground=live,
        status=PlaybackStatus.PAUSED if live else state.status,
        status_message="",
    )
    commands: list[Command] = [
        *_cancel_recovery_timers(),
        CancelTimer(timer_id=TIMER_FOREGROUND_SETTLE),
    ]
    if live:
        commands.extend([PlayerPause(), StopHeartbeat()])
    commands.extend([
        _telemetry(new_state, "foreground_content_pause", {"was_live": live}),
        _log(new_state, event, "pause_for_foreground_content", {"was_live": live}),
    ])
    return _finish(state, new_state, event, commands, "pause_for_foreground_content")


def _on_resume_after_foreground(state: EngineState, event: ResumeAfterForegroundContent) -> Result:
    if not state.paused_for_foreground_content:
        return _ignore(state, event, "not_paused_for_foreground_content")
    return state, (
        StartTimer(
            timer_id=TIMER_FOREGROUND_SETTLE,
            duration_ms=FOREGROUND_RESUME_SETTLE_MS,
            timeout_event_type=EventType.FOREGROUND_SETTLED,
            run_id=state.connect_run_id,
        ),
        _log(state, event, "resume_after_foreground_scheduled"),
    )


def _on_foreground_settled(state: EngineState, event: ForegroundSettled) -> Result:
    if not state.paused_for_foreground_content:
        return _ignore(state, event, "not_paused_for_foreground_content")

    cleared = replace(
        state,
        paused_for_foreground_content=False,
        resume_after_foreground=False,
    )
    if (
        not state.resume_after_foreground
        or state.user_stopped_manually
        or state.interrupted
    ):
        return cleared, (_log(cleared, event, "foreground_cleared_without_resume"),)
    new_state, cmds = _direct_play(cleared, event, "foreground_content_finished")
    return _finish(state, new_state, event, list(cmds), "foreground_content_finished")


# =============================================================================
# Platform audio focus / lifecycle
# =============================================================================

def _on_interruption_began(state: EngineState, event: InterruptionBegan) -> Result:
    if state.user_stopped_manually or state.paused_for_foreground_content:
        return _ignore(state, event, "not_playing")
    if state.retry.terminal or state.status not in _LIVE_STATUSES:
        return _ignore(state, event, "not_playing")
    if state.status is PlaybackStatus.RESTARTING:
        return _ignore(state, event, "restart_teardown")

    halted = _halt_stream(state, event.ts_ms)
    new_state = replace(
        halted,
        status=PlaybackStatus.PAUSED,
        interrupted=True,
        status_message="",
    )
    commands: list[Command] = [
        *_cancel_recovery_timers(),
        PlayerPause(),
        StopHeartbeat(),
        _telemetry(new_state, "audio_interrupted"),
        _log(new_state, event, "interruption_began"),
    ]
    return _finish(state, new_state, event, commands, "interruption_began")


def _on_interruption_ended(state: EngineState, event: InterruptionEnded) -> Result:
    if not state.interrupted:
        return _ignore(state, event, "not_interrupted")

    cleared = replace(state, interrupted=False)
    if (
        state.user_stopped_manually
        or state.paused_for_foreground_content
        or not event.resumable
    ):
        return cleared, _logs_last((
            *_maybe_arm_background_limit(cleared),
            _log(cleared, event, "interruption_ended_without_resume", {
                "resumable": event.resumable,
            }),
        ))
    new_state, cmds = _direct_play(cleared, event, "interruption_ended")
    return _finish(state, new_state, event, list(cmds), "interruption_ended")


def _on_becoming_noisy(state: EngineState, event: BecomingNoisy) -> Result:
    if state.status not in _LIVE_STATUSES and not state.interrupted:
        return _ignore(state, event, "not_playing")
    if state.user_stopped_manually:
        return _ignore(state, event, "user_stopped")

    halted = _halt_stream(state, event.ts_ms)
    # Never auto-resume after the output route changed
    new_state = replace(
        halted,
        status=PlaybackStatus.PAUSED,
        user_stopped_manually=True,
        interrupted=False,
        status_message="",
    )
    commands: list[Command] = [
        *_cancel_recovery_timers(),
        PlayerPause(),
        StopHeartbeat(),
        *_maybe_arm_background_limit(new_state),
        _telemetry(new_state, "becoming_noisy"),
        _log(new_state, event, "becoming_noisy"),
    ]
    return _finish(state, new_state, event, commands, "becoming_noisy")


def _on_app_backgrounded(state: EngineState, event: AppBackgrounded) -> Result:
    if state.backgrounded:
        return _ignore(state, event, "already_backgrounded")
    new_state = replace(state, backgrounded=True)
    commands: list[Command] = []
    if state.status in (PlaybackStatus.BUFFERING,):
        # No progressive messages while nobody can read them
        commands.append(CancelTimer(timer_id=TIMER_BUFFER_CHECK))
    if state.status not in _LIVE_STATUSES or state.retry.terminal:
        commands.extend(_maybe_arm_background_limit(new_state))
    commands.append(_log(new_state, event, "app_backgrounded"))
    return new_state, _logs_last(tuple(commands))


def _on_app_foregrounded(state: EngineState, event: AppForegrounded) -> Result:
    if not state.backgrounded:
        return _ignore(state, event, "already_foregrounded")
    new_state = replace(state, backgrounded=False)
    return new_state, (
        CancelTimer(timer_id=TIMER_BACKGROUND_LIMIT),
        _log(new_state, event, "app_foregrounded"),
    )


def _on_background_limit_reached(state: EngineState, event: BackgroundLimitReached) -> Result:
    if not state.backgrounded:
        return _ignore(state, event, "foregrounded")
    if state.status in _LIVE_STATUSES and not state.retry.terminal:
        return _ignore(state, event, "still_streaming")
    if state.session is None:
        return _ignore(state, event, "no_session")

    new_state = replace(state, session=None)
    return new_state, _logs_last((
        StopHeartbeat(),
        CloseSession(
            reason="background_limit",
            ts_ms=event.ts_ms,
            total_reconnections=state.session.total_reconnections,
        ),
        ReleaseWakeLock(),
        _log(new_state, event, "session_closed_in_background"),
    ))


# =============================================================================
# Reducer
# =============================================================================

def reduce(state: EngineState, event: Event) -> Result:
    """
    Pure reducer for the stream engine.

    Given the current engine state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Version-safe: ignores timer / probe results with stale run IDs
    """
    # ------------------------------------------------------------------
    # Player
    # ------------------------------------------------------------------
    if isinstance(event, PlayerEvent):
        if event.event_type is EventType.PLAYER_PLAYING:
            return _on_player_playing(state, event)
        if event.event_type is EventType.PLAYER_BUFFERING:
            return _on_player_buffering(state, event)
        if event.event_type is EventType.PLAYER_PAUSED:
            return _on_player_paused(state, event)
        if event.event_type in (EventType.PLAYER_IDLE, EventType.PLAYER_COMPLETED):
            return _on_player_stream_end(state, event)
        return _ignore(state, event, "unknown_player_event")

    if isinstance(event, PlayerError):
        return _on_player_error(state, event)

    if isinstance(event, PlayerCommandFailed):
        return _on_player_command_failed(state, event)

    # ------------------------------------------------------------------
    # Host / user
    # ------------------------------------------------------------------
    if isinstance(event, Play):
        return _on_play(state, event)

    if isinstance(event, Pause):
        return _on_pause(state, event)

    if isinstance(event, Stop):
        return _on_stop(state, event)

    if isinstance(event, ForceRestart):
        return _on_force_restart(state, event)

    if isinstance(event, SetVolume):
        return _on_set_volume(state, event)

    if isinstance(event, PauseForForegroundContent):
        return _on_pause_for_foreground(state, event)

    if isinstance(event, ResumeAfterForegroundContent):
        return _on_resume_after_foreground(state, event)

    # ------------------------------------------------------------------
    # Platform
    # ------------------------------------------------------------------
    if isinstance(event, InterruptionBegan):
        return _on_interruption_began(state, event)

    if isinstance(event, InterruptionEnded):
        return _on_interruption_ended(state, event)

    if isinstance(event, BecomingNoisy):
        return _on_becoming_noisy(state, event)

    if isinstance(event, AppBackgrounded):
        return _on_app_backgrounded(state, event)

    if isinstance(event, AppForegrounded):
        return _on_app_foregrounded(state, event)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------
    if isinstance(event, ConnectivityProbed):
        return _on_connectivity_probed(state, event)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    if isinstance(event, ReconnectDue):
        return _attempt_reconnect(state, event)

    if isinstance(event, ReconnectReevaluate):
        return _reevaluate_reconnect(state, event)

    if isinstance(event, ConnectTimeout):
        return _on_connect_timeout(state, event)

    if isinstance(event, BufferCheckTick):
        return _on_buffer_check_tick(state, event)

    if isinstance(event, BufferTimeout):
        return _on_buffer_timeout(state, event)

    if isinstance(event, RestartTeardownElapsed):
        return _restart_teardown_elapsed(state, event)

    if isinstance(event, ForegroundSettled):
        return _on_foreground_settled(state, event)

    if isinstance(event, LivenessDue):
        return _on_liveness_due(state, event)

    if isinstance(event, BackgroundLimitReached):
        return _on_background_limit_reached(state, event)

    if isinstance(event, TimerEvent):
        return _ignore(state, event, "unknown_timer")

    return _ignore(state, event, "unhandled_event")
