"""
Reconnection scheduling tests.

Reducer-only guarantees:
- Backoff grows, then pins at the maximum
- Debounce / cooldown defer instead of dropping the reconnect
- Consecutive errors escalate to a full restart
- User intent (stop / pause / foreground content) always wins
- Terminal exhaustion stops retries until the user presses play
"""

from dataclasses import replace

from constants import MSG_SERVER_TIMEOUT, MSG_TERMINAL, RECONNECT_MAX_DELAY_MS
from engine.commands import (
    CancelTimer,
    LogEvent,
    PlayerPlay,
    PlayerReinitialize,
    PlayerTeardown,
    ProbeConnectivity,
    ReleaseWakeLock,
    StartTimer,
)
from engine.enums.probe_purpose import ProbePurpose
from engine.enums.status import PlaybackStatus
from engine.events import (
    ConnectTimeout,
    EventType,
    ForceRestart,
    ForegroundSettled,
    PauseForForegroundContent,
    Play,
    PlayerError,
    PlayerEvent,
    ReconnectDue,
    ReconnectReevaluate,
    RestartTeardownElapsed,
    ResumeAfterForegroundContent,
    Stop,
)
from engine.reducer import (
    TIMER_FOREGROUND_SETTLE,
    TIMER_RECONNECT,
    TIMER_RESTART_TEARDOWN,
    reduce,
)
from engine.retry import ReconnectPolicy, RetryState
from engine.state_dataclass import EngineState, ListeningSession


def idle_event(ts_ms: int) -> PlayerEvent:
    return PlayerEvent(event_type=EventType.PLAYER_IDLE, ts_ms=ts_ms)


def connect_timeout(run_id: int, ts_ms: int) -> ConnectTimeout:
    return ConnectTimeout(event_type=EventType.CONNECT_TIMEOUT, ts_ms=ts_ms, run_id=run_id)


def reconnect_due(run_id: int, ts_ms: int) -> ReconnectDue:
    return ReconnectDue(event_type=EventType.RECONNECT_DUE, ts_ms=ts_ms, run_id=run_id)


def reconnect_timers(commands) -> list[StartTimer]:
    return [
        c for c in commands
        if isinstance(c, StartTimer) and c.timer_id == TIMER_RECONNECT
    ]


def decisions(commands) -> list[str]:
    return [c.event["decision"] for c in commands if isinstance(c, LogEvent)]


def playing_state() -> EngineState:
    return EngineState(
        status=PlaybackStatus.PLAYING,
        connect_run_id=1,
        session=ListeningSession(start_ts_ms=0),
    )


def connecting_state(**retry_fields) -> EngineState:
    return EngineState(
        status=PlaybackStatus.CONNECTING,
        connect_run_id=2,
        retry=RetryState(connect_in_flight=True, **retry_fields),
    )


# ---------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------

def test_stream_drop_schedules_first_backoff():
    new_state, commands = reduce(playing_state(), idle_event(ts_ms=10_000))

    assert new_state.status is PlaybackStatus.ERROR
    assert new_state.retry.consecutive_error_count == 1
    assert new_state.retry.connect_in_flight

    timers = reconnect_timers(commands)
    assert len(timers) == 1
    assert timers[0].duration_ms == 2_000
    assert timers[0].timeout_event_type is EventType.RECONNECT_DUE
    assert timers[0].run_id == 1


def test_reconnect_due_bumps_run_and_probes():
    state = replace(
        playing_state(),
        status=PlaybackStatus.ERROR,
        retry=RetryState(consecutive_error_count=1, connect_in_flight=True),
    )

    new_state, commands = reduce(state, reconnect_due(run_id=1, ts_ms=50_000))

    assert new_state.status is PlaybackStatus.CONNECTING
    assert new_state.connect_run_id == 2
    assert new_state.retry.attempt_count == 1
    assert new_state.retry.total_attempts == 1
    assert new_state.retry.last_attempt_ts_ms == 50_000
    assert [c for c in commands if isinstance(c, ProbeConnectivity)] == [
        ProbeConnectivity(run_id=2, purpose=ProbePurpose.RECONNECT)
    ]


def test_stale_reconnect_due_is_ignored():
    state = replace(
        playing_state(),
        status=PlaybackStatus.ERROR,
        connect_run_id=3,
        retry=RetryState(connect_in_flight=True),
    )

    new_state, commands = reduce(state, reconnect_due(run_id=2, ts_ms=0))

    assert new_state == state
    assert decisions(commands) == ["ignore"]


def test_debounce_defers_then_reevaluates():
    state = connecting_state(attempt_count=1, total_attempts=1, last_attempt_ts_ms=10_000)

    deferred, commands = reduce(state, connect_timeout(run_id=2, ts_ms=11_000))

    assert deferred.status is PlaybackStatus.ERROR
    assert deferred.error_message == MSG_SERVER_TIMEOUT
    assert deferred.retry.connect_in_flight
    timers = reconnect_timers(commands)
    assert len(timers) == 1
    assert timers[0].duration_ms == 1_000
    assert timers[0].timeout_event_type is EventType.RECONNECT_REEVALUATE

    scheduled, commands = reduce(
        deferred,
        ReconnectReevaluate(event_type=EventType.RECONNECT_REEVALUATE, ts_ms=12_500, run_id=2),
    )

    timers = reconnect_timers(commands)
    assert len(timers) == 1
    assert timers[0].timeout_event_type is EventType.RECONNECT_DUE
    assert timers[0].duration_ms == 4_000
    assert scheduled.retry.connect_in_flight


def test_drop_right_after_recovery_waits_out_the_cooldown():
    state = replace(
        playing_state(),
        retry=RetryState(last_successful_reconnect_ts_ms=10_000),
    )

    deferred, commands = reduce(state, idle_event(ts_ms=12_000))

    assert deferred.status is PlaybackStatus.ERROR
    assert deferred.retry.connect_in_flight
    assert deferred.retry.attempt_count == 0
    timers = reconnect_timers(commands)
    assert len(timers) == 1
    assert timers[0].timeout_event_type is EventType.RECONNECT_REEVALUATE
    assert timers[0].duration_ms == 3_000
    assert "reconnect_deferred" in decisions(commands)

    scheduled, commands = reduce(
        deferred,
        ReconnectReevaluate(event_type=EventType.RECONNECT_REEVALUATE, ts_ms=15_000, run_id=1),
    )

    timers = reconnect_timers(commands)
    assert [t.timeout_event_type for t in timers] == [EventType.RECONNECT_DUE]
    assert timers[0].duration_ms == 2_000
    assert scheduled.retry.connect_in_flight


def test_backoff_pins_at_maximum_and_wraps_counter():
    state = connecting_state(attempt_count=5, total_attempts=5)

    new_state, commands = reduce(state, connect_timeout(run_id=2, ts_ms=100_000))

    timers = reconnect_timers(commands)
    assert timers[0].duration_ms == RECONNECT_MAX_DELAY_MS
    assert new_state.retry.attempt_count == 0
    assert new_state.retry.total_attempts == 5


def test_second_failure_while_reconnect_pending_does_not_double_schedule():
    first, _ = reduce(playing_state(), idle_event(ts_ms=0))

    second, commands = reduce(first, idle_event(ts_ms=100))

    assert second.retry.consecutive_error_count == 2
    assert not reconnect_timers(commands)
    assert "reconnect_suppressed" in decisions(commands)


# ---------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------

def test_four_idle_events_escalate_to_full_restart():
    state = playing_state()
    for i in range(3):
        state, _ = reduce(state, idle_event(ts_ms=i * 100))
        assert state.status is PlaybackStatus.ERROR

    assert state.retry.consecutive_error_count == 3

    restarted, commands = reduce(state, idle_event(ts_ms=300))

    assert restarted.status is PlaybackStatus.RESTARTING
    assert restarted.retry.restart_in_progress
    assert restarted.connect_run_id == state.connect_run_id + 1
    assert any(isinstance(c, PlayerTeardown) for c in commands)
    assert CancelTimer(timer_id=TIMER_RECONNECT) in commands
    teardown_timers = [
        c for c in commands
        if isinstance(c, StartTimer) and c.timer_id == TIMER_RESTART_TEARDOWN
    ]
    assert len(teardown_timers) == 1


def test_restart_reinitializes_with_fresh_counters():
    state = EngineState(
        status=PlaybackStatus.RESTARTING,
        connect_run_id=4,
        volume=0.4,
        retry=RetryState(
            attempt_count=2,
            consecutive_error_count=4,
            total_attempts=6,
            connect_in_flight=True,
            restart_in_progress=True,
        ),
    )

    new_state, commands = reduce(
        state,
        RestartTeardownElapsed(
            event_type=EventType.RESTART_TEARDOWN_ELAPSED, ts_ms=1_000, run_id=4
        ),
    )

    assert new_state.status is PlaybackStatus.CONNECTING
    assert new_state.retry.attempt_count == 0
    assert new_state.retry.consecutive_error_count == 0
    assert new_state.retry.total_attempts == 7
    assert PlayerReinitialize(volume=0.4) in commands
    plays = [c for c in commands if isinstance(c, PlayerPlay)]
    assert plays and plays[0].run_id == 4


def test_stop_during_restart_teardown_aborts_silently():
    state = replace(playing_state(), volume=0.4)

    restarting, _ = reduce(
        state, ForceRestart(event_type=EventType.FORCE_RESTART, ts_ms=1_000)
    )
    assert restarting.status is PlaybackStatus.RESTARTING
    run_id = restarting.connect_run_id

    stopped, _ = reduce(restarting, Stop(event_type=EventType.STOP, ts_ms=1_200))
    assert stopped.status is PlaybackStatus.IDLE

    final, commands = reduce(
        stopped,
        RestartTeardownElapsed(
            event_type=EventType.RESTART_TEARDOWN_ELAPSED, ts_ms=2_000, run_id=run_id
        ),
    )

    assert final.status is PlaybackStatus.IDLE
    assert not final.retry.restart_in_progress
    assert not final.retry.connect_in_flight
    assert decisions(commands) == ["restart_aborted"]
    assert not [c for c in commands if isinstance(c, (PlayerReinitialize, PlayerPlay))]


def test_player_events_during_restart_teardown_are_ignored():
    state = EngineState(
        status=PlaybackStatus.RESTARTING,
        connect_run_id=4,
        retry=RetryState(restart_in_progress=True, connect_in_flight=True),
    )

    new_state, commands = reduce(
        state, PlayerError(event_type=EventType.PLAYER_ERROR, ts_ms=0, reason="eof")
    )

    assert new_state == state
    assert decisions(commands) == ["ignore"]


# ---------------------------------------------------------------------
# User intent
# ---------------------------------------------------------------------

def test_stop_cancels_pending_reconnect():
    failing, _ = reduce(playing_state(), idle_event(ts_ms=0))
    assert failing.retry.connect_in_flight

    stopped, commands = reduce(failing, Stop(event_type=EventType.STOP, ts_ms=500))

    assert stopped.status is PlaybackStatus.IDLE
    assert not stopped.retry.connect_in_flight
    assert CancelTimer(timer_id=TIMER_RECONNECT) in commands

    # A timer that still fires afterwards does nothing
    after, commands = reduce(stopped, reconnect_due(run_id=stopped.connect_run_id, ts_ms=2_000))
    assert after == stopped
    assert decisions(commands) == ["ignore"]


def test_user_stop_suppresses_reconnects_from_player_faults():
    stopped, _ = reduce(playing_state(), Stop(event_type=EventType.STOP, ts_ms=0))

    for event in (
        PlayerError(event_type=EventType.PLAYER_ERROR, ts_ms=10, reason="eof"),
        idle_event(ts_ms=20),
        connect_timeout(run_id=stopped.connect_run_id, ts_ms=30),
    ):
        new_state, commands = reduce(stopped, event)
        assert new_state == stopped
        assert not reconnect_timers(commands)


def test_foreground_content_round_trip_keeps_counters():
    state = connecting_state(attempt_count=2, total_attempts=2, consecutive_error_count=1)

    paused, _ = reduce(
        state,
        PauseForForegroundContent(event_type=EventType.PAUSE_FOR_FOREGROUND, ts_ms=0),
    )
    assert paused.status is PlaybackStatus.PAUSED
    assert paused.resume_after_foreground
    assert not paused.user_stopped_manually

    waiting, commands = reduce(
        paused,
        ResumeAfterForegroundContent(event_type=EventType.RESUME_AFTER_FOREGROUND, ts_ms=1_000),
    )
    assert any(
        isinstance(c, StartTimer) and c.timer_id == TIMER_FOREGROUND_SETTLE for c in commands
    )

    resumed, commands = reduce(
        waiting,
        ForegroundSettled(event_type=EventType.FOREGROUND_SETTLED, ts_ms=1_500, run_id=0),
    )
    assert resumed.status is PlaybackStatus.CONNECTING
    assert not resumed.paused_for_foreground_content
    assert any(isinstance(c, PlayerPlay) for c in commands)

    for field_name in ("attempt_count", "total_attempts", "consecutive_error_count"):
        assert getattr(resumed.retry, field_name) == getattr(state.retry, field_name)


# ---------------------------------------------------------------------
# Terminal exhaustion
# ---------------------------------------------------------------------

def test_exhaustion_enters_terminal_until_play():
    state = replace(
        connecting_state(attempt_count=3, total_attempts=3),
        reconnect_policy=ReconnectPolicy(terminal_max_attempts=3),
    )

    terminal, commands = reduce(state, connect_timeout(run_id=2, ts_ms=100_000))

    assert terminal.status is PlaybackStatus.ERROR
    assert terminal.retry.terminal
    assert terminal.error_message == MSG_TERMINAL
    assert not reconnect_timers(commands)
    assert any(isinstance(c, ReleaseWakeLock) for c in commands)

    # Further faults are ignored while terminal
    same, _ = reduce(
        terminal, PlayerError(event_type=EventType.PLAYER_ERROR, ts_ms=0, reason="eof")
    )
    assert same == terminal

    replayed, commands = reduce(terminal, Play(event_type=EventType.PLAY, ts_ms=200_000))
    assert replayed.status is PlaybackStatus.CONNECTING
    assert not replayed.retry.terminal
    assert replayed.retry.total_attempts == 0
    assert replayed.error_message == ""
    assert any(isinstance(c, ProbeConnectivity) for c in commands)


def test_non_positive_terminal_limit_retries_forever():
    state = replace(
        connecting_state(attempt_count=1, total_attempts=10_000),
        reconnect_policy=ReconnectPolicy(terminal_max_attempts=0),
    )

    new_state, commands = reduce(state, connect_timeout(run_id=2, ts_ms=0))

    assert not new_state.retry.terminal
    assert reconnect_timers(commands)
