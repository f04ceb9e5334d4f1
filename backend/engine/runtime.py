"""
Runtime execution shell for the stream engine.

Responsibilities:
- Own engine state
- Call pure reducer, one event at a time
- Execute commands with side effects (player, probe, platform, telemetry)
- Schedule and cancel timers
- Convert timer expiry and I/O results into events
- Publish the observable status snapshot when it changes
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Awaitable, Callable

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
from engine.events import (
    BackgroundLimitReached,
    BufferCheckTick,
    BufferTimeout,
    ConnectivityProbed,
    ConnectTimeout,
    Event,
    EventType,
    ForegroundSettled,
    LivenessDue,
    PlayerCommandFailed,
    ReconnectDue,
    ReconnectReevaluate,
    RestartTeardownElapsed,
    TimerEvent,
)
from engine.reducer import reduce
from engine.runtime_context import ProbeResult
from engine.state_dataclass import EngineState
from engine.status_snapshot import StatusSnapshot, snapshot_of
from observability.logger import log_event
from observability.metrics import timed

if TYPE_CHECKING:
    from engine.runtime_context import EventSink, PlayerProtocol, RuntimeExecutionContext


_PLAYER_COMMANDS = (
    PlayerPlay,
    PlayerPause,
    PlayerStop,
    PlayerSetVolume,
    PlayerTeardown,
    PlayerReinitialize,
)

_TIMER_EVENTS: dict[EventType, type[TimerEvent]] = {
    EventType.RECONNECT_DUE: ReconnectDue,
    EventType.RECONNECT_REEVALUATE: ReconnectReevaluate,
    EventType.CONNECT_TIMEOUT: ConnectTimeout,
    EventType.BUFFER_CHECK_TICK: BufferCheckTick,
    EventType.BUFFER_TIMEOUT: BufferTimeout,
    EventType.RESTART_TEARDOWN_ELAPSED: RestartTeardownElapsed,
    EventType.FOREGROUND_SETTLED: ForegroundSettled,
    EventType.LIVENESS_DUE: LivenessDue,
    EventType.BACKGROUND_LIMIT_REACHED: BackgroundLimitReached,
}


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class Runtime:
    """
    Runtime execution boundary for the stream engine.

    Responsibilities:
    - Own the authoritative engine state
    - Act as the universal event sink (host commands, player events,
      probe results, timer expiry)
    - Invoke the pure reducer deterministically
    - Execute emitted commands with side effects

    Guarantees:
    - Reducer is called exactly once per incoming event, strictly in
      arrival order; re-entrant handle_event calls only enqueue
    - All side effects occur *after* state has been updated
    - Player I/O runs on a single ordered worker task and probes run as
      their own tasks, so neither can block event reception
    - No exception from a collaborator escapes the runtime
    """

    def __init__(
        self,
        *,
        initial_state: EngineState,
        context: RuntimeExecutionContext,
    ) -> None:
        self._state = initial_state
        self._ctx = context

        # (event, future resolved once its commands have run)
        self._inbox: deque[tuple[Event, asyncio.Future[None] | None]] = deque()
        self._processing = False
        self._drain_task: asyncio.Task[Any] | None = None

        self._timers: dict[str, asyncio.Task[None]] = {}
        self._probes: set[asyncio.Task[None]] = set()

        self._player: PlayerProtocol | None = None
        self._player_generation = 0
        self._player_queue: asyncio.Queue[Command] | None = None
        self._player_pending = 0
        self._player_worker: asyncio.Task[None] | None = None

        self._wake_lock_held = False
        self._last_snapshot = snapshot_of(initial_state)
        self._shut_down = False

    @property
    def state(self) -> EngineState:
        """
        Return the current immutable engine state.

        Consumers must treat it as read-only; only the reducer produces
        new states.
        """
        return self._state

    @property
    def snapshot(self) -> StatusSnapshot:
        return self._last_snapshot

    @property
    def wake_lock_held(self) -> bool:
        return self._wake_lock_held

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    async def handle_event(self, event: Event) -> None:
        """
        Process an event through the engine pipeline.

        Processing steps (per event):
        1. Pass the current state and event to the pure reducer
        2. Swap in the new engine state
        3. Publish the status snapshot if it changed
        4. Execute all emitted commands in order

        All event sources converge here. When an event arrives while
        another is being processed (from a timer, a probe or a command
        awaiting I/O), it is queued and processed by the active caller;
        the caller still returns only after its own event was handled,
        so a snapshot read afterwards reflects it. Calls made from the
        processing task itself only enqueue.
        """
        if self._shut_down:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "EVENT_AFTER_SHUTDOWN",
                "dropped_event_type": event.event_type.value,
            })
            return

        if self._processing:
            if asyncio.current_task() is self._drain_task:
                self._inbox.append((event, None))
                return
            done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._inbox.append((event, done))
            await done
            return

        self._inbox.append((event, None))
        self._processing = True
        self._drain_task = asyncio.current_task()
        try:
            while self._inbox:
                next_event, waiter = self._inbox.popleft()
                try:
                    new_state, commands = reduce(self._state, next_event)
                    self._state = new_state
                    self._publish_if_changed()

                    for cmd in commands:
                        await self._execute_command(cmd)
                finally:
                    if waiter is not None and not waiter.done():
                        waiter.set_result(None)
        finally:
            self._processing = False
            self._drain_task = None
            # Processing stopped early: release waiters, keep their events
            # for the next caller
            for _, waiter in self._inbox:
                if waiter is not None and not waiter.done():
                    waiter.set_result(None)
            self._inbox = deque((queued, None) for queued, _ in self._inbox)

    async def wait_idle(self) -> None:
        """
        Wait until queued player commands and in-flight probes finished.

        Timers are not awaited.
        """
        while True:
            pending = [t for t in self._probes if not t.done()]
            if not pending and self._player_pending == 0 and not self._inbox:
                return
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            if self._player_queue is not None and self._player_pending:
                await self._player_queue.join()
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        """
        Dispose everything the runtime owns.

        Idempotent. Every step runs even if an earlier step failed:
        cancel timers and probes, flush the open session, stop the
        heartbeat, release the wake lock, dispose the player.
        """
        if self._shut_down:
            return
        self._shut_down = True

        steps: tuple[tuple[str, Callable[[], Awaitable[None]]], ...] = (
            ("cancel_tasks", self._cancel_all_tasks),
            ("close_session", self._close_session_on_shutdown),
            ("stop_heartbeat", self._ctx.reporter.stop_heartbeat),
            ("release_wake_lock", self._release_wake_lock),
            ("dispose_player", self._shutdown_player),
        )
        for name, step in steps:
            try:
                await step()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "SHUTDOWN_STEP_FAILED",
                    "step": name,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                })

        log_event({"ts_ms": _now_ms(), "event_type": "RUNTIME_SHUTDOWN"})

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event(cmd.event)

        elif isinstance(cmd, _PLAYER_COMMANDS):
            self._enqueue_player_command(cmd)

        elif isinstance(cmd, ProbeConnectivity):
            task = asyncio.create_task(self._run_probe(cmd))
            self._probes.add(task)
            task.add_done_callback(self._probes.discard)

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
                run_id=cmd.run_id,
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        elif isinstance(cmd, AcquireWakeLock):
            if not self._wake_lock_held:
                self._wake_lock_held = await self._bridge_call(
                    "acquire_wake_lock", self._ctx.bridge.acquire_wake_lock
                )

        elif isinstance(cmd, ReleaseWakeLock):
            await self._release_wake_lock()

        elif isinstance(cmd, OpenSession):
            self._ctx.reporter.open_session(cmd.start_ts_ms)

        elif isinstance(cmd, CloseSession):
            self._ctx.reporter.close_session(
                reason=cmd.reason,
                ts_ms=cmd.ts_ms,
                total_reconnections=cmd.total_reconnections,
            )

        elif isinstance(cmd, StartHeartbeat):
            self._ctx.reporter.start_heartbeat(self._heartbeat_properties)

        elif isinstance(cmd, StopHeartbeat):
            await self._ctx.reporter.stop_heartbeat()

        elif isinstance(cmd, EmitTelemetry):
            self._ctx.reporter.emit(cmd.name, cmd.properties)

        else:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "COMMAND_NOT_HANDLED",
                "command_type": type(cmd).__name__,
            })

    def _publish_if_changed(self) -> None:
        snapshot = snapshot_of(self._state)
        if snapshot == self._last_snapshot:
            return
        self._last_snapshot = snapshot
        if self._ctx.publish is None:
            return
        try:
            self._ctx.publish(snapshot)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "STATUS_PUBLISH_FAILED",
                "error_type": type(exc).__name__,
                "error": str(exc),
            })

    def _heartbeat_properties(self) -> dict[str, Any]:
        state = self._state
        return {
            "status": state.status.value,
            "buffer_health": state.buffer.health,
            "stability_score": round(state.buffer.stability_score, 3),
            "degraded": state.buffer.degraded,
            "session_start_ts_ms": (
                state.session.start_ts_ms if state.session is not None else None
            ),
            "total_reconnections": (
                state.session.total_reconnections if state.session is not None else 0
            ),
            "backgrounded": state.backgrounded,
        }

    # ------------------------------------------------------------------
    # Platform bridge
    # ------------------------------------------------------------------

    async def _bridge_call(
        self,
        name: str,
        call: Callable[[], Awaitable[bool]],
    ) -> bool:
        """Best-effort platform call; failure is logged and reported as False."""
        try:
            ok = bool(
                await asyncio.wait_for(call(), timeout=self._ctx.platform_call_timeout_s)
            )
        except asyncio.TimeoutError:
            ok = False
            reason = "timeout"
        except Exception as exc:  # pylint: disable=broad-exception-caught
            ok = False
            reason = f"{type(exc).__name__}: {exc}"
        else:
            reason = None if ok else "unavailable"

        if not ok:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "PLATFORM_CALL_FAILED",
                "call": name,
                "reason": reason,
            })
        return ok

    async def _release_wake_lock(self) -> None:
        if not self._wake_lock_held:
            return
        self._wake_lock_held = False
        await self._bridge_call("release_wake_lock", self._ctx.bridge.release_wake_lock)

    # ------------------------------------------------------------------
    # Player worker
    # ------------------------------------------------------------------

    def _enqueue_player_command(self, cmd: Command) -> None:
        if self._player_queue is None:
            self._player_queue = asyncio.Queue()
            self._player_worker = asyncio.create_task(self._player_worker_loop())
        self._player_pending += 1
        self._player_queue.put_nowait(cmd)

    async def _player_worker_loop(self) -> None:
        queue = self._player_queue
        assert queue is not None
        while True:
            cmd = await queue.get()
            try:
                await self._run_player_command(cmd)
            finally:
                self._player_pending -= 1
                queue.task_done()

    async def _run_player_command(self, cmd: Command) -> None:
        """Run one player command under a hard timeout; never raises."""
        name = cmd.command_type.value
        reason: str | None = None
        try:
            with timed(
                "player_command",
                state=self._state.status.value,
                details={"command": name},
            ):
                await asyncio.wait_for(
                    self._apply_player_command(cmd),
                    timeout=self._ctx.player_command_timeout_s,
                )
        except asyncio.TimeoutError:
            reason = "timeout"
        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = f"{type(exc).__name__}: {exc}"

        if reason is None:
            return

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "PLAYER_COMMAND_FAILED",
            "command": name,
            "reason": reason,
            "status": self._state.status.value,
        })
        if isinstance(cmd, (PlayerPlay, PlayerReinitialize)):
            await self.handle_event(
                PlayerCommandFailed(
                    event_type=EventType.PLAYER_COMMAND_FAILED,
                    ts_ms=_now_ms(),
                    run_id=(
                        cmd.run_id if isinstance(cmd, PlayerPlay)
                        else self._state.connect_run_id
                    ),
                    command=name,
                    reason=reason,
                )
            )

    async def _apply_player_command(self, cmd: Command) -> None:
        if isinstance(cmd, PlayerPlay):
            if cmd.run_id != self._state.connect_run_id:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "PLAYER_PLAY_SKIPPED_STALE",
                    "run_id": cmd.run_id,
                    "connect_run_id": self._state.connect_run_id,
                })
                return
            player = await self._ensure_player()
            if cmd.stop_first:
                await player.stop()
                if cmd.settle_ms > 0:
                    await asyncio.sleep(cmd.settle_ms / 1000.0)
            await player.set_url(cmd.url)
            await player.play()

        elif isinstance(cmd, PlayerPause):
            if self._player is not None:
                await self._player.pause()

        elif isinstance(cmd, PlayerStop):
            if self._player is not None:
                await self._player.stop()

        elif isinstance(cmd, PlayerSetVolume):
            if self._player is not None:
                await self._player.set_volume(cmd.volume)

        elif isinstance(cmd, PlayerTeardown):
            await self._dispose_player()

        elif isinstance(cmd, PlayerReinitialize):
            await self._dispose_player()
            player = await self._ensure_player()
            await player.set_volume(cmd.volume)

    async def _ensure_player(self) -> PlayerProtocol:
        """Create the player lazily; a torn-down player is rebuilt on demand."""
        if self._player is not None:
            return self._player
        self._player_generation += 1
        player = self._ctx.player_factory(self._player_sink(self._player_generation))
        self._player = player
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "PLAYER_CREATED",
            "generation": self._player_generation,
        })
        await player.set_volume(self._state.volume)
        return player

    def _player_sink(self, generation: int) -> EventSink:
        """Event callback bound to one player instance."""

        async def _emit(event: Event) -> None:
            if generation != self._player_generation or self._player is None:
                # Events from a disposed player are detached
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "PLAYER_EVENT_DETACHED",
                    "generation": generation,
                    "dropped_event_type": event.event_type.value,
                })
                return
            await self.handle_event(event)

        return _emit

    async def _dispose_player(self) -> None:
        player = self._player
        self._player = None
        self._player_generation += 1
        if player is None:
            return
        try:
            await player.stop()
        finally:
            await player.dispose()

    async def _shutdown_player(self) -> None:
        worker = self._player_worker
        self._player_worker = None
        try:
            if worker is not None and not worker.done():
                worker.cancel()
                await asyncio.gather(worker, return_exceptions=True)
        finally:
            await asyncio.wait_for(
                self._dispose_player(), timeout=self._ctx.player_command_timeout_s
            )

    # ------------------------------------------------------------------
    # Connectivity probe
    # ------------------------------------------------------------------

    async def _run_probe(self, cmd: ProbeConnectivity) -> None:
        url = self._state.stream_url
        try:
            with timed(
                "connectivity_probe",
                state=self._state.status.value,
                details={"purpose": cmd.purpose.value},
            ):
                result = await asyncio.wait_for(
                    self._ctx.probe.check(url, timeout_s=self._ctx.probe_timeout_s),
                    timeout=self._ctx.probe_timeout_s,
                )
        except asyncio.TimeoutError:
            result = ProbeResult(reachable=False, detail="timeout")
        except Exception as exc:  # pylint: disable=broad-exception-caught
            result = ProbeResult(reachable=False, detail=type(exc).__name__)

        await self.handle_event(
            ConnectivityProbed(
                event_type=EventType.CONNECTIVITY_PROBED,
                ts_ms=_now_ms(),
                run_id=cmd.run_id,
                purpose=cmd.purpose,
                reachable=result.reachable,
                detail=result.detail,
            )
        )

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
        run_id: int,
    ) -> None:
        """
        Start or replace a timer that emits a timeout event.

        Timer tasks re-enter handle_event() when they expire,
        maintaining the single event entry point invariant.
        """
        self._cancel_timer(timer_id)

        event_cls = _TIMER_EVENTS.get(timeout_event_type)
        if event_cls is None:
            raise ValueError(
                f"Unknown timeout event type: {timeout_event_type} "
                f"for timer_id: {timer_id}"
            )

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
            except asyncio.CancelledError:
                return

            # A fired timer is no longer pending; rearming must not cancel it
            if self._timers.get(timer_id) is asyncio.current_task():
                del self._timers[timer_id]

            await self.handle_event(
                event_cls(
                    event_type=timeout_event_type,
                    ts_ms=_now_ms(),
                    run_id=run_id,
                )
            )

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _cancel_all_tasks(self) -> None:
        current = asyncio.current_task()
        pending: list[asyncio.Task[None]] = []
        for timer_id in list(self._timers):
            task = self._timers.get(timer_id)
            self._cancel_timer(timer_id)
            if task is not None and task is not current:
                pending.append(task)
        for task in list(self._probes):
            if task is not current:
                task.cancel()
                pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _close_session_on_shutdown(self) -> None:
        session = self._state.session
        if session is None:
            return
        self._ctx.reporter.close_session(
            reason="dispose",
            ts_ms=_now_ms(),
            total_reconnections=session.total_reconnections,
        )
