"""
ffplay subprocess player.

Plays a network stream by spawning `ffplay -nodisp` and watching its
status line on stderr.

Event model:
- play() spawns the process and reports PLAYING/LOADING
- the first status line with a non-empty audio queue reports PLAYING/READY
- a run of empty-queue status lines reports BUFFERING; the next
  non-empty line reports PLAYING/READY again
- an unrequested process exit reports COMPLETED (exit code 0) or a
  PlayerError carrying the exit code and the last stderr line

Live streams cannot be paused at the source, so pause() ends the process
like stop() but reports PAUSED. Volume is applied at spawn time; changing
it while playing respawns the process.
"""

from __future__ import annotations

import asyncio
import re

from adapters.player.base import EmitEvent, StreamPlayer
from constants import FFPLAY_EMPTY_QUEUE_LINES, SUBPROCESS_TERMINATE_GRACE_S
from engine.enums.player_state import ProcessingState
from engine.events import EventType
from errors import PlayerCommandError
from observability.logger import log_event

_AUDIO_QUEUE_RE = re.compile(r"aq=\s*(\d+)\s*([KMG]?B)")


class FFplayPlayer(StreamPlayer):
    """
    Subprocess-backed player.

    Design:
    - At most one ffplay process at a time
    - One reader task per process parses stderr and emits events
    - Intentional stops are never reported as stream faults
    """

    def __init__(self, *, emit_event: EmitEvent, binary: str = "ffplay") -> None:
        super().__init__(emit_event=emit_event)
        self._binary = binary
        self._url: str | None = None
        self._volume = 1.0

        self._proc: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._intentional_exit = False

    # ------------------------------------------------------------------
    # Public API (StreamPlayer contract)
    # ------------------------------------------------------------------

    async def set_url(self, url: str) -> None:
        self._url = url

    async def play(self) -> None:
        if self._disposed:
            raise PlayerCommandError("play", "player disposed")
        if self._url is None:
            raise PlayerCommandError("play", "no source selected")
        if self._proc is not None and self._proc.returncode is None:
            return

        await self._spawn()
        await self._emit_state(EventType.PLAYER_PLAYING, ProcessingState.LOADING)

    async def pause(self) -> None:
        if await self._terminate():
            await self._emit_state(EventType.PLAYER_PAUSED)

    async def stop(self) -> None:
        await self._terminate()

    async def set_volume(self, volume: float) -> None:
        volume = max(0.0, min(1.0, volume))
        if volume == self._volume:
            return
        self._volume = volume
        if self._proc is not None and self._proc.returncode is None:
            await self._terminate()
            await self._spawn()

    async def dispose(self) -> None:
        if self._disposed:
            return
        try:
            await self._terminate()
        finally:
            self._disposed = True

    # ------------------------------------------------------------------
    # Process management
    # ------------------------------------------------------------------

    def _command(self) -> list[str]:
        assert self._url is not None
        return [
            self._binary,
            "-nodisp",
            "-hide_banner",
            "-loglevel", "info",
            "-volume", str(round(self._volume * 100)),
            self._url,
        ]

    async def _spawn(self) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise PlayerCommandError("play", f"cannot start {self._binary}: {exc}") from exc

        self._intentional_exit = False
        self._proc = proc
        self._reader = asyncio.create_task(self._read_status(proc))
        log_event({
            "event_type": "FFPLAY_SPAWNED",
            "pid": proc.pid,
            "volume": self._volume,
        })

    async def _terminate(self) -> bool:
        """Stop the current process; returns True if one was running."""
        proc = self._proc
        reader = self._reader
        self._proc = None
        self._reader = None
        if proc is None:
            return False

        self._intentional_exit = True
        running = proc.returncode is None
        if running:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=SUBPROCESS_TERMINATE_GRACE_S)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        return running

    # ------------------------------------------------------------------
    # Status parsing
    # ------------------------------------------------------------------

    async def _read_status(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        ready = False
        empty_lines = 0
        last_line = ""
        pending = b""

        while True:
            chunk = await proc.stderr.read(4096)
            if not chunk:
                break
            pending += chunk
            # Status lines are terminated by \r, log lines by \n
            *lines, pending = re.split(rb"[\r\n]", pending)
            for raw in lines:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                last_line = line
                queued = _audio_queue_bytes(line)
                if queued is None:
                    continue
                if queued > 0:
                    empty_lines = 0
                    if not ready:
                        ready = True
                        await self._emit_state(
                            EventType.PLAYER_PLAYING, ProcessingState.READY
                        )
                elif ready:
                    empty_lines += 1
                    if empty_lines == FFPLAY_EMPTY_QUEUE_LINES:
                        ready = False
                        await self._emit_state(
                            EventType.PLAYER_BUFFERING, ProcessingState.BUFFERING
                        )

        code = await proc.wait()
        if self._intentional_exit or proc is not self._proc:
            return

        self._proc = None
        self._reader = None
        log_event({
            "event_type": "FFPLAY_EXITED",
            "pid": proc.pid,
            "returncode": code,
            "last_line": last_line,
        })
        if code == 0:
            await self._emit_state(EventType.PLAYER_COMPLETED, ProcessingState.COMPLETED)
        else:
            await self._emit_error(f"exit {code}: {last_line}"[:200])


def _audio_queue_bytes(line: str) -> int | None:
    """Audio queue size from an ffplay status line, None if absent."""
    match = _AUDIO_QUEUE_RE.search(line)
    if match is None:
        return None
    value = int(match.group(1))
    unit = match.group(2)
    scale = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}[unit]
    return value * scale
