"""
Wake lock backends.

A wake lock keeps the host from sleeping while the stream plays. It is a
capability, not a requirement: hosts without one get NoWakeLock and the
engine keeps working.
"""

from __future__ import annotations

import asyncio
import shutil
from typing import Protocol

from constants import SUBPROCESS_TERMINATE_GRACE_S


class WakeLockBackend(Protocol):
    async def acquire(self) -> bool: ...
    async def release(self) -> bool: ...


class SystemdInhibitWakeLock:
    """
    Holds a systemd sleep inhibitor for as long as the lock is held.

    The inhibitor lives as long as a `systemd-inhibit ... sleep infinity`
    child process; releasing terminates it.
    """

    def __init__(self, binary: str = "systemd-inhibit") -> None:
        self._binary = binary
        self._proc: asyncio.subprocess.Process | None = None

    @staticmethod
    def available(binary: str = "systemd-inhibit") -> bool:
        return shutil.which(binary) is not None

    async def acquire(self) -> bool:
        if self._proc is not None and self._proc.returncode is None:
            return True
        self._proc = await asyncio.create_subprocess_exec(
            self._binary,
            "--what=sleep:idle",
            "--who=radio-engine",
            "--why=Streaming radio",
            "--mode=block",
            "sleep", "infinity",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        return True

    async def release(self) -> bool:
        proc = self._proc
        self._proc = None
        if proc is None or proc.returncode is not None:
            return True
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=SUBPROCESS_TERMINATE_GRACE_S)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
        return True
