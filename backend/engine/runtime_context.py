"""
Runtime execution context.

Provides Runtime with the imperative collaborators needed for command
execution (player factory, probe, platform bridge, telemetry reporter,
status publisher).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero engine logic
- Zero state mutation
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

from constants import PLATFORM_CALL_TIMEOUT_S, PLAYER_COMMAND_TIMEOUT_S, PROBE_TIMEOUT_S

if TYPE_CHECKING:
    from engine.events import Event
    from engine.status_snapshot import StatusSnapshot


EventSink = Callable[["Event"], Awaitable[None]]


# ---------------------------------------------------------------------
# Player
# ---------------------------------------------------------------------

@runtime_checkable
class PlayerProtocol(Protocol):
    """
    Underlying stream player.

    Contract:
    - Every method may raise; runtime converts failures into events
    - State transitions are reported through the EventSink given at
      construction (PlayerEvent / PlayerError)
    """

    async def set_url(self, url: str) -> None: ...
    async def play(self) -> None: ...
    async def pause(self) -> None: ...
    async def stop(self) -> None: ...
    async def set_volume(self, volume: float) -> None: ...
    async def dispose(self) -> None: ...


PlayerFactory = Callable[[EventSink], PlayerProtocol]


# ---------------------------------------------------------------------
# Connectivity probe
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ProbeResult:
    reachable: bool
    detail: str | None = None


@runtime_checkable
class ConnectivityProbeProtocol(Protocol):
    async def check(self, url: str, *, timeout_s: float) -> ProbeResult: ...


# ---------------------------------------------------------------------
# Platform bridge
# ---------------------------------------------------------------------

@runtime_checkable
class PlatformBridgeProtocol(Protocol):
    async def acquire_wake_lock(self) -> bool: ...
    async def release_wake_lock(self) -> bool: ...


# ---------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------

@runtime_checkable
class TelemetryReporterProtocol(Protocol):
    """All methods are fire-and-forget and must never raise."""

    def emit(self, name: str, properties: dict[str, Any]) -> None: ...
    def open_session(self, start_ts_ms: int) -> None: ...
    def close_session(self, *, reason: str, ts_ms: int, total_reconnections: int) -> None: ...
    def start_heartbeat(self, properties: Callable[[], dict[str, Any]]) -> None: ...
    async def stop_heartbeat(self) -> None: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

@dataclass
class RuntimeExecutionContext:
    """
    Imperative execution context for Runtime.

    Runtime is allowed to:
    - Create, drive and dispose players
    - Run probes and platform calls
    - Report telemetry and publish status

    Runtime is NOT allowed to:
    - Make engine decisions (that is the reducer's job)
    """

    player_factory: PlayerFactory
    probe: ConnectivityProbeProtocol
    bridge: PlatformBridgeProtocol
    reporter: TelemetryReporterProtocol
    publish: Callable[["StatusSnapshot"], None] | None = None

    probe_timeout_s: float = PROBE_TIMEOUT_S
    player_command_timeout_s: float = PLAYER_COMMAND_TIMEOUT_S
    platform_call_timeout_s: float = PLATFORM_CALL_TIMEOUT_S
