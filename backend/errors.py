"""
Domain exceptions.

Raised inside adapters and collaborators; always caught at the runtime /
service boundary. Nothing here ever escapes the engine.
"""

from __future__ import annotations


class RadioEngineError(Exception):
    """Base class for all engine-side failures."""


class PlayerCommandError(RadioEngineError):
    """An underlying player command failed or timed out."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"{command}: {reason}")
        self.command = command
        self.reason = reason


class RemoteConfigError(RadioEngineError):
    """Remote configuration could not be fetched or parsed."""
