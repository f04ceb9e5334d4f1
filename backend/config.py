"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No engine logic
- No policy constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_STREAM_URL,
    RECONNECT_MAX_RETRIES,
    RECONNECT_RESTART_THRESHOLD,
    RECONNECT_TERMINAL_MAX_ATTEMPTS,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the service / server bootstrap code.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    stream_url: str
    remote_config_url: str | None

    # ------------------------------------------------------------------
    # Player
    # ------------------------------------------------------------------

    player_backend: str
    ffplay_binary: str

    # ------------------------------------------------------------------
    # Reconnection policy overrides
    # ------------------------------------------------------------------

    max_retries: int
    restart_threshold: int
    terminal_max_attempts: int

    # ------------------------------------------------------------------
    # Control server
    # ------------------------------------------------------------------

    host: str
    port: int

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            stream_url=os.environ.get("STREAM_URL", DEFAULT_STREAM_URL),
            remote_config_url=os.environ.get("REMOTE_CONFIG_URL") or None,

            player_backend=os.environ.get("PLAYER_BACKEND", "ffplay"),
            ffplay_binary=os.environ.get("FFPLAY_BINARY", "ffplay"),

            max_retries=int(
                os.environ.get("RECONNECT_MAX_RETRIES", RECONNECT_MAX_RETRIES)
            ),
            restart_threshold=int(
                os.environ.get(
                    "RECONNECT_RESTART_THRESHOLD", RECONNECT_RESTART_THRESHOLD
                )
            ),
            terminal_max_attempts=int(
                os.environ.get(
                    "RECONNECT_TERMINAL_MAX_ATTEMPTS",
                    RECONNECT_TERMINAL_MAX_ATTEMPTS,
                )
            ),

            host=os.environ.get("HOST", DEFAULT_HTTP_HOST),
            port=int(os.environ.get("PORT", DEFAULT_HTTP_PORT)),
        )
