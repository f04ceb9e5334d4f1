"""
Remote stream configuration.

The stream URL may be supplied by a remote key-value JSON document. It is
resolved exactly once, before the first connect; on absence, error,
timeout or a missing/invalid key the compiled-in default is used.
"""

from __future__ import annotations

from typing import Any

import httpx

from constants import REMOTE_CONFIG_STREAM_URL_KEY, REMOTE_CONFIG_TIMEOUT_S
from errors import RemoteConfigError
from observability.logger import log_event


async def fetch_remote_config(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_s: float = REMOTE_CONFIG_TIMEOUT_S,
) -> dict[str, Any]:
    """
    GET the remote document and return it as a dict.

    Raises:
        RemoteConfigError on transport errors, timeouts, non-2xx responses
        or a body that is not a JSON object.
    """
    try:
        if client is not None:
            response = await client.get(url, timeout=timeout_s)
        else:
            async with httpx.AsyncClient(timeout=timeout_s) as owned:
                response = await owned.get(url)
        response.raise_for_status()
        data = response.json()
    except httpx.TimeoutException as e:
        raise RemoteConfigError(f"timeout after {timeout_s}s") from e
    except httpx.HTTPError as e:
        raise RemoteConfigError(f"{type(e).__name__}: {e}") from e
    except ValueError as e:
        raise RemoteConfigError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RemoteConfigError(f"expected a JSON object, got {type(data).__name__}")
    return data


async def resolve_stream_url(
    config_url: str | None,
    default_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_s: float = REMOTE_CONFIG_TIMEOUT_S,
) -> str:
    """Return the remote stream URL, or default_url when unavailable."""
    if not config_url:
        return default_url

    try:
        data = await fetch_remote_config(config_url, client=client, timeout_s=timeout_s)
        value = data.get(REMOTE_CONFIG_STREAM_URL_KEY)
        if not isinstance(value, str) or not value.strip():
            raise RemoteConfigError(f"missing key {REMOTE_CONFIG_STREAM_URL_KEY!r}")
    except RemoteConfigError as exc:
        log_event({
            "event_type": "REMOTE_CONFIG_FALLBACK",
            "config_url": config_url,
            "reason": str(exc),
            "stream_url": default_url,
        })
        return default_url

    stream_url = value.strip()
    log_event({
        "event_type": "REMOTE_CONFIG_RESOLVED",
        "config_url": config_url,
        "stream_url": stream_url,
    })
    return stream_url
