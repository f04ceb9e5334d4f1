"""
HTTP connectivity probe.

A lightweight liveness check against the stream endpoint: one HEAD request
with a hard timeout. Any response below PROBE_UNHEALTHY_STATUS_MIN counts
as reachable (streaming servers often reject HEAD with a 4xx while being
perfectly alive); 5xx, transport errors and timeouts count as unreachable.

The probe never raises; failures are folded into ProbeResult.detail.
"""

from __future__ import annotations

import httpx

from constants import PROBE_TIMEOUT_S, PROBE_UNHEALTHY_STATUS_MIN
from engine.runtime_context import ProbeResult


class HttpConnectivityProbe:
    """
    HEAD-request probe.

    A client may be injected (tests use httpx.MockTransport); otherwise a
    short-lived AsyncClient is opened per check.
    """

    def __init__(self, *, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    async def check(self, url: str, *, timeout_s: float = PROBE_TIMEOUT_S) -> ProbeResult:
        try:
            if self._client is not None:
                response = await self._client.head(
                    url, timeout=timeout_s, follow_redirects=True
                )
            else:
                async with httpx.AsyncClient(timeout=timeout_s) as client:
                    response = await client.head(url, follow_redirects=True)
        except httpx.TimeoutException:
            return ProbeResult(reachable=False, detail="timeout")
        except httpx.HTTPError as e:
            return ProbeResult(reachable=False, detail=type(e).__name__)

        if response.status_code >= PROBE_UNHEALTHY_STATUS_MIN:
            return ProbeResult(reachable=False, detail=f"http_{response.status_code}")
        return ProbeResult(reachable=True, detail=f"http_{response.status_code}")
