"""
HTTP-facing adapters: remote stream config and the connectivity probe.

All requests go through httpx.MockTransport; nothing leaves the process.
"""

import asyncio
from typing import Callable

import httpx
import pytest

from adapters.probe.connectivity import HttpConnectivityProbe
from errors import RemoteConfigError
from service.remote_config import fetch_remote_config, resolve_stream_url

DEFAULT_URL = "http://default.test/stream"
CONFIG_URL = "http://config.test/radio.json"


def client_for(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def resolve_with(handler: Callable[[httpx.Request], httpx.Response]) -> str:
    async def scenario() -> str:
        async with client_for(handler) as client:
            return await resolve_stream_url(CONFIG_URL, DEFAULT_URL, client=client)

    return asyncio.run(scenario())


# ---------------------------------------------------------------------
# Remote config
# ---------------------------------------------------------------------

def test_remote_url_is_used_when_present():
    url = resolve_with(
        lambda request: httpx.Response(200, json={"stream_url": " http://remote.test/live "})
    )

    assert url == "http://remote.test/live"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="oops"),
        httpx.Response(200, json={"other_key": 1}),
        httpx.Response(200, json={"stream_url": ""}),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, text="{not json"),
    ],
)
def test_falls_back_to_default(response: httpx.Response):
    assert resolve_with(lambda request: response) == DEFAULT_URL


def test_transport_error_falls_back_to_default():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert resolve_with(handler) == DEFAULT_URL


def test_no_config_url_skips_the_request():
    async def scenario() -> str:
        return await resolve_stream_url(None, DEFAULT_URL)

    assert asyncio.run(scenario()) == DEFAULT_URL


def test_fetch_raises_typed_error():
    async def scenario() -> None:
        async with client_for(lambda request: httpx.Response(404)) as client:
            await fetch_remote_config(CONFIG_URL, client=client)

    with pytest.raises(RemoteConfigError):
        asyncio.run(scenario())


# ---------------------------------------------------------------------
# Connectivity probe
# ---------------------------------------------------------------------

def probe_with(handler: Callable[[httpx.Request], httpx.Response]):
    async def scenario():
        async with client_for(handler) as client:
            return await HttpConnectivityProbe(client=client).check(DEFAULT_URL, timeout_s=1.0)

    return asyncio.run(scenario())


def test_probe_uses_head_and_accepts_client_errors():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        return httpx.Response(405)

    result = probe_with(handler)

    assert seen == ["HEAD"]
    assert result.reachable
    assert result.detail == "http_405"


def test_probe_server_error_is_unreachable():
    result = probe_with(lambda request: httpx.Response(503))

    assert not result.reachable
    assert result.detail == "http_503"


def test_probe_timeout_is_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    result = probe_with(handler)

    assert not result.reachable
    assert result.detail == "timeout"
