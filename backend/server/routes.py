"""
Route registration for the radio control API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Translate requests into RadioService calls
- Pull the service from app.state
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from observability.logger import log_event
from service.radio_service import RadioService


class VolumeRequest(BaseModel):
    volume: float = Field(ge=0.0, le=1.0)


class InterruptionEndRequest(BaseModel):
    resumable: bool = True


_PLATFORM_SIGNALS = (
    "interruption-begin",
    "interruption-end",
    "noisy",
    "background",
    "foreground",
)


def _radio(request: Request) -> RadioService:
    return request.app.state.radio


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.get("/health")
    async def health() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/status")
    async def status(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        return _radio(request).diagnostics()

    # ------------------------------------------------------------------
    # Playback commands
    # ------------------------------------------------------------------

    @app.post("/play")
    async def play(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        radio = _radio(request)
        await radio.play()
        return radio.snapshot.to_dict()

    @app.post("/pause")
    async def pause(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        radio = _radio(request)
        await radio.pause()
        return radio.snapshot.to_dict()

    @app.post("/stop")
    async def stop(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        radio = _radio(request)
        await radio.stop()
        return radio.snapshot.to_dict()

    @app.post("/toggle")
    async def toggle(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        radio = _radio(request)
        await radio.toggle_playback()
        return radio.snapshot.to_dict()

    @app.post("/restart")
    async def restart(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        radio = _radio(request)
        await radio.force_restart()
        return radio.snapshot.to_dict()

    @app.post("/volume")
    async def volume(  # pyright: ignore[reportUnusedFunction]
        request: Request,
        body: VolumeRequest,
    ) -> dict[str, Any]:
        radio = _radio(request)
        await radio.set_volume(body.volume)
        return radio.snapshot.to_dict()

    # ------------------------------------------------------------------
    # Foreground content (host plays its own audio)
    # ------------------------------------------------------------------

    @app.post("/foreground/pause")
    async def foreground_pause(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        radio = _radio(request)
        await radio.pause_for_foreground_content()
        return radio.snapshot.to_dict()

    @app.post("/foreground/resume")
    async def foreground_resume(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        radio = _radio(request)
        await radio.resume_after_foreground_content()
        return radio.snapshot.to_dict()

    # ------------------------------------------------------------------
    # Platform signals
    # ------------------------------------------------------------------

    @app.post("/platform/{signal}")
    async def platform_signal(  # pyright: ignore[reportUnusedFunction]
        signal: str,
        request: Request,
        body: InterruptionEndRequest | None = None,
    ) -> dict[str, Any]:
        if signal not in _PLATFORM_SIGNALS:
            raise HTTPException(status_code=404, detail=f"Unknown platform signal: {signal}")

        radio = _radio(request)
        if signal == "interruption-begin":
            await radio.on_interruption_begin()
        elif signal == "interruption-end":
            await radio.on_interruption_end(body.resumable if body is not None else True)
        elif signal == "noisy":
            await radio.on_becoming_noisy()
        elif signal == "background":
            await radio.on_app_backgrounded()
        else:
            await radio.on_app_foregrounded()
        return radio.snapshot.to_dict()

    # ------------------------------------------------------------------
    # Status stream
    # ------------------------------------------------------------------

    @app.websocket("/ws/status")
    async def status_stream(ws: WebSocket) -> None:  # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        radio: RadioService = ws.app.state.radio
        subscription = radio.channels.snapshot.subscribe()

        async def _forward() -> None:
            async for snapshot in subscription:
                await ws.send_json(snapshot.to_dict())

        forwarder = asyncio.create_task(_forward())

        try:
            # Inbound messages are ignored; receiving only detects the disconnect
            while True:
                await ws.receive_text()

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_STATUS_STREAM_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            subscription.unsubscribe()
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
