"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Own the RadioService for the lifetime of the app (lifespan)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability import logger
from observability.logger import log_event
from server.routes import register_routes
from service.radio_service import RadioService

RadioFactory = Callable[[AppConfig], Awaitable[RadioService]]


def create_app(
    config: AppConfig | None = None,
    *,
    radio_factory: RadioFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with a fake-backed RadioService (radio_factory)
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    logger.configure(config.log_level)
    factory: RadioFactory = radio_factory or RadioService.create

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # One service per process, built before the first request
        radio = await factory(config)
        app.state.radio = radio
        log_event({"event_type": "SERVER_STARTED", "env": config.env})
        try:
            yield
        finally:
            await radio.dispose()
            log_event({"event_type": "SERVER_STOPPED", "env": config.env})

    app = FastAPI(title="Radio Stream API", lifespan=lifespan)

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
