"""FastAPI application exposing tabbed shells over a WebSocket.

    GET  /health  -> {"status": "ok", "connections": 1, "sessions": 2, ...}
    WS   /ws      <- {"event": "execute-command", "data": {"command": "ls", "tabId": "main"}}
                  -> {"event": "terminal-output", "data": {"tabId": "main", "output": "...", "type": "stdout"}}
    GET  /*       -> static client assets (when the static directory exists)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ValidationError

from tabconsole import __version__
from tabconsole.config.settings import Settings
from tabconsole.domain.models import Envelope, ShutdownPhase
from tabconsole.server.hub import ConnectionHub, Message, pump
from tabconsole.session.manager import LifecycleManager
from tabconsole.session.platform import ShellCommand
from tabconsole.session.registry import SessionRegistry
from tabconsole.session.router import ConnectionRouter
from tabconsole.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)

# Close code for "service restart" (RFC 6455 registry).
WS_CLOSE_SHUTTING_DOWN = 1012


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    platform: str = sys.platform
    shell: str
    connections: int = 0
    sessions: int = 0
    phase: ShutdownPhase = ShutdownPhase.RUNNING


def create_app(
    settings: Settings | None = None,
    shell: ShellCommand | None = None,
    registry: SessionRegistry | None = None,
    hub: ConnectionHub | None = None,
) -> FastAPI:
    """Create the tabconsole application.

    Args:
        settings: Loaded configuration; defaults are used when None.
        shell: Shell to spawn per tab (for testing). Detected from the
               platform when None.
        registry: Optional pre-built registry (for testing).
        hub: Optional pre-built connection hub (for testing).
    """
    settings = settings or Settings()
    registry = registry if registry is not None else SessionRegistry()
    hub = hub if hub is not None else ConnectionHub()
    manager = LifecycleManager(
        registry,
        hub,
        shell=shell,
        welcome_delay=settings.session.welcome_delay,
        read_chunk_size=settings.session.read_chunk_size,
    )
    coordinator = ShutdownCoordinator(
        manager, registry, grace_period=settings.shutdown.grace_period
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Console ready (shell=%s)", manager.shell.program)
        yield
        coordinator.trigger("lifespan shutdown")
        await manager.aclose()
        logger.info("Console stopped")

    app = FastAPI(
        title="tabconsole",
        description="Multi-tab shell sessions over WebSocket",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.hub = hub
    app.state.manager = manager
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(
            shell=manager.shell.program,
            connections=len(registry.connections()),
            sessions=len(registry),
            phase=coordinator.phase,
        )

    @app.websocket("/ws")
    async def terminal_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        if coordinator.is_shutting_down:
            await websocket.close(code=WS_CLOSE_SHUTTING_DOWN)
            return

        connection_id = uuid.uuid4().hex
        queue = hub.register(connection_id)
        sender = asyncio.create_task(_send_events(websocket, queue, connection_id))
        router = ConnectionRouter(
            connection_id,
            manager,
            registry,
            hub,
            main_tab_id=settings.session.main_tab_id,
        )
        try:
            await router.connect()
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    logger.warning("Ignoring binary frame from %s", connection_id)
                    continue
                try:
                    envelope = Envelope.model_validate_json(raw)
                except ValidationError as e:
                    logger.warning("Malformed message from %s: %s", connection_id, e.errors())
                    continue
                await router.dispatch(envelope.event, envelope.data)
        finally:
            router.disconnect()
            hub.unregister(connection_id)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender

    static_dir = Path(settings.server.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    else:
        logger.debug("Static directory %s not found, serving API only", static_dir)

    return app


async def _send_events(
    websocket: WebSocket, queue: asyncio.Queue[Message | None], connection_id: str
) -> None:
    try:
        await pump(queue, websocket.send_json)
    except (WebSocketDisconnect, RuntimeError, OSError) as e:
        logger.debug("Stopped sending to %s: %s", connection_id, e)
