"""Socket.IO server factory.

The relay talks to clients through a single ``socketio.AsyncServer``
mounted next to the FastAPI app. Engine.IO owns heartbeats (ping interval
and timeout come from configuration) and wire-level reconnection; the relay
only sees connect, events, and disconnect.
"""
from __future__ import annotations

import logging
from typing import Any

import socketio

from relay.config import ServerSettings

logger = logging.getLogger(__name__)


def _cors_origins(settings: ServerSettings) -> Any:
    if "*" in settings.allowed_origins:
        return "*"
    return list(settings.allowed_origins)


def create_sio(settings: ServerSettings) -> socketio.AsyncServer:
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=_cors_origins(settings),
        ping_interval=settings.ping_interval,
        ping_timeout=settings.ping_timeout,
        logger=False,
        engineio_logger=False,
    )

    @sio.event
    async def connect(sid: str, environ: dict[str, Any], auth: Any | None = None):
        # Identity is asserted later by the `login` event.
        logger.info("[WS] Connection opened: %s", sid)

    return sio
