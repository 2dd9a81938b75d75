"""Presence Relay Application.

This is the main entry point for the presence relay service. The relay keeps
authenticated identities connected over Socket.IO, tracks who is reachable,
and fans out chat messages and presence changes to rooms and friend sets.
Durable state (online flags, friend graph, credentials) lives in the backend
system of record.

Modules:
    - presence: session registry, presence state machine, notification fan-out
    - credentials: credential storage and proactive refresh
    - backend_client: HTTP client for the system of record
    - realtime: Socket.IO server and inbound event routing

Serve ``relay.main:application`` (FastAPI with Socket.IO mounted in front).
"""
import logging
from contextlib import asynccontextmanager

import socketio
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.config import get_config
from relay.presence.router import router as presence_router
from relay.realtime.socketio import create_sio
from relay.runtime import Relay, get_relay, set_relay

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore log every request and connection; engineio/socketio log
# every packet when their own loggers are enabled.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "engineio",
    "engineio.server",
    "socketio",
    "socketio.server",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

config = get_config()

sio = create_sio(config.server)
relay = Relay(config, sio)
relay.events.register(sio)
set_relay(relay)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    logger.info(
        f"Relay listening on http://{config.server.host}:{config.server.port} "
        f"(socket.io path /{config.server.socketio_path}, backend {config.backend.base_url})"
    )

    yield  # Application runs here

    # Shutdown
    current = get_relay()
    if current is not None:
        await current.aclose()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Presence Relay",
    description="Real-time presence and notification relay",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.server.allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(presence_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


# Socket.IO must sit in front of FastAPI: Engine.IO uses both HTTP
# long-polling and WebSocket upgrades on its own path.
application = socketio.ASGIApp(
    sio,
    other_asgi_app=app,
    socketio_path=config.server.socketio_path,
)


def run() -> None:
    """Console entry point: serve the relay with uvicorn."""
    uvicorn.run(
        application,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    run()
