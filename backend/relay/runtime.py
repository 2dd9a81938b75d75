"""Wiring of the presence engine.

:class:`Relay` builds the registry, backend client, credential manager,
fan-out, coordinator and event router from one :class:`AppConfig`. A
module-level singleton is installed by ``relay/main.py``.
"""
import logging
from typing import Optional

from relay.backend_client import BackendClient
from relay.config import AppConfig
from relay.credentials import CredentialManager
from relay.presence.coordinator import PresenceCoordinator
from relay.presence.fanout import NotificationFanout, Transport
from relay.presence.registry import SessionRegistry
from relay.realtime.events import EventRouter
from relay.scheduling import Scheduler

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_relay: Optional["Relay"] = None


def get_relay() -> Optional["Relay"]:
    """Return the global Relay, or None if not yet initialised."""
    return _relay


def set_relay(relay: Optional["Relay"]) -> None:
    """Set (or replace) the global Relay instance."""
    global _relay
    _relay = relay


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------


class Relay:
    """All presence components for one process.

    Args:
        config: Application configuration.
        transport: Socket.IO server (or a compatible fake).
        backend: Optional backend client; built from config when omitted.
        scheduler: Optional timer source; an asyncio scheduler by default.
    """

    def __init__(
        self,
        config: AppConfig,
        transport: Transport,
        backend: Optional[BackendClient] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.scheduler = scheduler or Scheduler()
        self.backend = backend or BackendClient(config.backend)
        self.registry = SessionRegistry()
        self.credentials = CredentialManager(
            self.registry,
            self.backend,
            self.scheduler,
            refresh_margin_seconds=config.presence.refresh_margin_seconds,
        )
        self.fanout = NotificationFanout(
            self.registry, self.backend, transport, self.credentials
        )
        self.coordinator = PresenceCoordinator(
            self.registry,
            self.backend,
            self.credentials,
            self.fanout,
            self.scheduler,
            grace_period_seconds=config.presence.grace_period_seconds,
        )
        self.events = EventRouter(
            self.coordinator,
            self.fanout,
            transport,
            friend_message_event=config.presence.friend_message_event,
        )

    def stats(self) -> dict:
        sessions = self.registry.sessions()
        return {
            "sessions": len(sessions),
            "online": sum(1 for s in sessions if s.connections),
            "grace_pending": sum(1 for s in sessions if not s.connections),
            "connections": self.registry.connection_count(),
            "backend_failures": dict(self.backend.failures),
        }

    async def aclose(self) -> None:
        await self.coordinator.shutdown()
        await self.backend.aclose()
        logger.info("Relay shut down")
