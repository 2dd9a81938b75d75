"""Notification fan-out to rooms and to friend sets.

Delivery is best effort: no acknowledgement, no retry, no ordering across
target connections. Room membership is the transport's business (Socket.IO
rooms); friend sets come from the backend and are intersected with the live
connections in the registry.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Protocol

from relay.backend_client import BackendClient, BackendError

from .registry import Connection, SessionRegistry

if TYPE_CHECKING:
    from relay.credentials import CredentialManager

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """The subset of ``socketio.AsyncServer`` the relay relies on."""

    async def emit(self, event: str, data: Any = None, to: Any = None,
                   room: Any = None, **kwargs: Any) -> None: ...

    async def enter_room(self, sid: Any, room: str, namespace: Optional[str] = None) -> None: ...

    async def leave_room(self, sid: Any, room: str, namespace: Optional[str] = None) -> None: ...


class NotificationFanout:
    """Pushes events to live connections.

    Args:
        registry: Source of identity -> live connections.
        backend: Used to resolve an identity's online friends.
        transport: Socket.IO server (or a compatible fake).
        credentials: Supplies the credential for friend lookups.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        backend: BackendClient,
        transport: Transport,
        credentials: "CredentialManager",
    ) -> None:
        self.registry = registry
        self.backend = backend
        self.transport = transport
        self.credentials = credentials

    async def broadcast_to_room(self, room: str, event: str, payload: dict) -> None:
        """Emit to every connection joined to *room*."""
        try:
            await self.transport.emit(event, payload, room=room)
        except Exception as e:
            logger.warning("Room broadcast %s to %s failed: %s", event, room, e)

    async def send_to_identity(self, identity: str, event: str, payload: dict) -> int:
        """Emit to every live connection of *identity*.

        Returns:
            Number of connections the event was handed to successfully.
        """
        return await self._send_to_connections(self.registry.connections_of(identity), event, payload)

    async def broadcast_to_friends(
        self,
        identity: str,
        event: str,
        payload: dict,
        credential: Optional[str] = None,
    ) -> int:
        """Emit to every live connection of each of *identity*'s online friends.

        Friends the backend lists but who have no live connection here are
        skipped. A failed friend lookup degrades to "no friends".

        Args:
            identity: Whose friends to notify.
            event: Outbound event name.
            payload: Event payload.
            credential: Credential for the friend lookup. Defaults to the one
                stored on the identity's session.

        Returns:
            Number of connections reached.
        """
        if credential is None:
            credential = self.credentials.credential_for(identity)

        friends = await self.online_friends(identity, credential)
        reachable: List[str] = []
        for friend in dict.fromkeys(friends):
            if friend == identity:
                continue
            if not self.registry.connections_of(friend):
                logger.debug("Friend %s of %s has no live connection; skipped", friend, identity)
                continue
            reachable.append(friend)

        counts = await asyncio.gather(
            *[self.send_to_identity(friend, event, payload) for friend in reachable]
        )
        delivered = sum(counts)
        logger.info(
            "[Presence] %s from %s delivered to %d connection(s) of %d friend(s)",
            event, identity, delivered, len(friends),
        )
        return delivered

    async def online_friends(self, identity: str, credential: Optional[str]) -> List[str]:
        """Friend lookup that never raises; failures yield an empty list."""
        try:
            return await self.backend.get_online_friends(identity, credential)
        except BackendError as e:
            logger.warning("Online friend lookup for %s failed: %s", identity, e)
            return []

    async def _send_to_connections(
        self, connections: Iterable[Connection], event: str, payload: dict
    ) -> int:
        connections = list(connections)
        if not connections:
            return 0
        results = await asyncio.gather(
            *[self._safe_emit(conn, event, payload) for conn in connections],
            return_exceptions=True,
        )
        return sum(1 for ok in results if ok is True)

    async def _safe_emit(self, conn: Connection, event: str, payload: dict) -> bool:
        try:
            await self.transport.emit(event, payload, to=conn)
            return True
        except Exception as e:
            logger.debug("Failed to emit %s to %s: %s", event, conn, e)
            return False
