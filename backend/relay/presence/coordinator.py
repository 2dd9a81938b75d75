"""Presence state machine.

Per identity::

    Offline --login--> Online --last disconnect--> GracePending --timer--> Offline
                         ^                              |
                         +------ login within grace ----+

Presence is identity-level: friends hear ``friend_login`` once per
Offline -> Online edge and ``friend_logout`` once per GracePending -> Offline
edge. Extra devices and reconnects inside the grace window are invisible to
friends and to the backend. A ``friend_logout`` is only sent for a session
whose ``friend_login`` went out, so friends always see the two in pairs.

A login that lands while the grace-expiry offline write is still in flight
takes over the expiring session's announcement: friends hear neither a logout
nor a second login, and the expiry restates ``isOnline=true`` once its write
returns.

In-memory state is authoritative. It is mutated synchronously before any
backend call, and every handler re-reads the registry after each await since
a disconnect, a timer or another login may have run in between. Backend
failures are logged and never undo a transition.
"""
import logging
from typing import TYPE_CHECKING, Dict, Optional

from relay.backend_client import BackendClient, BackendError
from relay.scheduling import Scheduler

from .fanout import NotificationFanout
from .registry import Connection, PresenceState, Session, SessionRegistry

if TYPE_CHECKING:
    from relay.credentials import CredentialManager

logger = logging.getLogger(__name__)

FRIEND_LOGIN_EVENT = "friend_login"
FRIEND_LOGOUT_EVENT = "friend_logout"


class PresenceCoordinator:
    """Drives session transitions and their backend/friend side effects.

    Args:
        registry: Session registry (exclusively mutated from here and the
            event router).
        backend: System-of-record client.
        credentials: Credential lifecycle manager.
        fanout: Notification fan-out for friend_login/friend_logout.
        scheduler: Timer source for grace timers.
        grace_period_seconds: How long an identity with no connections stays
            GracePending before it is declared offline.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        backend: BackendClient,
        credentials: "CredentialManager",
        fanout: NotificationFanout,
        scheduler: Scheduler,
        grace_period_seconds: float = 2.5,
    ) -> None:
        self.registry = registry
        self.backend = backend
        self.credentials = credentials
        self.fanout = fanout
        self.scheduler = scheduler
        self.grace_period_seconds = grace_period_seconds
        # Sessions torn down whose offline write has not returned yet.
        self._expiring: Dict[str, Session] = {}

    # =========================================================================
    # Transitions
    # =========================================================================

    async def login(
        self, conn: Connection, identity: str, credential: Optional[str]
    ) -> PresenceState:
        """Attach *conn* to *identity*.

        A connection already logged in as another identity is first
        disconnected from it, so that identity gets its own grace period.

        Returns:
            The identity's state before this login.
        """
        previous = self.registry.identity_of(conn)
        if previous is not None and previous != identity:
            logger.info("[Presence] %s switches from %s to %s", conn, previous, identity)
            await self.disconnect(conn)

        prior = self.registry.state_of(identity)
        session = self.registry.add_connection(identity, conn)
        session.replace_grace_timer(None)
        if credential:
            self.credentials.set(identity, credential)

        if prior is PresenceState.ONLINE:
            logger.info(
                "[Presence] %s added a connection (%d live)",
                identity, len(session.connections),
            )
            return prior
        if prior is PresenceState.GRACE_PENDING:
            logger.info("[Presence] %s reconnected within the grace period", identity)
            return prior

        expiring = self._expiring.get(identity)
        if expiring is not None and expiring.announced:
            session.announced = True
            expiring.announced = False
            logger.info("[Presence] %s logged back in while going offline", identity)
            return prior

        logger.info("[Presence] %s is online", identity)
        await self._announce_login(session)
        return prior

    async def disconnect(self, conn: Connection) -> Optional[str]:
        """Detach *conn*. Unknown or already-removed connections are ignored.

        Returns:
            The identity the connection belonged to, or None.
        """
        identity = self.registry.remove_connection(conn)
        if identity is None:
            logger.debug("[Presence] Disconnect for unregistered connection %s", conn)
            return None

        session = self.registry.get(identity)
        if session is None or session.connections:
            return identity

        timer = self.scheduler.call_later(
            self.grace_period_seconds,
            lambda: self._expire_grace(identity, session),
            label=f"grace:{identity}",
        )
        session.replace_grace_timer(timer)
        logger.info(
            "[Presence] %s has no connections; offline in %.1fs unless it reconnects",
            identity, self.grace_period_seconds,
        )
        return identity

    async def shutdown(self) -> None:
        """Cancel every grace and refresh timer. Sessions are left in place."""
        for session in self.registry.sessions():
            session.cancel_timers()
        await self.scheduler.shutdown()

    # =========================================================================
    # Side effects
    # =========================================================================

    async def _announce_login(self, session: Session) -> None:
        """Write ``isOnline=true`` and tell friends.

        If the session timed out while the write was in flight and no new
        session replaced it, ``isOnline=false`` is written again even though
        the expiry already wrote it: the two writes may reach the backend in
        either order, and the last one has to be ``false``. This is the one
        case where a single offline period produces two offline writes.
        """
        identity = session.identity
        credential = self.credentials.credential_for(identity)
        try:
            await self.backend.set_online_status(identity, True, credential)
        except BackendError as e:
            logger.warning("[Presence] Could not mark %s online: %s", identity, e)

        if self.registry.get(identity) is not session:
            # Logged out (and possibly back in) while the write was in flight.
            if identity not in self.registry:
                logger.info("[Presence] %s went offline during login; correcting backend", identity)
                await self._write_status(identity, False, credential)
            return

        session.announced = True
        await self.fanout.broadcast_to_friends(
            identity,
            FRIEND_LOGIN_EVENT,
            {"identity": identity},
            credential=self.credentials.credential_for(identity) or credential,
        )

    async def _expire_grace(self, identity: str, session: Session) -> None:
        if self.registry.get(identity) is not session:
            return
        session.grace_timer = None
        if session.connections:
            return

        credential = self.credentials.credential_for(identity)
        self.credentials.clear(identity)
        self.registry.discard(identity)
        session.cancel_timers()
        logger.info("[Presence] %s is offline", identity)

        self._expiring[identity] = session
        try:
            await self._write_status(identity, False, credential)
        finally:
            if self._expiring.get(identity) is session:
                del self._expiring[identity]

        revived = self.registry.get(identity)
        if revived is not None:
            # A new login arrived while the offline write was in flight; its
            # online write may have landed first, or been skipped, so restate it.
            logger.info("[Presence] %s logged back in during logout; restating online", identity)
            await self._write_status(identity, True, self.credentials.credential_for(identity))
            return

        if not session.announced:
            logger.info("[Presence] %s was never announced; no friend_logout", identity)
            return

        await self.fanout.broadcast_to_friends(
            identity,
            FRIEND_LOGOUT_EVENT,
            {"identity": identity},
            credential=credential,
        )

    async def _write_status(
        self, identity: str, is_online: bool, credential: Optional[str]
    ) -> bool:
        try:
            await self.backend.set_online_status(identity, is_online, credential)
            return True
        except BackendError as e:
            logger.warning(
                "[Presence] Could not mark %s %s: %s",
                identity, "online" if is_online else "offline", e,
            )
            return False
