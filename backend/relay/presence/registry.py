"""Session registry: identities, their live connections, and their timers.

One :class:`Session` exists per identity that is Online or GracePending.
Offline identities have no entry at all. The registry keeps a reverse index
from connection to identity so a disconnect can be resolved without the
caller knowing who the connection belonged to.

The registry makes no presence decisions; the coordinator drives it.

Thread Safety:
    Designed for a single asyncio event loop. Not safe for concurrent
    access from multiple threads.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Hashable, List, Optional, Set

from relay.scheduling import TimerHandle

logger = logging.getLogger(__name__)

Connection = Hashable


class PresenceState(str, Enum):
    """Presence of an identity as seen by this relay.

    Attributes:
        ONLINE: At least one live connection.
        GRACE_PENDING: No live connection, grace timer running, backend
            still believes the identity is online.
        OFFLINE: No session (only ever reported, never stored).
    """
    ONLINE = "online"
    GRACE_PENDING = "grace_pending"
    OFFLINE = "offline"


@dataclass(eq=False)
class Session:
    identity: str
    connections: Set[Connection] = field(default_factory=set)
    credential: Optional[str] = None
    grace_timer: Optional[TimerHandle] = None
    refresh_timer: Optional[TimerHandle] = None
    logged_in_at: float = field(default_factory=time.time)
    last_seen_at: float = field(default_factory=time.time)
    # True once friends have been told this identity is online.
    announced: bool = False

    @property
    def state(self) -> PresenceState:
        if self.connections:
            return PresenceState.ONLINE
        return PresenceState.GRACE_PENDING

    def replace_grace_timer(self, timer: Optional[TimerHandle]) -> None:
        """Install *timer* as the grace timer, cancelling any previous one."""
        if self.grace_timer is not None:
            self.grace_timer.cancel()
        self.grace_timer = timer

    def replace_refresh_timer(self, timer: Optional[TimerHandle]) -> None:
        """Install *timer* as the refresh timer, cancelling any previous one."""
        if self.refresh_timer is not None:
            self.refresh_timer.cancel()
        self.refresh_timer = timer

    def cancel_timers(self) -> None:
        self.replace_grace_timer(None)
        self.replace_refresh_timer(None)


class SessionRegistry:
    """Owns every Session and the connection -> identity reverse index."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._owners: Dict[Connection, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._sessions

    # -----------------------------------------------------------------------
    # Mutation
    # -----------------------------------------------------------------------

    def add_connection(self, identity: str, conn: Connection) -> Session:
        """Attach *conn* to *identity*, creating the session if needed.

        A connection belongs to exactly one identity; logging in again on the
        same connection under a different identity moves it.
        """
        previous = self._owners.get(conn)
        if previous is not None and previous != identity:
            logger.info(
                "[Registry] Connection %s switches identity %s -> %s",
                conn, previous, identity,
            )
            self.remove_connection(conn)

        session = self._sessions.get(identity)
        if session is None:
            session = Session(identity=identity)
            self._sessions[identity] = session
        session.connections.add(conn)
        session.last_seen_at = time.time()
        self._owners[conn] = identity
        return session

    def remove_connection(self, conn: Connection) -> Optional[str]:
        """Detach *conn*; returns its identity, or None if it was unknown."""
        identity = self._owners.pop(conn, None)
        if identity is None:
            return None
        session = self._sessions.get(identity)
        if session is not None:
            session.connections.discard(conn)
            session.last_seen_at = time.time()
        return identity

    def discard(self, identity: str) -> Optional[Session]:
        """Remove the session for *identity* along with any connections it holds."""
        session = self._sessions.pop(identity, None)
        if session is None:
            return None
        for conn in session.connections:
            if self._owners.get(conn) == identity:
                del self._owners[conn]
        return session

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get(self, identity: str) -> Optional[Session]:
        return self._sessions.get(identity)

    def identity_of(self, conn: Connection) -> Optional[str]:
        return self._owners.get(conn)

    def connections_of(self, identity: str) -> FrozenSet[Connection]:
        session = self._sessions.get(identity)
        if session is None:
            return frozenset()
        return frozenset(session.connections)

    def state_of(self, identity: str) -> PresenceState:
        session = self._sessions.get(identity)
        if session is None:
            return PresenceState.OFFLINE
        return session.state

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def connection_count(self) -> int:
        return len(self._owners)
