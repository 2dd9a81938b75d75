"""Credential lifecycle: hold each identity's credential and renew it early.

Credentials are NEVER written to disk. They live on the identity's Session
for as long as the session exists. Only the ``exp`` claim is read; signature
and other claims are the backend's business.

Renewal happens ``refresh_margin_seconds`` before expiry. A failed renewal is
logged and not retried: the identity's backend calls will start failing once
the credential expires, until the next login supplies a fresh one.
"""
import logging
from typing import Optional

from jose import JWTError, jwt

from relay.backend_client import BackendClient, BackendError
from relay.presence.registry import SessionRegistry
from relay.scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def decode_expiry(credential: str) -> Optional[float]:
    """Return the credential's ``exp`` claim as epoch seconds, or None."""
    token = credential
    if token.startswith(BEARER_PREFIX):
        token = token[len(BEARER_PREFIX):]
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as e:
        logger.warning("Could not decode credential: %s", e)
        return None

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        logger.warning("Credential has no numeric exp claim")
        return None
    return float(exp)


class CredentialManager:
    """Stores credentials on sessions and schedules their refresh.

    Args:
        registry: Session registry the credentials are attached to.
        backend: Client used for ``POST /reissue``.
        scheduler: Timer source (wall clock for expiry comparison).
        refresh_margin_seconds: How long before expiry to renew.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        backend: BackendClient,
        scheduler: Scheduler,
        refresh_margin_seconds: float = 60.0,
    ) -> None:
        self.registry = registry
        self.backend = backend
        self.scheduler = scheduler
        self.refresh_margin_seconds = refresh_margin_seconds

    def set(self, identity: str, credential: str) -> Optional[TimerHandle]:
        """Store *credential* for *identity* and (re)schedule its refresh.

        Returns:
            The new refresh timer, or None when the credential is expired,
            too close to expiry, or undecodable.
        """
        session = self.registry.get(identity)
        if session is None:
            logger.warning("No session for %s; credential not stored", identity)
            return None

        session.credential = credential
        session.replace_refresh_timer(None)

        expiry = decode_expiry(credential)
        if expiry is None:
            logger.warning("Refresh not scheduled for %s: unreadable expiry", identity)
            return None

        delay = expiry - self.scheduler.now() - self.refresh_margin_seconds
        if delay <= 0:
            logger.info(
                "Refresh not scheduled for %s: credential expires in %.0fs",
                identity, expiry - self.scheduler.now(),
            )
            return None

        timer = self.scheduler.call_later(
            delay, lambda: self._refresh(identity), label=f"refresh:{identity}"
        )
        session.refresh_timer = timer
        logger.debug("Credential refresh for %s scheduled in %.0fs", identity, delay)
        return timer

    def clear(self, identity: str) -> None:
        """Cancel the refresh timer and forget the credential."""
        session = self.registry.get(identity)
        if session is None:
            return
        session.replace_refresh_timer(None)
        session.credential = None

    def credential_for(self, identity: str) -> Optional[str]:
        session = self.registry.get(identity)
        return session.credential if session is not None else None

    async def _refresh(self, identity: str) -> None:
        session = self.registry.get(identity)
        if session is None:
            return
        session.refresh_timer = None
        current = session.credential

        try:
            renewed = await self.backend.refresh_credential(identity, current)
        except BackendError as e:
            logger.warning("Credential refresh failed for %s: %s", identity, e)
            return

        # The session may have logged out or re-logged in while we waited.
        if self.registry.get(identity) is not session:
            logger.info("Session for %s ended during refresh; dropping credential", identity)
            return
        if session.credential != current:
            logger.info("Newer credential for %s arrived during refresh; keeping it", identity)
            return

        logger.info("Credential refreshed for %s", identity)
        self.set(identity, renewed)
