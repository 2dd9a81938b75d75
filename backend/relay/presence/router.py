"""Presence introspection REST API router.

Endpoints:
    GET  /presence/stats        - Session/connection counts and backend failures
    GET  /presence/{identity}   - Presence of one identity
"""
import logging
from typing import Dict, List

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from relay.runtime import Relay, get_relay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/presence", tags=["presence"])


class PresenceStatsResponse(BaseModel):
    """Response model for relay-wide presence counters."""
    sessions: int = 0
    online: int = 0
    grace_pending: int = 0
    connections: int = 0
    backend_failures: Dict[str, int] = Field(default_factory=dict)


class IdentityPresenceResponse(BaseModel):
    """Response model for one identity's presence."""
    identity: str
    state: str
    connections: List[str] = Field(default_factory=list)
    logged_in_at: float
    last_seen_at: float


def _require_relay() -> Relay:
    relay = get_relay()
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay not initialised")
    return relay


@router.get("/stats", response_model=PresenceStatsResponse)
async def presence_stats() -> PresenceStatsResponse:
    """Get relay-wide presence counters.

    Returns:
        PresenceStatsResponse including per-operation backend failure counts.
    """
    return PresenceStatsResponse(**_require_relay().stats())


@router.get("/{identity}", response_model=IdentityPresenceResponse)
async def identity_presence(identity: str) -> IdentityPresenceResponse:
    """Get presence for one identity.

    Args:
        identity: The identity to look up.

    Returns:
        IdentityPresenceResponse with state and live connection ids.

    Raises:
        HTTPException: 404 when the identity has no session (offline).
    """
    relay = _require_relay()
    session = relay.registry.get(identity)
    if session is None:
        raise HTTPException(status_code=404, detail=f"{identity} is offline")
    return IdentityPresenceResponse(
        identity=identity,
        state=session.state.value,
        connections=sorted(str(conn) for conn in session.connections),
        logged_in_at=session.logged_in_at,
        last_seen_at=session.last_seen_at,
    )
