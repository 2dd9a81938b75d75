"""Client for the backend system of record (status, friends, credentials)."""

from .schemas import FriendEntry, ReissuedCredential, StatusUpdate
from .service import BackendClient, BackendError

__all__ = [
    "BackendClient",
    "BackendError",
    "FriendEntry",
    "ReissuedCredential",
    "StatusUpdate",
]
