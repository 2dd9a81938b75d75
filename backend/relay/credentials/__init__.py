"""Credential lifecycle manager (storage and proactive refresh)."""

from .service import CredentialManager, decode_expiry

__all__ = ["CredentialManager", "decode_expiry"]
