"""Inbound Socket.IO event payloads.

Clients of earlier deployments send ``nickname`` instead of ``identity`` and
``token``/``accessToken`` instead of ``credential``; both spellings are
accepted.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class LoginPayload(BaseModel):
    identity: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("identity", "nickname")
    )
    credential: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("credential", "token", "accessToken"),
    )


class RoomPayload(BaseModel):
    room: str = Field(..., min_length=1)


class SendMessagePayload(BaseModel):
    identity: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("identity", "nickname")
    )
    room: str = Field(..., min_length=1)
    message: Any = Field(...)


class AnnouncePayload(BaseModel):
    room: str = Field(..., min_length=1)
    message: Any = Field(...)


class FriendMessagePayload(BaseModel):
    identity: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("identity", "nickname")
    )
    message: Any = Field(...)
