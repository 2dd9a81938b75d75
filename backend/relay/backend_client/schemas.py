from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class StatusUpdate(BaseModel):
    """Body of ``PUT /user/status/update``."""

    model_config = ConfigDict(populate_by_name=True)

    identity: str
    is_online: bool = Field(..., serialization_alias="isOnline")


class FriendEntry(BaseModel):
    """One element of the ``GET /friend/list/online`` response."""

    identity: str = Field(..., validation_alias=AliasChoices("identity", "nickname"))


class ReissuedCredential(BaseModel):
    """JSON object form of the ``POST /reissue`` response."""

    credential: str = Field(
        ...,
        validation_alias=AliasChoices("accessToken", "token", "credential"),
    )
