"""Request and response schemas for the passkey endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from passkey_bridge.db.models import ChallengeType


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChallengeRequest(_CamelModel):
    type: ChallengeType
    user_id: str | None = Field(default=None, alias="userId")
    registration_options: dict[str, Any] | None = Field(default=None, alias="registrationOptions")


class ChallengeResponse(_CamelModel):
    challenge: str
    expires_at: datetime = Field(serialization_alias="expiresAt")
    rp_id: str = Field(serialization_alias="rpId")
    rp_name: str = Field(serialization_alias="rpName")


class RegisterRequest(_CamelModel):
    credential: dict[str, Any]
    metadata: dict[str, Any] | None = None


class RegisterResponse(_CamelModel):
    registered: bool = True
    credential_id: str = Field(serialization_alias="credentialId")
    created_at: datetime = Field(serialization_alias="createdAt")


class AuthenticateRequest(_CamelModel):
    credential: dict[str, Any]
    user_id: str | None = Field(default=None, alias="userId")
    metadata: dict[str, Any] | None = None


class UserIdentity(_CamelModel):
    id: str
    email: str
    name: str


class AuthenticateResponse(_CamelModel):
    token: str
    token_type: str = Field(serialization_alias="tokenType")
    expires_at: datetime = Field(serialization_alias="expiresAt")
    user: UserIdentity


class PasskeySummary(_CamelModel):
    """A passkey as shown to its owner — no key material."""

    credential_id: str = Field(serialization_alias="credentialId")
    status: str
    created_at: datetime = Field(serialization_alias="createdAt")
    last_used: datetime | None = Field(default=None, serialization_alias="lastUsed")
    revoked_at: datetime | None = Field(default=None, serialization_alias="revokedAt")
    revoked_reason: str | None = Field(default=None, serialization_alias="revokedReason")
    device_type: str | None = Field(default=None, serialization_alias="deviceType")
    backed_up: bool = Field(default=False, serialization_alias="backedUp")
    metadata: dict[str, Any] = {}


class RevokeRequest(_CamelModel):
    credential_id: str = Field(alias="credentialId")
    reason: str = "user_initiated"
