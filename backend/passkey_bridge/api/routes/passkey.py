"""WebAuthn passkey endpoints — challenges, registration, authentication."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from passkey_bridge.api.dependencies import (
    CurrentUserId,
    DbSession,
    OptionalUserId,
    get_authentication_ceremony,
    get_challenge_store,
    get_registration_ceremony,
)
from passkey_bridge.config import settings
from passkey_bridge.core.errors import CredentialNotFound, CredentialRevoked
from passkey_bridge.core.metadata import PasskeyMetadata
from passkey_bridge.db.models import ChallengeType, PasskeyCredential
from passkey_bridge.db.repositories import passkey_repo
from passkey_bridge.middleware.rate_limiter import CEREMONY_LIMIT, limiter
from passkey_bridge.models.envelope import success_response
from passkey_bridge.models.passkey import (
    AuthenticateRequest,
    AuthenticateResponse,
    ChallengeRequest,
    ChallengeResponse,
    PasskeySummary,
    RegisterRequest,
    RegisterResponse,
    RevokeRequest,
    UserIdentity,
)
from passkey_bridge.services.authentication_service import AuthenticationCeremony
from passkey_bridge.services.challenge_service import ChallengeStore
from passkey_bridge.services.registration_service import RegistrationCeremony

logger = logging.getLogger(__name__)

router = APIRouter()


def _summarize(passkey: PasskeyCredential) -> dict:
    return PasskeySummary(
        credential_id=passkey.credential_id,
        status=passkey.status,
        created_at=passkey.created_at,
        last_used=passkey.last_used,
        revoked_at=passkey.revoked_at,
        revoked_reason=passkey.revoked_reason,
        device_type=passkey.device_type,
        backed_up=passkey.backed_up,
        metadata=PasskeyMetadata.decode(passkey.metadata_json).fields,
    ).model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Challenge
# ---------------------------------------------------------------------------


@router.post("/challenge")
@limiter.limit(CEREMONY_LIMIT)
async def create_challenge(
    request: Request,
    body: ChallengeRequest,
    db: DbSession,
    user_id: OptionalUserId,
    challenge_store: Annotated[ChallengeStore, Depends(get_challenge_store)],
) -> dict:
    """Issue a challenge.

    Registration challenges are bound to the authenticated caller; the body's
    ``userId`` is only honoured for authentication.
    """
    if body.type is ChallengeType.REGISTRATION:
        owner = user_id
    else:
        owner = body.user_id
    challenge = await challenge_store.issue(db, owner, body.type, body.registration_options)
    payload = ChallengeResponse(
        challenge=challenge.challenge,
        expires_at=challenge.expires_at,
        rp_id=settings.webauthn_rp_id,
        rp_name=settings.webauthn_rp_name,
    )
    return success_response(payload.model_dump(by_alias=True, mode="json"))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(CEREMONY_LIMIT)
async def register_passkey(
    request: Request,
    body: RegisterRequest,
    db: DbSession,
    user_id: OptionalUserId,
    ceremony: Annotated[RegistrationCeremony, Depends(get_registration_ceremony)],
) -> dict:
    """Verify an attestation and store the new passkey for the caller."""
    credential = await ceremony.register(
        db, user_id=user_id, response=body.credential, metadata=body.metadata,
    )
    result = RegisterResponse(credential_id=credential.credential_id, created_at=credential.created_at)
    return success_response(result.model_dump(by_alias=True, mode="json"))


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@router.post("/authenticate")
@limiter.limit(CEREMONY_LIMIT)
async def authenticate_passkey(
    request: Request,
    body: AuthenticateRequest,
    db: DbSession,
    ceremony: Annotated[AuthenticationCeremony, Depends(get_authentication_ceremony)],
) -> dict:
    """Verify an assertion and return a session for the passkey's owner."""
    result = await ceremony.authenticate(
        db, response=body.credential, user_id=body.user_id, metadata=body.metadata,
    )
    payload = AuthenticateResponse(
        token=result.session.token,
        token_type=result.session.token_type,
        expires_at=result.session.expires_at,
        user=UserIdentity(id=result.user.id, email=result.user.email, name=result.user.name),
    )
    return success_response(payload.model_dump(by_alias=True, mode="json"))


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------


@router.get("/list")
async def list_passkeys(db: DbSession, user_id: CurrentUserId, include_revoked: bool = False) -> dict:
    """List the caller's passkeys."""
    passkeys = await passkey_repo.get_credentials_by_user_id(db, user_id, include_revoked=include_revoked)
    return success_response([_summarize(p) for p in passkeys])


@router.post("/revoke")
async def revoke_passkey(body: RevokeRequest, db: DbSession, user_id: CurrentUserId) -> dict:
    """Revoke one of the caller's passkeys."""
    passkey = await passkey_repo.get_credential_by_credential_id(
        db, body.credential_id, include_revoked=True,
    )
    if passkey is None or passkey.user_id != user_id:
        raise CredentialNotFound()
    if not await passkey_repo.revoke_credential(db, passkey.id, body.reason):
        raise CredentialRevoked("Passkey is already revoked")
    await db.commit()

    logger.info("User %s revoked passkey %s (%s)", user_id, passkey.credential_id, body.reason)
    return success_response({"revoked": True, "credentialId": passkey.credential_id})
