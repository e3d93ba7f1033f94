"""API dependencies — DB sessions, bearer identity and ceremony wiring."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from passkey_bridge.config import settings
from passkey_bridge.core.errors import Unauthorized
from passkey_bridge.core.security import decode_access_token
from passkey_bridge.db.database import get_session
from passkey_bridge.services.authentication_service import AuthenticationCeremony
from passkey_bridge.services.challenge_service import ChallengeStore
from passkey_bridge.services.registration_service import RegistrationCeremony
from passkey_bridge.services.session_issuer import JWTSessionIssuer, SessionIssuer
from passkey_bridge.services.webauthn_verifier import CredentialVerifier, WebAuthnVerifier

# ---------------------------------------------------------------------------
# Database dependency
# ---------------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async for session in get_session():
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db)]

# ---------------------------------------------------------------------------
# Bearer identity
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=False)


def verify_token(token: str) -> dict:
    """Decode a bearer JWT or fail the request with 401."""
    try:
        return decode_access_token(token)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc


async def get_optional_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)] = None,
) -> str | None:
    """User id from the bearer token, or ``None`` for anonymous callers.

    A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return None
    payload = verify_token(credentials.credentials)
    return payload["sub"]


async def get_current_user_id(
    user_id: Annotated[str | None, Depends(get_optional_user_id)],
) -> str:
    """Require an authenticated caller."""
    if user_id is None:
        raise Unauthorized("Authentication required")
    return user_id


OptionalUserId = Annotated[str | None, Depends(get_optional_user_id)]
CurrentUserId = Annotated[str, Depends(get_current_user_id)]

# ---------------------------------------------------------------------------
# Ceremony collaborators (built once per process)
# ---------------------------------------------------------------------------


@lru_cache
def get_verifier() -> CredentialVerifier:
    return WebAuthnVerifier()


@lru_cache
def get_session_issuer() -> SessionIssuer:
    return JWTSessionIssuer()


@lru_cache
def get_challenge_store() -> ChallengeStore:
    return ChallengeStore(ttl_seconds=settings.challenge_ttl_seconds)


def get_registration_ceremony(
    challenge_store: Annotated[ChallengeStore, Depends(get_challenge_store)],
    verifier: Annotated[CredentialVerifier, Depends(get_verifier)],
) -> RegistrationCeremony:
    return RegistrationCeremony(
        challenge_store,
        verifier,
        rp_id=settings.webauthn_rp_id,
        origins=settings.webauthn_origins,
    )


def get_authentication_ceremony(
    challenge_store: Annotated[ChallengeStore, Depends(get_challenge_store)],
    verifier: Annotated[CredentialVerifier, Depends(get_verifier)],
    session_issuer: Annotated[SessionIssuer, Depends(get_session_issuer)],
) -> AuthenticationCeremony:
    return AuthenticationCeremony(
        challenge_store,
        verifier,
        session_issuer,
        rp_id=settings.webauthn_rp_id,
        origins=settings.webauthn_origins,
    )
