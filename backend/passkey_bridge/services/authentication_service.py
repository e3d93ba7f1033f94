"""Passkey authentication ceremony.

Resolve credential -> resolve challenge -> verify assertion -> counter
replay check -> merge metadata and compare-and-set the counter -> mint a
session. Failures before the final write leave the passkey untouched; the
consumed challenge stays consumed regardless of the outcome.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from passkey_bridge.core.errors import (
    AdapterUnavailable,
    CounterReplayDetected,
    CredentialNotFound,
    CredentialRevoked,
    InternalError,
    PasskeyError,
    UserNotFound,
    VerificationFailed,
)
from passkey_bridge.core.metadata import PasskeyMetadata
from passkey_bridge.db.exceptions import ConnectionError
from passkey_bridge.db.models import UNRESOLVED_USER_ID, ChallengeType, PasskeyCredential, PasskeyStatus, User
from passkey_bridge.db.repositories import passkey_repo, user_repo
from passkey_bridge.services.challenge_service import Challenge, ChallengeStore
from passkey_bridge.services.session_issuer import SessionHandle, SessionIssuer
from passkey_bridge.services.webauthn_verifier import CredentialVerifier, challenge_from_response
from passkey_bridge.utils.clock import isoformat_z, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticationResult:
    session: SessionHandle
    user: User
    credential_id: str
    counter: int


def check_counter(stored: int, reported: int) -> None:
    """Reject a signature counter that did not advance.

    Authenticators that never count report 0 every time; when both values
    are 0 there is nothing to enforce.
    """
    if stored == 0 and reported == 0:
        return
    if reported <= stored:
        raise CounterReplayDetected()


class AuthenticationCeremony:
    def __init__(
        self,
        challenge_store: ChallengeStore,
        verifier: CredentialVerifier,
        session_issuer: SessionIssuer,
        rp_id: str,
        origins: list[str],
    ):
        self.challenge_store = challenge_store
        self.verifier = verifier
        self.session_issuer = session_issuer
        self.rp_id = rp_id
        self.origins = origins

    async def authenticate(
        self,
        db: AsyncSession,
        *,
        response: dict[str, Any],
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuthenticationResult:
        """Run the ceremony for one assertion.

        ``user_id`` is the identity the client claims, if any. Without it the
        owner is taken from the credential (discoverable flow).
        """
        if not user_id or user_id == UNRESOLVED_USER_ID:
            user_id = None
        try:
            return await self._authenticate(db, response, user_id, metadata)
        except PasskeyError:
            raise
        except ConnectionError as exc:
            logger.error("Storage unavailable during passkey authentication", exc_info=True)
            raise AdapterUnavailable() from exc
        except Exception as exc:
            logger.error("Authentication error:", exc_info=True)
            raise InternalError() from exc

    async def _authenticate(
        self,
        db: AsyncSession,
        response: dict[str, Any],
        user_id: str | None,
        metadata: dict[str, Any] | None,
    ) -> AuthenticationResult:
        passkey = await self._resolve_credential(db, response, user_id)

        user = await user_repo.get_user_by_id(db, passkey.user_id)
        if user is None:
            logger.warning("Passkey %s belongs to missing user %s", passkey.credential_id, passkey.user_id)
            raise UserNotFound()

        challenge = await self._resolve_challenge(db, response, user_id, passkey.user_id)

        verification = await self.verifier.verify_authentication(
            response=response,
            expected_challenge=challenge.challenge,
            rp_id=self.rp_id,
            origins=self.origins,
            public_key=passkey.public_key,
            current_sign_count=passkey.counter,
        )

        stored_counter = passkey.counter
        new_counter = verification.new_sign_count
        try:
            check_counter(stored_counter, new_counter)
        except CounterReplayDetected:
            logger.warning(
                "Counter replay on passkey %s: stored %d, reported %d",
                passkey.credential_id, stored_counter, new_counter,
            )
            raise

        now = utcnow()
        existing = PasskeyMetadata.decode(passkey.metadata_json)
        if not existing.intact:
            logger.warning(
                "Failed to parse existing passkey metadata, resetting: credentialId=%s",
                passkey.credential_id,
            )
        merged = existing.merged(metadata, lastAuthenticationAt=isoformat_z(now))

        updated = await passkey_repo.update_counter_and_metadata(
            db,
            passkey.id,
            expected_counter=stored_counter,
            new_counter=new_counter,
            metadata_json=merged.encode(),
            last_used=now,
        )
        if not updated:
            logger.warning("Passkey %s changed during authentication", passkey.credential_id)
            raise CounterReplayDetected()
        await db.commit()

        session = await self.session_issuer.create_session(user.id)
        logger.info("Passkey authentication succeeded for user %s", user.id)
        return AuthenticationResult(
            session=session,
            user=user,
            credential_id=passkey.credential_id,
            counter=new_counter,
        )

    async def _resolve_credential(
        self, db: AsyncSession, response: dict[str, Any], user_id: str | None,
    ) -> PasskeyCredential:
        credential_id = response.get("id") or response.get("rawId")
        if not credential_id:
            raise CredentialNotFound("Assertion does not identify a passkey")

        passkey = await passkey_repo.get_credential_by_credential_id(
            db, credential_id, include_revoked=True,
        )
        if passkey is None:
            raise CredentialNotFound()
        if passkey.status != PasskeyStatus.ACTIVE.value:
            logger.warning("Attempted authentication with revoked passkey %s", credential_id)
            raise CredentialRevoked()
        if user_id is not None and passkey.user_id != user_id:
            logger.warning("Passkey %s does not belong to claimed user %s", credential_id, user_id)
            raise CredentialNotFound()
        return passkey

    async def _resolve_challenge(
        self,
        db: AsyncSession,
        response: dict[str, Any],
        claimed_user_id: str | None,
        owner_id: str,
    ) -> Challenge:
        # Look up the exact challenge this client signed so overlapping
        # discoverable logins never take each other's challenge.
        value = challenge_from_response(response)
        if value is None:
            raise VerificationFailed("Assertion does not carry a readable challenge")

        if claimed_user_id is not None:
            owners = (claimed_user_id,)
        else:
            # Issued for the owner, or before any identity was known
            owners = (owner_id, UNRESOLVED_USER_ID)
        return await self.challenge_store.consume(
            db, ChallengeType.AUTHENTICATION, value=value, owners=owners,
        )
