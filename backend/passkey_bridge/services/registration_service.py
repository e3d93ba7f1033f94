"""Passkey registration ceremony."""

import json
import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from passkey_bridge.core.errors import (
    AdapterUnavailable,
    CredentialAlreadyExists,
    InternalError,
    PasskeyError,
    Unauthorized,
    UserNotFound,
)
from passkey_bridge.core.metadata import PasskeyMetadata
from passkey_bridge.db.exceptions import ConnectionError, DuplicateRecordError
from passkey_bridge.db.models import UNRESOLVED_USER_ID, ChallengeType, PasskeyCredential, PasskeyStatus
from passkey_bridge.db.repositories import passkey_repo, user_repo
from passkey_bridge.services.challenge_service import ChallengeStore
from passkey_bridge.services.webauthn_verifier import CredentialVerifier
from passkey_bridge.utils.clock import isoformat_z, utcnow

logger = logging.getLogger(__name__)


class RegistrationCeremony:
    """Turns a verified credential-creation response into an active passkey.

    Nothing is written unless the registration challenge was consumed and
    the attestation verified; the credential row is the only write.
    """

    def __init__(
        self,
        challenge_store: ChallengeStore,
        verifier: CredentialVerifier,
        rp_id: str,
        origins: list[str],
    ):
        self.challenge_store = challenge_store
        self.verifier = verifier
        self.rp_id = rp_id
        self.origins = origins

    async def register(
        self,
        db: AsyncSession,
        *,
        user_id: str | None,
        response: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> PasskeyCredential:
        if not user_id or user_id == UNRESOLVED_USER_ID:
            raise Unauthorized()

        try:
            return await self._register(db, user_id, response, metadata)
        except PasskeyError:
            raise
        except ConnectionError as exc:
            logger.error("Storage unavailable during passkey registration for user %s", user_id, exc_info=True)
            raise AdapterUnavailable() from exc
        except Exception as exc:
            logger.error("Registration error for user %s", user_id, exc_info=True)
            raise InternalError() from exc

    async def _register(
        self,
        db: AsyncSession,
        user_id: str,
        response: dict[str, Any],
        metadata: dict[str, Any] | None,
    ) -> PasskeyCredential:
        if await user_repo.get_user_by_id(db, user_id) is None:
            raise UserNotFound()

        challenge = await self.challenge_store.consume(
            db, ChallengeType.REGISTRATION, user_id=user_id,
        )

        verification = await self.verifier.verify_registration(
            response=response,
            expected_challenge=challenge.challenge,
            rp_id=self.rp_id,
            origins=self.origins,
            require_user_verification=challenge.requires_user_verification,
        )

        now = utcnow()
        transports = (response.get("response") or {}).get("transports")
        credential = PasskeyCredential(
            id=str(uuid.uuid4()),
            user_id=user_id,
            credential_id=verification.credential_id,
            public_key=verification.public_key,
            counter=verification.sign_count or 0,
            status=PasskeyStatus.ACTIVE.value,
            transports=json.dumps(transports) if transports else None,
            aaguid=verification.aaguid,
            device_type=verification.device_type,
            backed_up=verification.backed_up,
            metadata_json=PasskeyMetadata().merged(metadata, registeredAt=isoformat_z(now)).encode(),
            created_at=now,
            updated_at=now,
            last_used=now,
        )

        try:
            credential = await passkey_repo.create_passkey_credential(db, credential)
        except DuplicateRecordError as exc:
            await db.rollback()
            raise CredentialAlreadyExists() from exc
        await db.commit()

        logger.info("Registered passkey %s for user %s", credential.credential_id, user_id)
        return credential
