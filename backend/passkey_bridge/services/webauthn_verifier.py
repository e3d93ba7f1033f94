"""Cryptographic verification of WebAuthn responses.

The ceremonies depend on the :class:`CredentialVerifier` protocol only;
:class:`WebAuthnVerifier` fulfils it with py_webauthn. Library calls are
synchronous, so they run in a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from webauthn import verify_authentication_response, verify_registration_response
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url, parse_client_data_json

from passkey_bridge.core.errors import VerificationFailed

logger = logging.getLogger(__name__)


def challenge_from_response(response: dict[str, Any]) -> str | None:
    """Return the challenge the client signed over, as stored by the challenge store.

    Read from the response's ``clientDataJSON``. Returns ``None`` when it is
    missing or unreadable; the signature check would reject it anyway.
    """
    inner = response.get("response")
    client_data_json = inner.get("clientDataJSON") if isinstance(inner, dict) else None
    if not isinstance(client_data_json, str) or not client_data_json:
        return None
    try:
        client_data = parse_client_data_json(base64url_to_bytes(client_data_json))
    except Exception as exc:
        logger.warning("Unreadable clientDataJSON in passkey response: %s", exc)
        return None
    return bytes_to_base64url(client_data.challenge)


@dataclass(frozen=True)
class VerifiedRegistration:
    credential_id: str
    public_key: bytes
    sign_count: int
    aaguid: str | None = None
    device_type: str | None = None
    backed_up: bool = False


@dataclass(frozen=True)
class VerifiedAuthentication:
    credential_id: str
    new_sign_count: int
    user_verified: bool = False


class CredentialVerifier(Protocol):
    async def verify_registration(
        self,
        *,
        response: dict[str, Any],
        expected_challenge: str,
        rp_id: str,
        origins: list[str],
        require_user_verification: bool = False,
    ) -> VerifiedRegistration: ...

    async def verify_authentication(
        self,
        *,
        response: dict[str, Any],
        expected_challenge: str,
        rp_id: str,
        origins: list[str],
        public_key: bytes,
        current_sign_count: int,
    ) -> VerifiedAuthentication: ...


class WebAuthnVerifier:
    """py_webauthn-backed verifier. Any library failure becomes ``VerificationFailed``."""

    async def verify_registration(
        self,
        *,
        response: dict[str, Any],
        expected_challenge: str,
        rp_id: str,
        origins: list[str],
        require_user_verification: bool = False,
    ) -> VerifiedRegistration:
        try:
            verification = await asyncio.to_thread(
                verify_registration_response,
                credential=response,
                expected_challenge=base64url_to_bytes(expected_challenge),
                expected_rp_id=rp_id,
                expected_origin=origins,
                require_user_verification=require_user_verification,
            )
        except Exception as exc:
            logger.warning("Passkey registration verification failed: %s", exc)
            raise VerificationFailed() from exc

        return VerifiedRegistration(
            credential_id=bytes_to_base64url(verification.credential_id),
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count or 0,
            aaguid=verification.aaguid or None,
            device_type=getattr(verification.credential_device_type, "value", None),
            backed_up=bool(verification.credential_backed_up),
        )

    async def verify_authentication(
        self,
        *,
        response: dict[str, Any],
        expected_challenge: str,
        rp_id: str,
        origins: list[str],
        public_key: bytes,
        current_sign_count: int,
    ) -> VerifiedAuthentication:
        # Counter policy (including non-counting authenticators) is enforced
        # by the authentication ceremony, so the library only checks the
        # signature here.
        try:
            verification = await asyncio.to_thread(
                verify_authentication_response,
                credential=response,
                expected_challenge=base64url_to_bytes(expected_challenge),
                expected_rp_id=rp_id,
                expected_origin=origins,
                credential_public_key=public_key,
                credential_current_sign_count=0,
            )
        except Exception as exc:
            logger.warning(
                "Passkey authentication verification failed (stored counter %d): %s",
                current_sign_count, exc,
            )
            raise VerificationFailed() from exc

        return VerifiedAuthentication(
            credential_id=bytes_to_base64url(verification.credential_id),
            new_sign_count=verification.new_sign_count,
            user_verified=bool(getattr(verification, "user_verified", False)),
        )
