"""Typed failures for challenge handling and passkey ceremonies.

Each error carries a stable ``code`` and the HTTP status the API boundary
renders it with. Ceremonies raise these directly; anything else escaping a
ceremony is wrapped in :class:`InternalError`.
"""


class PasskeyError(Exception):
    """Base class for caller-observable passkey failures."""

    code = "PASSKEY_ERROR"
    status_code = 400
    default_message = "Passkey operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ChallengeNotFound(PasskeyError):
    code = "CHALLENGE_NOT_FOUND"
    default_message = "Challenge not found or already used"


class ChallengeExpired(PasskeyError):
    code = "CHALLENGE_EXPIRED"
    default_message = "Challenge has expired — please try again"


class ChallengeTypeMismatch(PasskeyError):
    code = "CHALLENGE_TYPE_MISMATCH"
    default_message = "Challenge was issued for a different ceremony"


class Unauthorized(PasskeyError):
    code = "SESSION_REQUIRED"
    status_code = 401
    default_message = "You must be logged in to register a passkey"


class UserNotFound(PasskeyError):
    code = "USER_NOT_FOUND"
    status_code = 404
    default_message = "User not found"


class CredentialNotFound(PasskeyError):
    code = "CREDENTIAL_NOT_FOUND"
    status_code = 404
    default_message = "Passkey not recognized"


class CredentialRevoked(PasskeyError):
    code = "CREDENTIAL_REVOKED"
    status_code = 403
    default_message = "This passkey has been revoked"


class CredentialAlreadyExists(PasskeyError):
    code = "CREDENTIAL_EXISTS"
    status_code = 409
    default_message = "This passkey is already registered"


class CounterReplayDetected(PasskeyError):
    code = "COUNTER_REPLAY"
    status_code = 409
    default_message = "Signature counter did not advance — possible cloned authenticator"


class VerificationFailed(PasskeyError):
    code = "VERIFICATION_FAILED"
    default_message = "Passkey verification failed — please try again"


class AdapterUnavailable(PasskeyError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    default_message = "Credential storage is unavailable"


class InternalError(PasskeyError):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"
