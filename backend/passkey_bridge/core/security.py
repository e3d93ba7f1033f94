"""JWT helpers for session tokens."""

from datetime import datetime

from jose import JWTError, jwt

from passkey_bridge.config import settings


def create_access_token(user_id: str, expires_at: datetime, **claims: object) -> str:
    """Create a signed JWT access token for ``user_id``."""
    payload = {"sub": user_id, "exp": expires_at, **claims}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Decode and validate a JWT. Raises ``JWTError`` when invalid or expired."""
    payload = jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
    )
    if payload.get("sub") is None:
        raise JWTError("Missing subject")
    return payload
