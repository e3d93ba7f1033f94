"""Session issuance after a verified authentication ceremony."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from passkey_bridge.config import settings
from passkey_bridge.core.security import create_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHandle:
    token: str
    expires_at: datetime
    token_type: str = "bearer"


class SessionIssuer(Protocol):
    async def create_session(self, user_id: str) -> SessionHandle: ...


class JWTSessionIssuer:
    """Mints bearer JWTs; the token itself is the session."""

    def __init__(self, lifetime_minutes: int | None = None):
        self.lifetime = timedelta(minutes=lifetime_minutes or settings.jwt_expiration_minutes)

    async def create_session(self, user_id: str) -> SessionHandle:
        expires_at = datetime.now(UTC) + self.lifetime
        token = create_access_token(user_id, expires_at, amr=["passkey"])
        logger.debug("Issued passkey session for user %s", user_id)
        return SessionHandle(token=token, expires_at=expires_at)
