"""Challenge issuance and single-use consumption.

Challenges live in the database, never in process memory, so any number of
service instances can share them. Consumption is compare-and-delete: the
caller whose DELETE removes the row wins, everyone else sees
``ChallengeNotFound``. Consumption is committed immediately and is never
undone, even if the ceremony fails afterwards.
"""

import json
import logging
import secrets
import uuid
from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from passkey_bridge.core.errors import (
    ChallengeExpired,
    ChallengeNotFound,
    ChallengeTypeMismatch,
    Unauthorized,
    UserNotFound,
)
from passkey_bridge.db.models import UNRESOLVED_USER_ID, ChallengeType, PasskeyChallenge
from passkey_bridge.db.repositories import challenge_repo, user_repo
from passkey_bridge.utils.clock import utcnow

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 32  # 256 bits of entropy
DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True)
class Challenge:
    """Detached snapshot of a challenge row."""

    id: str
    user_id: str
    challenge: str
    type: ChallengeType
    created_at: datetime
    expires_at: datetime
    registration_options: dict[str, Any] | None = None

    @classmethod
    def from_row(cls, row: PasskeyChallenge) -> "Challenge":
        options = None
        if row.registration_options:
            try:
                options = json.loads(row.registration_options)
            except ValueError:
                logger.warning("Discarding unreadable registration options on challenge %s", row.id)
        return cls(
            id=row.id,
            user_id=row.user_id,
            challenge=row.challenge,
            type=ChallengeType(row.type),
            created_at=row.created_at,
            expires_at=row.expires_at,
            registration_options=options,
        )

    @property
    def is_unresolved(self) -> bool:
        return self.user_id == UNRESOLVED_USER_ID

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def requires_user_verification(self) -> bool:
        """Whether the echoed registration options demanded user verification."""
        selection = (self.registration_options or {}).get("authenticatorSelection") or {}
        return selection.get("userVerification") == "required"


class ChallengeStore:
    """Issues and atomically consumes single-use challenges."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl = timedelta(seconds=ttl_seconds)

    async def issue(
        self,
        db: AsyncSession,
        user_id: str | None,
        challenge_type: ChallengeType,
        registration_options: dict[str, Any] | None = None,
    ) -> Challenge:
        """Create and persist a fresh challenge.

        Registration needs a real, already-authenticated user id. For
        authentication a missing id means the discoverable flow, recorded
        under the unresolved sentinel.
        """
        if challenge_type is ChallengeType.REGISTRATION:
            if not user_id or user_id == UNRESOLVED_USER_ID:
                logger.warning("Registration challenge requested without an authenticated user")
                raise Unauthorized()
            if await user_repo.get_user_by_id(db, user_id) is None:
                logger.warning("Challenge generation failed: user %s not found", user_id)
                raise UserNotFound()
        else:
            user_id = user_id or UNRESOLVED_USER_ID

        now = utcnow()
        row = PasskeyChallenge(
            id=str(uuid.uuid4()),
            user_id=user_id,
            challenge=secrets.token_urlsafe(CHALLENGE_BYTES),
            type=challenge_type.value,
            registration_options=json.dumps(registration_options) if registration_options else None,
            created_at=now,
            expires_at=now + self.ttl,
        )
        await challenge_repo.create_challenge(db, row)
        await db.commit()

        logger.debug("Issued %s challenge for user %s", challenge_type.value, user_id)
        return Challenge.from_row(row)

    async def consume(
        self,
        db: AsyncSession,
        challenge_type: ChallengeType,
        *,
        value: str | None = None,
        user_id: str | None = None,
        owners: Collection[str] | None = None,
    ) -> Challenge:
        """Locate a challenge by value or by (user, type) and destroy it.

        Raises ``ChallengeNotFound`` when absent, when a concurrent consumer
        won, or when ``owners`` is given and the challenge was issued to
        someone else (such a challenge is left in place).
        ``ChallengeTypeMismatch`` when a challenge found by value belongs to
        the other ceremony, and ``ChallengeExpired`` (after deleting the row)
        when it is past its expiry.
        """
        if value is not None:
            row = await challenge_repo.get_challenge_by_value(db, value)
        elif user_id is not None:
            row = await challenge_repo.get_latest_challenge(db, user_id, challenge_type)
        else:
            raise ValueError("consume() needs a challenge value or a user id")

        if row is None:
            raise ChallengeNotFound()

        challenge = Challenge.from_row(row)
        if challenge.type is not challenge_type:
            raise ChallengeTypeMismatch()
        if owners is not None and challenge.user_id not in owners:
            logger.warning("Challenge %s was issued to another user", challenge.id)
            raise ChallengeNotFound()

        deleted = await challenge_repo.delete_challenge(db, challenge.id)
        await db.commit()

        if challenge.is_expired(utcnow()):
            logger.info("Discarded expired %s challenge %s", challenge.type.value, challenge.id)
            raise ChallengeExpired()
        if not deleted:
            logger.info("Challenge %s was consumed concurrently", challenge.id)
            raise ChallengeNotFound()
        return challenge

    async def purge_expired(self, db: AsyncSession) -> int:
        """Delete every expired challenge row."""
        count = await challenge_repo.delete_expired_challenges(db, utcnow())
        await db.commit()
        return count
