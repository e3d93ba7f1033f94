"""Repository for single-use WebAuthn challenges."""

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from passkey_bridge.db.exceptions import ConnectionError, DatabaseError, DuplicateRecordError
from passkey_bridge.db.models import ChallengeType, PasskeyChallenge

logger = logging.getLogger(__name__)


async def create_challenge(db: AsyncSession, challenge: PasskeyChallenge) -> PasskeyChallenge:
    """Persist a newly issued challenge."""
    try:
        db.add(challenge)
        await db.flush()
        return challenge
    except IntegrityError as e:
        logger.error(f"Challenge value collision for user {challenge.user_id}: {e}")
        raise DuplicateRecordError("Challenge value already issued") from e
    except OperationalError as e:
        logger.error(f"Database connection error in create_challenge: {e}")
        raise ConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error creating challenge for user {challenge.user_id}: {e}")
        raise DatabaseError(f"Failed to create challenge: {e}") from e


async def get_challenge_by_value(db: AsyncSession, value: str) -> PasskeyChallenge | None:
    try:
        result = await db.execute(select(PasskeyChallenge).where(PasskeyChallenge.challenge == value))
        return result.scalar_one_or_none()
    except OperationalError as e:
        logger.error(f"Database connection error in get_challenge_by_value: {e}")
        raise ConnectionError("Database connection failed") from e


async def get_latest_challenge(
    db: AsyncSession, user_id: str, challenge_type: ChallengeType,
) -> PasskeyChallenge | None:
    """Most recently issued challenge of ``challenge_type`` for ``user_id``."""
    try:
        result = await db.execute(
            select(PasskeyChallenge)
            .where(
                PasskeyChallenge.user_id == user_id,
                PasskeyChallenge.type == challenge_type.value,
            )
            .order_by(PasskeyChallenge.created_at.desc(), PasskeyChallenge.expires_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
    except OperationalError as e:
        logger.error(f"Database connection error in get_latest_challenge for user {user_id}: {e}")
        raise ConnectionError("Database connection failed") from e


async def delete_challenge(db: AsyncSession, challenge_id: str) -> bool:
    """Delete a challenge if it is still present.

    Returns True only for the caller whose statement removed the row, so two
    concurrent consumers of the same challenge cannot both succeed.
    """
    try:
        result = await db.execute(
            delete(PasskeyChallenge)
            .where(PasskeyChallenge.id == challenge_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
    except OperationalError as e:
        logger.error(f"Database connection error deleting challenge {challenge_id}: {e}")
        raise ConnectionError("Database connection failed") from e


async def delete_expired_challenges(db: AsyncSession, now: datetime) -> int:
    """Remove every challenge whose expiry has passed. Returns the count."""
    try:
        result = await db.execute(
            delete(PasskeyChallenge)
            .where(PasskeyChallenge.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
    except OperationalError as e:
        logger.error(f"Database connection error in delete_expired_challenges: {e}")
        raise ConnectionError("Database connection failed") from e
