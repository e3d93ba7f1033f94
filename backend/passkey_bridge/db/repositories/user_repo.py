"""User repository."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from passkey_bridge.db.exceptions import ConnectionError, DatabaseError, DuplicateRecordError
from passkey_bridge.db.models import UNRESOLVED_USER_ID, User

logger = logging.getLogger(__name__)


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    """Get a user by ID.

    Ids that are not UUIDs (including the unresolved-identity sentinel) can
    never name a user and are answered without a query.
    """
    try:
        uuid.UUID(user_id)
    except (TypeError, ValueError):
        return None
    try:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()
    except OperationalError as e:
        logger.error(f"Database connection error in get_user_by_id for user {user_id}: {e}")
        raise ConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error getting user {user_id}: {e}")
        raise DatabaseError(f"Failed to get user: {e}") from e


async def create_user(db: AsyncSession, user: User) -> User:
    """Create a new user."""
    if user.id == UNRESOLVED_USER_ID:
        raise DatabaseError(f"User id {UNRESOLVED_USER_ID!r} is reserved")
    try:
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user
    except IntegrityError as e:
        logger.error(f"Duplicate user email {user.email}: {e}")
        raise DuplicateRecordError(f"User with email {user.email} already exists") from e
    except OperationalError as e:
        logger.error(f"Database connection error in create_user: {e}")
        raise ConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error creating user: {e}")
        raise DatabaseError(f"Failed to create user: {e}") from e
