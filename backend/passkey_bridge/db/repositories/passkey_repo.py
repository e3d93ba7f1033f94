"""Repository for WebAuthn passkey credential operations.

Every mutation here is a single conditional statement so that concurrent
service instances coordinate through the database rather than in memory.
"""

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from passkey_bridge.db.exceptions import ConnectionError, DatabaseError, DuplicateRecordError
from passkey_bridge.db.models import PasskeyCredential, PasskeyStatus
from passkey_bridge.utils.clock import utcnow

logger = logging.getLogger(__name__)

AUTOMATIC_INACTIVE_REASON = "automatic_inactive"


async def create_passkey_credential(db: AsyncSession, credential: PasskeyCredential) -> PasskeyCredential:
    """Persist a new passkey credential. ``credential_id`` must be unused."""
    try:
        existing = await db.execute(
            select(PasskeyCredential.id).where(PasskeyCredential.credential_id == credential.credential_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateRecordError(f"Passkey {credential.credential_id} already exists")

        db.add(credential)
        await db.flush()
        await db.refresh(credential)
        return credential
    except DuplicateRecordError:
        logger.warning(f"Duplicate passkey credential id {credential.credential_id}")
        raise
    except IntegrityError as e:
        logger.error(f"Duplicate passkey credential id {credential.credential_id}: {e}")
        raise DuplicateRecordError(f"Passkey {credential.credential_id} already exists") from e
    except OperationalError as e:
        logger.error(f"Database connection error in create_passkey_credential: {e}")
        raise ConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error creating passkey for user {credential.user_id}: {e}")
        raise DatabaseError(f"Failed to create passkey: {e}") from e


async def get_credential_by_credential_id(
    db: AsyncSession, credential_id: str, include_revoked: bool = False,
) -> PasskeyCredential | None:
    """Look up a passkey by its WebAuthn credential ID (active only by default)."""
    stmt = select(PasskeyCredential).where(PasskeyCredential.credential_id == credential_id)
    if not include_revoked:
        stmt = stmt.where(PasskeyCredential.status == PasskeyStatus.ACTIVE.value)
    try:
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
    except OperationalError as e:
        logger.error(f"Database connection error looking up passkey {credential_id}: {e}")
        raise ConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error looking up passkey {credential_id}: {e}")
        raise DatabaseError(f"Failed to get passkey: {e}") from e


async def get_credentials_by_user_id(
    db: AsyncSession, user_id: str, include_revoked: bool = False,
) -> list[PasskeyCredential]:
    """Return a user's passkeys, newest first."""
    stmt = (
        select(PasskeyCredential)
        .where(PasskeyCredential.user_id == user_id)
        .order_by(PasskeyCredential.created_at.desc())
    )
    if not include_revoked:
        stmt = stmt.where(PasskeyCredential.status == PasskeyStatus.ACTIVE.value)
    try:
        result = await db.execute(stmt)
        return list(result.scalars().all())
    except OperationalError as e:
        logger.error(f"Database connection error listing passkeys for user {user_id}: {e}")
        raise ConnectionError("Database connection failed") from e


async def update_counter_and_metadata(
    db: AsyncSession,
    passkey_id: str,
    *,
    expected_counter: int,
    new_counter: int,
    metadata_json: str,
    last_used: datetime,
) -> bool:
    """Compare-and-set the signature counter together with metadata and last use.

    The row only changes while it is still active and its counter still
    equals ``expected_counter``. Returns False when another writer got there
    first (or the passkey was revoked meanwhile).
    """
    try:
        result = await db.execute(
            update(PasskeyCredential)
            .where(
                PasskeyCredential.id == passkey_id,
                PasskeyCredential.counter == expected_counter,
                PasskeyCredential.status == PasskeyStatus.ACTIVE.value,
            )
            .values({
                PasskeyCredential.counter: new_counter,
                PasskeyCredential.metadata_json: metadata_json,
                PasskeyCredential.last_used: last_used,
                PasskeyCredential.updated_at: last_used,
            })
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
    except OperationalError as e:
        logger.error(f"Database connection error updating passkey {passkey_id}: {e}")
        raise ConnectionError("Database connection failed") from e


async def revoke_credential(
    db: AsyncSession, passkey_id: str, reason: str, now: datetime | None = None,
) -> bool:
    """Revoke one active passkey. Returns False if it was not active."""
    now = now or utcnow()
    try:
        result = await db.execute(
            update(PasskeyCredential)
            .where(
                PasskeyCredential.id == passkey_id,
                PasskeyCredential.status == PasskeyStatus.ACTIVE.value,
            )
            .values(
                status=PasskeyStatus.REVOKED.value,
                revoked_at=now,
                revoked_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
    except OperationalError as e:
        logger.error(f"Database connection error revoking passkey {passkey_id}: {e}")
        raise ConnectionError("Database connection failed") from e


async def revoke_inactive_credentials(db: AsyncSession, cutoff: datetime, now: datetime) -> int:
    """Revoke every active passkey not used since ``cutoff``.

    A passkey that has never authenticated is judged by its creation time.
    Returns the number of passkeys revoked.
    """
    try:
        result = await db.execute(
            update(PasskeyCredential)
            .where(
                PasskeyCredential.status == PasskeyStatus.ACTIVE.value,
                func.coalesce(PasskeyCredential.last_used, PasskeyCredential.created_at) < cutoff,
            )
            .values(
                status=PasskeyStatus.REVOKED.value,
                revoked_at=now,
                revoked_reason=AUTOMATIC_INACTIVE_REASON,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
    except OperationalError as e:
        logger.error(f"Database connection error in revoke_inactive_credentials: {e}")
        raise ConnectionError("Database connection failed") from e
