"""Tests for challenge issuance and single-use consumption."""

import base64
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from passkey_bridge.core.errors import (
    ChallengeExpired,
    ChallengeNotFound,
    ChallengeTypeMismatch,
    Unauthorized,
    UserNotFound,
)
from passkey_bridge.db.models import UNRESOLVED_USER_ID, ChallengeType, PasskeyChallenge
from passkey_bridge.services.challenge_service import ChallengeStore


async def _challenge_count(db) -> int:
    result = await db.execute(select(func.count()).select_from(PasskeyChallenge))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_issue_registration_challenge(db, test_user, challenge_store):
    challenge = await challenge_store.issue(db, test_user.id, ChallengeType.REGISTRATION)

    assert challenge.user_id == test_user.id
    assert challenge.type is ChallengeType.REGISTRATION
    assert challenge.expires_at - challenge.created_at == timedelta(minutes=5)
    # 32 random bytes, base64url without padding
    assert len(base64.urlsafe_b64decode(challenge.challenge + "=")) == 32
    assert await _challenge_count(db) == 1


@pytest.mark.asyncio
async def test_challenge_values_are_unique(db, test_user, challenge_store):
    values = set()
    for _ in range(10):
        challenge = await challenge_store.issue(db, None, ChallengeType.AUTHENTICATION)
        values.add(challenge.challenge)
    assert len(values) == 10


@pytest.mark.asyncio
async def test_registration_without_user_is_unauthorized(db, challenge_store):
    with pytest.raises(Unauthorized):
        await challenge_store.issue(db, None, ChallengeType.REGISTRATION)
    assert await _challenge_count(db) == 0


@pytest.mark.asyncio
async def test_registration_with_sentinel_is_unauthorized(db, challenge_store):
    with pytest.raises(Unauthorized):
        await challenge_store.issue(db, UNRESOLVED_USER_ID, ChallengeType.REGISTRATION)
    assert await _challenge_count(db) == 0


@pytest.mark.asyncio
async def test_registration_for_unknown_user(db, challenge_store):
    with pytest.raises(UserNotFound):
        await challenge_store.issue(db, "3f1c1f0e-4f61-4a35-9d0e-6e1f3b3a9c11", ChallengeType.REGISTRATION)
    assert await _challenge_count(db) == 0


@pytest.mark.asyncio
async def test_anonymous_authentication_uses_sentinel(db, challenge_store):
    challenge = await challenge_store.issue(db, None, ChallengeType.AUTHENTICATION)

    assert challenge.user_id == UNRESOLVED_USER_ID
    assert challenge.is_unresolved


@pytest.mark.asyncio
async def test_registration_options_are_kept(db, test_user, challenge_store):
    options = {"authenticatorSelection": {"userVerification": "required"}}
    await challenge_store.issue(db, test_user.id, ChallengeType.REGISTRATION, options)

    consumed = await challenge_store.consume(db, ChallengeType.REGISTRATION, user_id=test_user.id)
    assert consumed.registration_options == options
    assert consumed.requires_user_verification


@pytest.mark.asyncio
async def test_consume_by_value_is_single_use(db, test_user, challenge_store):
    issued = await challenge_store.issue(db, test_user.id, ChallengeType.AUTHENTICATION)

    consumed = await challenge_store.consume(db, ChallengeType.AUTHENTICATION, value=issued.challenge)
    assert consumed.id == issued.id

    with pytest.raises(ChallengeNotFound):
        await challenge_store.consume(db, ChallengeType.AUTHENTICATION, value=issued.challenge)


@pytest.mark.asyncio
async def test_consume_by_user_takes_latest(db, test_user, challenge_store):
    await challenge_store.issue(db, test_user.id, ChallengeType.AUTHENTICATION)
    latest = await challenge_store.issue(db, test_user.id, ChallengeType.AUTHENTICATION)

    consumed = await challenge_store.consume(db, ChallengeType.AUTHENTICATION, user_id=test_user.id)
    assert consumed.id == latest.id
    assert await _challenge_count(db) == 1


@pytest.mark.asyncio
async def test_consume_unknown_value(db, challenge_store):
    with pytest.raises(ChallengeNotFound):
        await challenge_store.consume(db, ChallengeType.AUTHENTICATION, value="does-not-exist")


@pytest.mark.asyncio
async def test_consume_with_wrong_type(db, test_user, challenge_store):
    issued = await challenge_store.issue(db, test_user.id, ChallengeType.REGISTRATION)

    with pytest.raises(ChallengeTypeMismatch):
        await challenge_store.consume(db, ChallengeType.AUTHENTICATION, value=issued.challenge)
    # A mismatched challenge is left for its own ceremony
    assert await _challenge_count(db) == 1


@pytest.mark.asyncio
async def test_consume_by_user_ignores_other_type(db, test_user, challenge_store):
    await challenge_store.issue(db, test_user.id, ChallengeType.REGISTRATION)

    with pytest.raises(ChallengeNotFound):
        await challenge_store.consume(db, ChallengeType.AUTHENTICATION, user_id=test_user.id)


@pytest.mark.asyncio
async def test_concurrent_consumer_wins(db, challenge_store, caplog):
    caplog.set_level(logging.INFO)
    issued = await challenge_store.issue(db, None, ChallengeType.AUTHENTICATION)

    # Another instance deleted the row between our lookup and our delete
    with patch(
        "passkey_bridge.db.repositories.challenge_repo.delete_challenge",
        new_callable=AsyncMock,
        return_value=False,
    ) as mock_delete:
        with pytest.raises(ChallengeNotFound):
            await challenge_store.consume(db, ChallengeType.AUTHENTICATION, value=issued.challenge)

    mock_delete.assert_awaited_once()
    assert "consumed concurrently" in caplog.text


@pytest.mark.asyncio
async def test_consume_restricted_to_owners(db, test_user, other_user, challenge_store):
    issued = await challenge_store.issue(db, other_user.id, ChallengeType.AUTHENTICATION)

    with pytest.raises(ChallengeNotFound):
        await challenge_store.consume(
            db, ChallengeType.AUTHENTICATION, value=issued.challenge, owners=(test_user.id, UNRESOLVED_USER_ID),
        )
    assert await _challenge_count(db) == 1

    consumed = await challenge_store.consume(
        db, ChallengeType.AUTHENTICATION, value=issued.challenge, owners=(other_user.id,),
    )
    assert consumed.id == issued.id


@pytest.mark.asyncio
async def test_expired_challenge_is_deleted_on_consume(db, test_user):
    store = ChallengeStore(ttl_seconds=0)
    issued = await store.issue(db, test_user.id, ChallengeType.AUTHENTICATION)

    with pytest.raises(ChallengeExpired):
        await store.consume(db, ChallengeType.AUTHENTICATION, value=issued.challenge)
    assert await _challenge_count(db) == 0

    with pytest.raises(ChallengeNotFound):
        await store.consume(db, ChallengeType.AUTHENTICATION, value=issued.challenge)


@pytest.mark.asyncio
async def test_consume_requires_a_lookup_key(db, challenge_store):
    with pytest.raises(ValueError):
        await challenge_store.consume(db, ChallengeType.AUTHENTICATION)


@pytest.mark.asyncio
async def test_purge_expired(db, test_user, challenge_store):
    expired_store = ChallengeStore(ttl_seconds=0)
    await expired_store.issue(db, test_user.id, ChallengeType.AUTHENTICATION)
    await expired_store.issue(db, None, ChallengeType.AUTHENTICATION)
    fresh = await challenge_store.issue(db, test_user.id, ChallengeType.REGISTRATION)

    purged = await challenge_store.purge_expired(db)

    assert purged == 2
    consumed = await challenge_store.consume(db, ChallengeType.REGISTRATION, value=fresh.challenge)
    assert consumed.id == fresh.id
