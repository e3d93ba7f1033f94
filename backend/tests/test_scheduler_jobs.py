"""Tests for the inactive passkey cleanup scheduler."""

import logging
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from passkey_bridge.db.models import PasskeyCredential, PasskeyStatus
from passkey_bridge.db.repositories import passkey_repo
from passkey_bridge.services import scheduler
from passkey_bridge.utils.clock import utcnow


class FakeSession:
    """Minimal async context-manager that acts like AsyncSession."""

    def __init__(self):
        self.committed = False

    async def commit(self):
        self.committed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


@pytest_asyncio.fixture(autouse=True)
async def _reset_scheduler():
    yield
    scheduler.stop_scheduler()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("inactive_days", [0, -1, -30])
async def test_cleanup_disabled(inactive_days):
    with (
        patch("passkey_bridge.db.database.get_session_factory") as mock_factory,
        patch(
            "passkey_bridge.db.repositories.passkey_repo.revoke_inactive_credentials",
            new_callable=AsyncMock,
        ) as mock_revoke,
    ):
        result = scheduler.start_scheduler(inactive_days=inactive_days)

    assert result is None
    assert scheduler.get_scheduler() is None
    mock_factory.assert_not_called()
    mock_revoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_recurring_cleanup_job():
    sched = scheduler.start_scheduler(inactive_days=30)

    job = sched.get_job(scheduler.CLEANUP_JOB_ID)
    assert job is not None
    assert isinstance(job.trigger, IntervalTrigger)
    assert job.trigger.interval == timedelta(days=1)
    assert job.kwargs == {"inactive_days": 30}
    assert job.next_run_time is not None


@pytest.mark.asyncio
async def test_startup_only_cleanup_job():
    sched = scheduler.start_scheduler(inactive_days=7, disable_interval=True)

    jobs = sched.get_jobs()
    assert len(jobs) == 1
    assert isinstance(jobs[0].trigger, DateTrigger)
    assert jobs[0].kwargs == {"inactive_days": 7}


@pytest.mark.asyncio
async def test_start_twice_returns_running_scheduler():
    first = scheduler.start_scheduler(inactive_days=30)
    second = scheduler.start_scheduler(inactive_days=30)

    assert first is second


@pytest.mark.asyncio
async def test_trigger_job_now():
    assert scheduler.trigger_job_now() is False

    scheduler.start_scheduler(inactive_days=30)
    assert scheduler.trigger_job_now() is True
    assert scheduler.trigger_job_now("no-such-job") is False


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    scheduler.stop_scheduler()
    assert scheduler.get_scheduler() is None


# ---------------------------------------------------------------------------
# Job body
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_job_skips_without_database(caplog):
    caplog.set_level(logging.WARNING)

    with (
        patch("passkey_bridge.db.database.get_session_factory", return_value=None),
        patch(
            "passkey_bridge.db.repositories.passkey_repo.revoke_inactive_credentials",
            new_callable=AsyncMock,
        ) as mock_revoke,
    ):
        revoked = await scheduler.cleanup_inactive_passkeys_job(inactive_days=30)

    assert revoked == 0
    mock_revoke.assert_not_awaited()
    assert "database not initialized" in caplog.text


@pytest.mark.asyncio
async def test_job_revokes_and_purges():
    session = FakeSession()

    with (
        patch("passkey_bridge.db.database.get_session_factory", return_value=lambda: session),
        patch(
            "passkey_bridge.db.repositories.passkey_repo.revoke_inactive_credentials",
            new_callable=AsyncMock,
            return_value=2,
        ) as mock_revoke,
        patch(
            "passkey_bridge.db.repositories.challenge_repo.delete_expired_challenges",
            new_callable=AsyncMock,
            return_value=3,
        ) as mock_purge,
    ):
        revoked = await scheduler.cleanup_inactive_passkeys_job(inactive_days=30)

    assert revoked == 2
    assert session.committed
    mock_purge.assert_awaited_once()

    _, cutoff, now = mock_revoke.await_args.args
    assert now - cutoff == timedelta(days=30)


@pytest.mark.asyncio
async def test_job_logs_failures_without_raising(caplog):
    session = FakeSession()

    with (
        patch("passkey_bridge.db.database.get_session_factory", return_value=lambda: session),
        patch(
            "passkey_bridge.db.repositories.passkey_repo.revoke_inactive_credentials",
            new_callable=AsyncMock,
            side_effect=RuntimeError("database went away"),
        ),
    ):
        revoked = await scheduler.cleanup_inactive_passkeys_job(inactive_days=30)

    assert revoked == 0
    assert not session.committed
    assert "Passkey cleanup job failed" in caplog.text


@pytest.mark.asyncio
async def test_job_reports_revocations_when_purge_fails(caplog):
    caplog.set_level(logging.INFO)
    session = FakeSession()

    with (
        patch("passkey_bridge.db.database.get_session_factory", return_value=lambda: session),
        patch(
            "passkey_bridge.db.repositories.passkey_repo.revoke_inactive_credentials",
            new_callable=AsyncMock,
            return_value=2,
        ),
        patch(
            "passkey_bridge.db.repositories.challenge_repo.delete_expired_challenges",
            new_callable=AsyncMock,
            side_effect=RuntimeError("lock timeout"),
        ),
    ):
        revoked = await scheduler.cleanup_inactive_passkeys_job(inactive_days=30)

    assert revoked == 2
    assert session.committed
    assert "Expired challenge purge failed" in caplog.text
    assert "Passkey cleanup job failed" not in caplog.text
    assert "2 inactive passkeys revoked, 0 expired challenges purged" in caplog.text


@pytest.mark.asyncio
async def test_job_against_database(db, test_user):
    user_id = test_user.id
    now = utcnow()
    for credential_id, last_used in [("old", now - timedelta(days=45)), ("recent", now - timedelta(days=1))]:
        db.add(PasskeyCredential(
            id=str(uuid.uuid4()),
            user_id=user_id,
            credential_id=credential_id,
            public_key=b"key",
            counter=0,
            status=PasskeyStatus.ACTIVE.value,
            created_at=now - timedelta(days=60),
            updated_at=now,
            last_used=last_used,
        ))
    await db.commit()

    factory = async_sessionmaker(db.bind, expire_on_commit=False)
    with patch("passkey_bridge.db.database.get_session_factory", return_value=factory):
        revoked = await scheduler.cleanup_inactive_passkeys_job(inactive_days=30)

    assert revoked == 1
    db.expire_all()
    active = await passkey_repo.get_credentials_by_user_id(db, user_id)
    assert [p.credential_id for p in active] == ["recent"]
