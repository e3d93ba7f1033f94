"""Background scheduler for inactive passkey cleanup.

One job: revoke every active passkey whose last use is older than
``inactive_days`` and drop expired challenges. It runs once at startup and
then daily. ``inactive_days <= 0`` disables the feature entirely;
``disable_interval`` keeps the startup sweep but schedules no recurrence
(for serverless hosts where a process lives for one request burst).
"""

import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from passkey_bridge.utils.clock import utcnow

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "cleanup_inactive_passkeys"
CLEANUP_INTERVAL_DAYS = 1
DEFAULT_INACTIVE_DAYS = 30

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


# ---------------------------------------------------------------------------
# Job: Inactive passkey cleanup
# ---------------------------------------------------------------------------


async def cleanup_inactive_passkeys_job(inactive_days: int = DEFAULT_INACTIVE_DAYS) -> int:
    """Revoke passkeys unused for ``inactive_days`` and purge expired challenges.

    Never raises: a missing database is skipped with a warning and any
    failure is logged so the next period still runs. Returns the number of
    passkeys revoked.
    """
    from passkey_bridge.db.database import get_session_factory
    from passkey_bridge.db.repositories import passkey_repo
    from passkey_bridge.services.challenge_service import ChallengeStore

    session_factory = get_session_factory()
    if session_factory is None:
        logger.warning("Skipping passkey cleanup: database not initialized")
        return 0

    now = utcnow()
    cutoff = now - timedelta(days=inactive_days)

    try:
        async with session_factory() as session:
            revoked = await passkey_repo.revoke_inactive_credentials(session, cutoff, now)
            await session.commit()
            # Revocations are already committed; a failed purge must not hide them.
            try:
                purged = await ChallengeStore().purge_expired(session)
            except Exception:
                logger.error("Expired challenge purge failed", exc_info=True)
                purged = 0
    except Exception:
        logger.error("Passkey cleanup job failed", exc_info=True)
        return 0

    logger.info(
        "Passkey cleanup completed: %d inactive passkeys revoked, %d expired challenges purged",
        revoked, purged,
    )
    return revoked


# ---------------------------------------------------------------------------
# Scheduler lifecycle
# ---------------------------------------------------------------------------


def start_scheduler(
    inactive_days: int = DEFAULT_INACTIVE_DAYS,
    disable_interval: bool = False,
) -> AsyncIOScheduler | None:
    """Start the cleanup scheduler.

    Returns ``None`` without touching storage or scheduling anything when
    ``inactive_days`` is zero or negative.
    """
    global _scheduler

    if inactive_days <= 0:
        logger.info("Passkey cleanup disabled (inactive_days=%d)", inactive_days)
        return None

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return _scheduler

    _scheduler = AsyncIOScheduler()

    if disable_interval:
        # Single startup sweep, no recurrence
        _scheduler.add_job(
            cleanup_inactive_passkeys_job,
            DateTrigger(run_date=datetime.now()),
            kwargs={"inactive_days": inactive_days},
            id=CLEANUP_JOB_ID,
            name="Cleanup inactive passkeys (startup only)",
            replace_existing=True,
            misfire_grace_time=None,
        )
    else:
        # Immediately, then daily
        _scheduler.add_job(
            cleanup_inactive_passkeys_job,
            IntervalTrigger(days=CLEANUP_INTERVAL_DAYS),
            kwargs={"inactive_days": inactive_days},
            id=CLEANUP_JOB_ID,
            name="Cleanup inactive passkeys",
            next_run_time=datetime.now(),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=None,
        )

    _scheduler.start()
    logger.info(
        "Background scheduler started with %d jobs (inactive_days=%d, recurring=%s)",
        len(_scheduler.get_jobs()), inactive_days, not disable_interval,
    )

    return _scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler


def trigger_job_now(job_id: str = CLEANUP_JOB_ID) -> bool:
    """Manually trigger a scheduled job immediately.

    Returns:
        True if job was triggered, False if job not found
    """
    if _scheduler is None:
        logger.error("Cannot trigger job - scheduler not running")
        return False

    job = _scheduler.get_job(job_id)
    if job is None:
        logger.error("Job not found: %s", job_id)
        return False

    job.modify(next_run_time=datetime.now())
    logger.info("Manually triggered job: %s", job_id)
    return True
