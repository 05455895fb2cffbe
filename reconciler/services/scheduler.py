"""Internal task scheduler using APScheduler.

Runs the reconciliation sweeps within the FastAPI process. Uses PostgreSQL
advisory locks to prevent duplicate execution when multiple instances are
running.
"""

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from reconciler.config import settings
from reconciler.core.locks import (
    CORRELATION_PURGE_LOCK_ID,
    PROVIDER_SWEEP_LOCK_ID,
    advisory_lock,
)

logger = logging.getLogger(__name__)


async def run_provider_sweep() -> dict[str, Any] | None:
    """
    Retry upstream cancellations that did not settle right after their commit.

    Returns a summary dict if executed, None if skipped (lock held by another
    instance) or failed.
    """
    async with advisory_lock(PROVIDER_SWEEP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Provider-sweep: skipped (another instance is running)")
            return None

        logger.info("[scheduler] Provider-sweep: starting")

        try:
            from reconciler.core.database import async_session_maker
            from reconciler.services.reconciliation import subscription_reconciler

            async with async_session_maker() as db:
                pending = await subscription_reconciler.cancellations.list_pending(
                    db,
                    min_age_seconds=settings.sweep_min_age_seconds,
                    max_attempts=settings.sweep_max_attempts,
                )
                settled = await subscription_reconciler.saga.run(db, pending)

            exhausted = [c.external_subscription_id for c in pending if c.completed_at is None]
            for external_id in exhausted:
                logger.warning(f"[scheduler] Provider-sweep: {external_id} still pending")

            logger.info(
                f"[scheduler] Provider-sweep: completed "
                f"({len(pending)} pending, {settled} settled)"
            )
            return {"pending": len(pending), "settled": settled, "still_pending": exhausted}

        except Exception as e:
            logger.exception(f"[scheduler] Provider-sweep: failed with error: {e}")
            return None


async def run_correlation_purge() -> dict[str, Any] | None:
    """
    Delete correlation halves whose match never arrived within the TTL.

    Returns a summary dict if executed, None if skipped or failed.
    """
    async with advisory_lock(CORRELATION_PURGE_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Correlation-purge: skipped (another instance is running)")
            return None

        logger.info("[scheduler] Correlation-purge: starting")

        try:
            from reconciler.core.database import async_session_maker
            from reconciler.services.reconciliation import subscription_reconciler

            async with async_session_maker() as db:
                purged = await subscription_reconciler.buffer.purge_expired(db)
                await db.commit()

            logger.info(f"[scheduler] Correlation-purge: completed ({len(purged)} purged)")
            return {"purged": [external_id for external_id, _ in purged]}

        except Exception as e:
            logger.exception(f"[scheduler] Correlation-purge: failed with error: {e}")
            return None


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            run_provider_sweep,
            trigger=IntervalTrigger(minutes=settings.sweep_interval_minutes),
            id="provider_sweep",
            name="Provider Cancellation Sweep",
            replace_existing=True,
        )

        self._scheduler.add_job(
            run_correlation_purge,
            trigger=IntervalTrigger(minutes=settings.sweep_interval_minutes),
            id="correlation_purge",
            name="Expired Correlation Purge",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with provider-sweep and correlation-purge every "
            f"{settings.sweep_interval_minutes} min"
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            logger.info("[scheduler] Stopped")

    async def trigger_now(self, job_id: str) -> dict[str, Any] | None:
        """
        Manually trigger a job immediately.

        Returns the job result or None if job not found.
        """
        if job_id == "provider_sweep":
            return await run_provider_sweep()
        if job_id == "correlation_purge":
            return await run_correlation_purge()
        return None


scheduler = Scheduler()
