"""Domain operations for the provider cancellation outbox."""

from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.models.provider_cancellation import ProviderCancellation


class CancellationOperations:
    """CRUD operations for ProviderCancellation outbox rows."""

    async def get_by_external_id(
        self,
        db: AsyncSession,
        external_subscription_id: str,
    ) -> ProviderCancellation | None:
        """Get the outbox row for a provider subscription id."""
        statement = select(ProviderCancellation).where(
            ProviderCancellation.external_subscription_id == external_subscription_id
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def enqueue(
        self,
        db: AsyncSession,
        external_subscription_id: str,
        reason: str,
    ) -> ProviderCancellation:
        """
        Stage an upstream cancellation.

        A provider subscription is only ever cancelled once, so an existing
        row is returned unchanged.
        """
        existing = await self.get_by_external_id(db, external_subscription_id)
        if existing:
            return existing

        cancellation = ProviderCancellation(
            external_subscription_id=external_subscription_id,
            reason=reason,
        )
        db.add(cancellation)
        await db.flush()
        return cancellation

    async def requeue(
        self,
        db: AsyncSession,
        external_subscription_id: str,
        reason: str,
    ) -> ProviderCancellation:
        """
        Stage an upstream cancellation, reopening a settled row if there is one.

        The row keeps its original reason; attempts restart so the sweep
        retries it again.
        """
        cancellation = await self.enqueue(db, external_subscription_id, reason)
        if cancellation.completed_at is not None:
            cancellation.completed_at = None
            cancellation.attempts = 0
            cancellation.last_error = None
            cancellation.updated_at = datetime.now(UTC)
            db.add(cancellation)
            await db.flush()
        return cancellation

    async def list_pending(
        self,
        db: AsyncSession,
        min_age_seconds: int,
        max_attempts: int,
        limit: int = 100,
    ) -> list[ProviderCancellation]:
        """Get outbox rows that are still owed an upstream call, oldest first."""
        cutoff = datetime.now(UTC) - timedelta(seconds=min_age_seconds)
        statement = (
            select(ProviderCancellation)
            .where(
                ProviderCancellation.completed_at.is_(None),  # type: ignore[union-attr]
                ProviderCancellation.attempts < max_attempts,
                ProviderCancellation.created_at <= cutoff,  # type: ignore[arg-type]
            )
            .order_by(ProviderCancellation.created_at)  # type: ignore[arg-type]
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def record_attempt(
        self,
        db: AsyncSession,
        cancellation: ProviderCancellation,
        error: str | None = None,
    ) -> ProviderCancellation:
        """Record the outcome of one upstream attempt. No error means done."""
        now = datetime.now(UTC)
        cancellation.attempts += 1
        cancellation.updated_at = now
        if error is None:
            cancellation.completed_at = now
            cancellation.last_error = None
        else:
            cancellation.last_error = error[:500]
        db.add(cancellation)
        await db.flush()
        return cancellation


cancellation_ops = CancellationOperations()
