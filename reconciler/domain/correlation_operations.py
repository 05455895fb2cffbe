"""Domain operations for pending correlations."""

from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.models.pending_correlation import PendingCorrelation


class CorrelationOperations:
    """
    Operations for the correlation buffer table.

    Note: This doesn't extend a generic CRUD base because entries are keyed
    by provider subscription id and expire rather than being updated.
    """

    def __init__(self) -> None:
        self.model = PendingCorrelation

    async def get_live(
        self,
        db: AsyncSession,
        external_subscription_id: str,
        now: datetime | None = None,
    ) -> PendingCorrelation | None:
        """Get an unexpired entry for a provider subscription id."""
        now = now or datetime.now(UTC)
        statement = select(PendingCorrelation).where(
            PendingCorrelation.external_subscription_id == external_subscription_id,
            PendingCorrelation.expires_at > now,  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        db: AsyncSession,
        external_subscription_id: str,
        customer_id: str,
        user_id: str | None,
        source: str,
        expires_at: datetime,
    ) -> None:
        """Insert an entry, refreshing it if one already exists for the id."""
        values = {
            "external_subscription_id": external_subscription_id,
            "customer_id": customer_id,
            "user_id": user_id,
            "source": source,
            "created_at": datetime.now(UTC),
            "expires_at": expires_at,
        }
        stmt = insert(self.model).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_subscription_id"],
            set_={
                "customer_id": stmt.excluded.customer_id,
                "user_id": stmt.excluded.user_id,
                "source": stmt.excluded.source,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        await db.execute(stmt)
        await db.flush()

    async def delete(self, db: AsyncSession, external_subscription_id: str) -> bool:
        """Delete the entry for a provider subscription id. Returns True if one existed."""
        stmt = delete(PendingCorrelation).where(
            PendingCorrelation.external_subscription_id == external_subscription_id  # type: ignore[arg-type]
        )
        result = await db.execute(stmt)
        await db.flush()
        return bool(result.rowcount)

    async def purge_expired(
        self,
        db: AsyncSession,
        now: datetime | None = None,
    ) -> list[tuple[str, str]]:
        """
        Delete expired entries.

        Returns (external_subscription_id, source) for each purged entry.
        """
        now = now or datetime.now(UTC)
        stmt = (
            delete(PendingCorrelation)
            .where(PendingCorrelation.expires_at <= now)  # type: ignore[arg-type]
            .returning(PendingCorrelation.external_subscription_id, PendingCorrelation.source)
        )
        result = await db.execute(stmt)
        await db.flush()
        return [(row[0], row[1]) for row in result.all()]


correlation_ops = CorrelationOperations()
