"""Correlation buffer for two-part subscription creation.

A purchase is described by two independent provider events: the checkout
session completing (which knows the user) and the provider creating the
subscription (which carries its billing state). Whichever arrives first and
cannot finish on its own is held here until the other shows up.
"""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.config import settings
from reconciler.domain.correlation_operations import CorrelationOperations
from reconciler.models.pending_correlation import CorrelationSource, PendingCorrelation

logger = logging.getLogger(__name__)


class CorrelationBuffer:
    """TTL-bounded store of unmatched halves, keyed by provider subscription id."""

    def __init__(self, correlations: CorrelationOperations, ttl_seconds: int | None = None):
        self.correlations = correlations
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.correlation_ttl_seconds

    async def hold(
        self,
        db: AsyncSession,
        external_subscription_id: str,
        customer_id: str,
        user_id: str | None,
        source: CorrelationSource,
        now: datetime | None = None,
    ) -> None:
        """Store one half until its match arrives or the TTL lapses."""
        now = now or datetime.now(UTC)
        await self.correlations.upsert(
            db,
            external_subscription_id=external_subscription_id,
            customer_id=customer_id,
            user_id=user_id,
            source=source.value,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        logger.info(
            f"Holding {source.value} half for {external_subscription_id} "
            f"(customer {customer_id}) for up to {self.ttl_seconds}s"
        )

    async def peek(
        self,
        db: AsyncSession,
        external_subscription_id: str,
        now: datetime | None = None,
    ) -> PendingCorrelation | None:
        """Return the live half for an id without consuming it."""
        return await self.correlations.get_live(db, external_subscription_id, now)

    async def claim(
        self,
        db: AsyncSession,
        external_subscription_id: str,
        now: datetime | None = None,
    ) -> PendingCorrelation | None:
        """Consume the live half for an id, if one is waiting."""
        entry = await self.correlations.get_live(db, external_subscription_id, now)
        if entry is None:
            return None
        await self.correlations.delete(db, external_subscription_id)
        logger.info(f"Matched buffered {entry.source} half for {external_subscription_id}")
        return entry

    async def discard(self, db: AsyncSession, external_subscription_id: str) -> bool:
        """Drop any buffered half for an id (matched elsewhere, or moot)."""
        return await self.correlations.delete(db, external_subscription_id)

    async def purge_expired(
        self,
        db: AsyncSession,
        now: datetime | None = None,
    ) -> list[tuple[str, str]]:
        """Delete halves whose match never arrived."""
        purged = await self.correlations.purge_expired(db, now)
        for external_subscription_id, source in purged:
            logger.warning(
                f"Correlation for {external_subscription_id} expired unmatched "
                f"(held half: {source})"
            )
        return purged
