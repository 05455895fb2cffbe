"""Replacement executor - moves stale subscriptions out of a new one's way."""

import logging
import uuid as uuid_pkg

from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.domain.cancellation_operations import CancellationOperations
from reconciler.domain.subscription_operations import SubscriptionOperations
from reconciler.models.provider_cancellation import CancellationReason, ProviderCancellation
from reconciler.models.subscription import LIVE_UPSTREAM_STATUSES, Subscription

logger = logging.getLogger(__name__)


class ReplacementExecutor:
    """
    Supersede a replaceable subscription row.

    The local write happens in the caller's transaction, before the new row
    is inserted, so two rows are never truly active at once. The upstream
    cancellation is only staged here and runs after commit.
    """

    def __init__(
        self,
        subscriptions: SubscriptionOperations,
        cancellations: CancellationOperations,
    ):
        self.subscriptions = subscriptions
        self.cancellations = cancellations

    async def replace(
        self,
        db: AsyncSession,
        old: Subscription,
        new_subscription_id: uuid_pkg.UUID,
        reason: str,
    ) -> ProviderCancellation | None:
        """
        Mark old as superseded by new_subscription_id.

        Returns the staged upstream cancellation, or None when the row is no
        longer billing upstream. Rows cancelling at period end are staged too:
        the saga re-reads them and only cancels one that stopped ending on
        its own.
        """
        if old.id == new_subscription_id:
            raise ValueError("A subscription cannot supersede itself")

        await self.subscriptions.mark_superseded(db, old, new_subscription_id, reason)
        logger.info(
            f"Subscription {old.external_subscription_id} superseded by {new_subscription_id} "
            f"({reason})"
        )

        if old.status not in LIVE_UPSTREAM_STATUSES:
            return None

        return await self.cancellations.enqueue(
            db,
            old.external_subscription_id,
            CancellationReason.REPLACED.value,
        )

    async def wind_down(
        self,
        db: AsyncSession,
        subscription: Subscription,
    ) -> ProviderCancellation:
        """
        Stage another upstream cancellation for a superseded row.

        Used when the provider reports a superseded subscription as billing
        again, e.g. after cancel_at_period_end was cleared upstream.
        """
        logger.warning(
            f"Superseded subscription {subscription.external_subscription_id} is billing "
            f"again upstream, staging its cancellation"
        )
        return await self.cancellations.requeue(
            db,
            subscription.external_subscription_id,
            CancellationReason.REPLACED.value,
        )
