"""Provider-side half of reconciliation.

Local state is committed first; provider calls happen afterwards with a
bounded retry, and their failures never undo the local change.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.config import settings
from reconciler.core.exceptions import ProviderAPIError
from reconciler.domain.cancellation_operations import CancellationOperations
from reconciler.models.provider_cancellation import CancellationReason, ProviderCancellation
from reconciler.models.subscription import LIVE_UPSTREAM_STATUSES
from reconciler.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderSaga:
    """Runs provider calls with retry and settles cancellation outbox rows."""

    def __init__(
        self,
        provider: StripeService,
        cancellations: CancellationOperations,
        max_retries: int | None = None,
        retry_delays: list[float] | None = None,
    ):
        self.provider = provider
        self.cancellations = cancellations
        self.max_retries = max(1, max_retries or settings.provider_max_retries)
        self.retry_delays = (
            retry_delays if retry_delays is not None else settings.provider_retry_delays
        )

    async def call_with_retry(self, fn: Callable[..., T], *args: Any) -> T:
        """Call a provider method with exponential backoff retry."""
        last_error: ProviderAPIError | None = None

        for attempt in range(self.max_retries):
            try:
                return fn(*args)
            except ProviderAPIError as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    delay = self._delay(attempt)
                    logger.warning(
                        f"Provider call {getattr(fn, '__name__', fn)} failed "
                        f"(attempt {attempt + 1}/{self.max_retries}), retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Provider call {getattr(fn, '__name__', fn)} failed after "
                        f"{self.max_retries} attempts: {e}"
                    )

        raise last_error or ProviderAPIError("Provider call failed after retries")

    def _delay(self, attempt: int) -> float:
        if not self.retry_delays:
            return 0.0
        return self.retry_delays[min(attempt, len(self.retry_delays) - 1)]

    async def retrieve_subscription(self, external_subscription_id: str) -> dict[str, Any]:
        """Fetch the provider's current view of a subscription."""
        return await self.call_with_retry(
            self.provider.get_subscription, external_subscription_id
        )

    async def settle(self, db: AsyncSession, cancellation: ProviderCancellation) -> bool:
        """
        Carry out one outbox row against the provider and record the outcome.

        Returns True once nothing more is owed upstream. Never raises for
        provider failures; they are recorded on the row for the sweep.
        """
        if cancellation.completed_at is not None:
            return True

        external_id = cancellation.external_subscription_id
        try:
            if cancellation.reason == CancellationReason.REPLACED.value:
                await self._cancel_if_still_billing(external_id)
            else:
                await self.call_with_retry(self.provider.cancel_subscription, external_id)
        except ProviderAPIError as e:
            logger.warning(
                f"Upstream cancellation of {external_id} ({cancellation.reason}) failed, "
                f"left for the provider sweep: {e}"
            )
            await self.cancellations.record_attempt(db, cancellation, error=str(e))
            return False

        await self.cancellations.record_attempt(db, cancellation)
        return True

    async def _cancel_if_still_billing(self, external_subscription_id: str) -> None:
        upstream = await self.retrieve_subscription(external_subscription_id)
        if (
            upstream.get("status") in LIVE_UPSTREAM_STATUSES
            and not upstream.get("cancel_at_period_end")
        ):
            await self.call_with_retry(self.provider.cancel_subscription, external_subscription_id)
        else:
            logger.info(
                f"Replaced subscription {external_subscription_id} no longer billing upstream "
                f"(status {upstream.get('status')}), nothing to cancel"
            )

    async def run(
        self,
        db: AsyncSession,
        cancellations: list[ProviderCancellation],
    ) -> int:
        """
        Settle outbox rows staged by an already committed transaction.

        Returns how many were settled. A failure to record outcomes is
        logged only: the rows stay pending and the sweep picks them up.
        """
        settled = 0
        try:
            for cancellation in cancellations:
                if await self.settle(db, cancellation):
                    settled += 1
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to record provider cancellation outcomes: {e}")
        return settled
