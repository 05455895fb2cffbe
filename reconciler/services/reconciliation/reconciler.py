"""Event dispatcher: dedup, handle, commit, then settle upstream work."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.core.exceptions import PersistenceError, ReconciliationError
from reconciler.domain.cancellation_operations import CancellationOperations, cancellation_ops
from reconciler.domain.correlation_operations import CorrelationOperations, correlation_ops
from reconciler.domain.event_operations import EventOperations, event_ops
from reconciler.domain.subscription_operations import SubscriptionOperations, subscription_ops
from reconciler.services.reconciliation.correlation import CorrelationBuffer
from reconciler.services.reconciliation.events import WebhookEvent
from reconciler.services.reconciliation.guard import ActiveSubscriptionGuard
from reconciler.services.reconciliation.handlers import (
    HANDLERS,
    EventContext,
    ReconcileResult,
    ResultStatus,
)
from reconciler.services.reconciliation.replacement import ReplacementExecutor
from reconciler.services.reconciliation.saga import ProviderSaga
from reconciler.services.stripe_service import StripeService, stripe_service

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SubscriptionReconciler:
    """
    Turns verified provider events into subscription state.

    One event is one transaction: the handler's state change and the
    processed-event marker commit together or not at all. Upstream
    cancellations staged by the handler run only after that commit.
    """

    def __init__(
        self,
        subscriptions: SubscriptionOperations = subscription_ops,
        events: EventOperations = event_ops,
        correlations: CorrelationOperations = correlation_ops,
        cancellations: CancellationOperations = cancellation_ops,
        provider: StripeService = stripe_service,
        clock: Callable[[], datetime] | None = None,
    ):
        self.subscriptions = subscriptions
        self.events = events
        self.cancellations = cancellations
        self.provider = provider
        self.clock = clock or _utcnow

        self.guard = ActiveSubscriptionGuard(subscriptions)
        self.replacer = ReplacementExecutor(subscriptions, cancellations)
        self.buffer = CorrelationBuffer(correlations)
        self.saga = ProviderSaga(provider, cancellations)

    async def handle(self, db: AsyncSession, event: WebhookEvent) -> ReconcileResult:
        """
        Reconcile one event.

        Raises ReconciliationError when the event must be redelivered.
        """
        if event.kind is None:
            logger.debug(f"Unhandled webhook event type: {event.raw_type}")
            return ReconcileResult(status=ResultStatus.IGNORED)

        if await self.events.is_processed(db, event.event_id):
            logger.info(f"Skipping duplicate webhook: {event.event_id}")
            return ReconcileResult(status=ResultStatus.ALREADY_PROCESSED)

        ctx = EventContext(db=db, event=event, engine=self, now=self.clock())
        handler = HANDLERS[event.kind]

        try:
            result = await handler(ctx)
            await db.commit()
        except ReconciliationError:
            await db.rollback()
            raise
        except IntegrityError as e:
            await db.rollback()
            if await self.events.is_processed(db, event.event_id):
                # A concurrent delivery of the same event won the race
                logger.info(f"Duplicate webhook committed concurrently: {event.event_id}")
                return ReconcileResult(status=ResultStatus.ALREADY_PROCESSED)
            return self._persistence_failure(event, e)
        except SQLAlchemyError as e:
            await db.rollback()
            return self._persistence_failure(event, e)

        if ctx.cancellations:
            await self.saga.run(db, ctx.cancellations)

        return result

    def _persistence_failure(self, event: WebhookEvent, error: Exception) -> ReconcileResult:
        if event.is_creation:
            logger.error(f"Failed to persist {event.raw_type} ({event.event_id}): {error}")
            raise PersistenceError(
                f"Could not persist {event.raw_type}", event_id=event.event_id
            ) from error

        # The event stays unprocessed so redelivery applies it
        logger.error(
            f"Failed to persist {event.raw_type} ({event.event_id}), left for redelivery: {error}"
        )
        return ReconcileResult(status=ResultStatus.RETRY_PENDING)


subscription_reconciler = SubscriptionReconciler()
