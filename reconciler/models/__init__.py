from reconciler.models.pending_correlation import CorrelationSource, PendingCorrelation
from reconciler.models.processed_event import ProcessedEvent
from reconciler.models.provider_cancellation import CancellationReason, ProviderCancellation
from reconciler.models.subscription import (
    LIVE_UPSTREAM_STATUSES,
    Subscription,
    SubscriptionStatus,
)

__all__ = [
    "CancellationReason",
    "CorrelationSource",
    "LIVE_UPSTREAM_STATUSES",
    "PendingCorrelation",
    "ProcessedEvent",
    "ProviderCancellation",
    "Subscription",
    "SubscriptionStatus",
]
