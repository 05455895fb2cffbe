from reconciler.domain.cancellation_operations import cancellation_ops
from reconciler.domain.correlation_operations import correlation_ops
from reconciler.domain.event_operations import event_ops
from reconciler.domain.subscription_operations import subscription_ops

__all__ = [
    "cancellation_ops",
    "correlation_ops",
    "event_ops",
    "subscription_ops",
]
