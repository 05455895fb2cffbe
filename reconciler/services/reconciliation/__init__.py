from reconciler.services.reconciliation.events import EventKind, WebhookEvent, parse_event
from reconciler.services.reconciliation.handlers import ReconcileResult, ResultStatus
from reconciler.services.reconciliation.reconciler import SubscriptionReconciler, subscription_reconciler

__all__ = [
    "EventKind",
    "ReconcileResult",
    "ResultStatus",
    "SubscriptionReconciler",
    "WebhookEvent",
    "parse_event",
    "subscription_reconciler",
]
