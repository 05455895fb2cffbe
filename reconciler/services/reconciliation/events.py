"""Typed webhook events and the event kinds the reconciler understands."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from reconciler.core.exceptions import ValidationError


class EventKind(str, Enum):
    """Provider event types with a registered handler."""

    SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    PENDING_UPDATE_APPLIED = "customer.subscription.pending_update_applied"
    PENDING_UPDATE_EXPIRED = "customer.subscription.pending_update_expired"
    TRIAL_WILL_END = "customer.subscription.trial_will_end"
    SUBSCRIPTION_PAUSED = "customer.subscription.paused"
    SUBSCRIPTION_RESUMED = "customer.subscription.resumed"


# Kinds that can materialize a new subscription row
CREATION_KINDS = frozenset({EventKind.SESSION_COMPLETED, EventKind.SUBSCRIPTION_CREATED})


@dataclass(frozen=True)
class WebhookEvent:
    """A verified provider event: id, kind and the object it describes."""

    event_id: str
    raw_type: str
    kind: EventKind | None
    obj: dict[str, Any] = field(default_factory=dict)

    @property
    def is_creation(self) -> bool:
        return self.kind in CREATION_KINDS


def parse_event(raw: dict[str, Any]) -> WebhookEvent:
    """
    Build a WebhookEvent from a verified event payload.

    Unknown event types parse successfully with kind=None so the caller can
    acknowledge and ignore them.
    """
    event_id = str(raw.get("id") or "")
    raw_type = str(raw.get("type") or "")
    if not event_id or not raw_type:
        raise ValidationError("Webhook event is missing id or type")

    data = raw.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise ValidationError("Webhook event has no data object", event_id=event_id)

    try:
        kind: EventKind | None = EventKind(raw_type)
    except ValueError:
        kind = None

    return WebhookEvent(event_id=event_id, raw_type=raw_type, kind=kind, obj=dict(obj))


def ref_id(value: Any) -> str | None:
    """Id of a reference field that may be a bare id or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    if value is None or value == "":
        return None
    return str(value)
