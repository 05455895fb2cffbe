"""Active-subscription guard.

Decides whether a customer may take out a new subscription, and which of
their existing rows a new subscription would replace.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.domain.subscription_operations import SubscriptionOperations
from reconciler.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


def _period_lapsed(subscription: Subscription, now: datetime) -> bool:
    # A row without a period end has no paid time left
    end = subscription.current_period_end
    return end is None or end <= now


def is_truly_active(subscription: Subscription, now: datetime) -> bool:
    """Active, not cancelling at period end, and paid up past now."""
    return (
        subscription.status == SubscriptionStatus.ACTIVE.value
        and not subscription.cancel_at_period_end
        and not _period_lapsed(subscription, now)
    )


def would_be_truly_active(
    subscription: Subscription,
    updates: dict[str, Any],
    now: datetime,
) -> bool:
    """Whether the row would be truly active once updates are applied.

    None values leave the current field in place, as in
    SubscriptionOperations.update.
    """

    def merged(name: str) -> Any:
        value = updates.get(name)
        return getattr(subscription, name) if value is None else value

    end = merged("current_period_end")
    return (
        merged("status") == SubscriptionStatus.ACTIVE.value
        and not merged("cancel_at_period_end")
        and end is not None
        and end > now
    )


def is_replaceable(subscription: Subscription, now: datetime) -> bool:
    """Cancelling at period end, or past its period end."""
    return bool(subscription.cancel_at_period_end) or _period_lapsed(subscription, now)


@dataclass
class GuardResult:
    """Classification of a customer's existing subscription rows."""

    truly_active: list[Subscription] = field(default_factory=list)
    replaceable: list[Subscription] = field(default_factory=list)
    inert: list[Subscription] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return bool(self.truly_active)

    @property
    def total(self) -> int:
        return len(self.truly_active) + len(self.replaceable) + len(self.inert)

    def details(self) -> dict[str, Any]:
        """JSON-safe summary for logs, responses and event metadata."""
        rows = [*self.truly_active, *self.replaceable, *self.inert]
        return {
            "total_found": self.total,
            "truly_active": len(self.truly_active),
            "to_replace": len(self.replaceable),
            "subscriptions": [
                {
                    "id": sub.external_subscription_id,
                    "status": sub.status,
                    "cancel_at_period_end": sub.cancel_at_period_end,
                    "current_period_end": (
                        sub.current_period_end.isoformat() if sub.current_period_end else None
                    ),
                    "created_at": sub.created_at.isoformat() if sub.created_at else None,
                }
                for sub in rows
            ],
        }


def classify(
    subscriptions: list[Subscription],
    now: datetime,
    exclude_external_id: str | None = None,
) -> GuardResult:
    """Sort rows into truly-active, replaceable and inert buckets."""
    result = GuardResult()
    seen: set[str] = set()

    for sub in subscriptions:
        if sub.external_subscription_id in seen:
            continue
        seen.add(sub.external_subscription_id)

        if exclude_external_id and sub.external_subscription_id == exclude_external_id:
            continue
        if sub.superseded_by is not None:
            result.inert.append(sub)
        elif is_truly_active(sub, now):
            result.truly_active.append(sub)
        elif is_replaceable(sub, now):
            result.replaceable.append(sub)
        else:
            result.inert.append(sub)

    return result


class ActiveSubscriptionGuard:
    """
    Read-side check run before a new subscription is written.

    This is advisory: two creations for the same customer can both pass it.
    The per-customer advisory lock taken by the creation path and the partial
    unique index on subscriptions are what actually hold the invariant.
    """

    def __init__(self, subscriptions: SubscriptionOperations):
        self.subscriptions = subscriptions

    async def check(
        self,
        db: AsyncSession,
        customer_id: str,
        user_id: str | None = None,
        exclude_external_id: str | None = None,
        now: datetime | None = None,
    ) -> GuardResult:
        """Classify every subscription owned by the customer (or user)."""
        now = now or datetime.now(UTC)
        rows = await self.subscriptions.list_for_customer(db, customer_id, user_id)
        result = classify(rows, now, exclude_external_id)

        logger.info(
            f"Guard check for customer {customer_id} (user {user_id}): "
            f"{result.total} found, {len(result.truly_active)} truly active, "
            f"{len(result.replaceable)} replaceable"
        )
        return result
