"""Per-kind webhook handlers.

Every handler has the same shape, ``async (ctx) -> ReconcileResult``, and
runs inside the caller's transaction: it stages its state change and the
processed-event marker together, and never commits.
"""

import logging
import uuid as uuid_pkg
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.core.exceptions import ProviderAPIError, ValidationError
from reconciler.models.pending_correlation import CorrelationSource
from reconciler.models.provider_cancellation import CancellationReason, ProviderCancellation
from reconciler.models.subscription import Subscription, SubscriptionStatus
from reconciler.services.reconciliation.events import EventKind, WebhookEvent, ref_id
from reconciler.services.reconciliation.guard import GuardResult, would_be_truly_active

if TYPE_CHECKING:
    from reconciler.services.reconciliation.reconciler import SubscriptionReconciler

logger = logging.getLogger(__name__)

SESSION_REPLACEMENT_REASON = "checkout_session_replacement"
CREATED_REPLACEMENT_REASON = "subscription_created_replacement"
BLOCKED_MESSAGE = "Customer already has an active subscription"

_KNOWN_STATUSES = frozenset(status.value for status in SubscriptionStatus)


class ResultStatus(str, Enum):
    """Outcome of reconciling one event."""

    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    BLOCKED = "blocked"
    PENDING_CORRELATION = "pending_correlation"
    IGNORED = "ignored"
    RETRY_PENDING = "retry_pending"


@dataclass
class ReconcileResult:
    """What happened to an event, and the webhook response body for it."""

    status: ResultStatus
    subscription_id: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None

    def to_response(self) -> dict[str, Any]:
        if self.status == ResultStatus.ALREADY_PROCESSED:
            return {"status": self.status.value}
        if self.status == ResultStatus.BLOCKED:
            return {
                "status": self.status.value,
                "message": self.message,
                "details": self.details or {},
            }
        if self.status in (ResultStatus.PENDING_CORRELATION, ResultStatus.RETRY_PENDING):
            return {"received": True, "status": self.status.value}
        return {"received": True}


@dataclass
class EventContext:
    """Everything a handler needs for one event."""

    db: AsyncSession
    event: WebhookEvent
    engine: "SubscriptionReconciler"
    now: datetime
    # Outbox rows staged by this event, settled after commit
    cancellations: list[ProviderCancellation] = field(default_factory=list)

    def stage(self, cancellation: ProviderCancellation | None) -> None:
        if cancellation is not None and cancellation not in self.cancellations:
            self.cancellations.append(cancellation)

    async def mark_processed(
        self,
        subscription_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.engine.events.mark_processed(
            self.db,
            self.event.event_id,
            self.event.raw_type,
            subscription_id=subscription_id,
            metadata=metadata,
        )


Handler = Callable[[EventContext], Awaitable[ReconcileResult]]


# ─────────────────────────────────────────────────────────────────────────────
# Shared steps
# ─────────────────────────────────────────────────────────────────────────────


def _mirror_fields(ctx: EventContext, stripe_sub: dict[str, Any]) -> dict[str, Any]:
    """Fields copied from a provider subscription onto the local row."""
    provider = ctx.engine.provider
    period_start, period_end = provider.period_bounds(stripe_sub)
    updates: dict[str, Any] = {
        "cancel_at_period_end": stripe_sub.get("cancel_at_period_end"),
        "current_period_start": period_start,
        "current_period_end": period_end,
    }
    status = stripe_sub.get("status")
    if status in _KNOWN_STATUSES:
        updates["status"] = status
    elif status:
        logger.warning(f"Ignoring unknown subscription status {status!r} in {ctx.event.event_id}")

    price_id = provider.primary_price_id(stripe_sub)
    if price_id:
        updates["price_id"] = price_id
        updates["plan_id"] = provider.plan_for_price(price_id)
    return updates


async def _apply_provider_state(
    ctx: EventContext,
    subscription: Subscription,
    updates: dict[str, Any],
) -> bool:
    """
    Write mirrored provider fields onto an existing row.

    A superseded row never becomes truly active again. If the provider
    reports it billing normally, the row is kept cancelling at period end
    and its upstream cancellation is staged again. Returns True in that case.
    """
    engine = ctx.engine
    reactivated = subscription.superseded_by is not None and would_be_truly_active(
        subscription, updates, ctx.now
    )
    if reactivated:
        updates = {**updates, "cancel_at_period_end": True}
        ctx.stage(await engine.replacer.wind_down(ctx.db, subscription))

    await engine.subscriptions.update(ctx.db, subscription, updates)
    return reactivated


async def _fresh_state(ctx: EventContext, external_id: str) -> dict[str, Any] | None:
    """Current provider view of a subscription, or None if it cannot be read."""
    try:
        return await ctx.engine.saga.retrieve_subscription(external_id)
    except ProviderAPIError as e:
        logger.warning(
            f"Could not read subscription {external_id} for {ctx.event.event_id}, "
            f"using the event payload: {e}"
        )
        return None


async def _block(
    ctx: EventContext,
    external_id: str,
    customer_id: str,
    guard: GuardResult,
) -> ReconcileResult:
    """Reject a duplicate purchase and stage its upstream cancellation."""
    engine = ctx.engine
    details = guard.details()
    logger.warning(
        f"Blocking duplicate subscription {external_id} for customer {customer_id}: "
        f"{len(guard.truly_active)} truly active subscription(s) already on record"
    )

    cancellation = await engine.cancellations.enqueue(
        ctx.db, external_id, CancellationReason.BLOCKED_DUPLICATE.value
    )
    ctx.stage(cancellation)
    await engine.buffer.discard(ctx.db, external_id)
    await ctx.mark_processed(
        subscription_id=external_id,
        metadata={
            "reason": "blocked_duplicate",
            "customer_id": customer_id,
            "existing_subscriptions": details["subscriptions"],
        },
    )
    return ReconcileResult(
        status=ResultStatus.BLOCKED,
        subscription_id=external_id,
        message=BLOCKED_MESSAGE,
        details=details,
    )


async def _materialize(
    ctx: EventContext,
    external_id: str,
    customer_id: str,
    user_id: str,
    stripe_sub: dict[str, Any],
    guard: GuardResult,
    reason: str,
) -> ReconcileResult:
    """
    Write the new subscription row, superseding every replaceable row first.

    The new row's id is chosen up front so superseded rows can point at it
    before it exists; the foreign key is checked at commit.
    """
    engine = ctx.engine
    new_id = uuid_pkg.uuid4()

    replaced: list[str] = []
    for old in guard.replaceable:
        ctx.stage(await engine.replacer.replace(ctx.db, old, new_id, reason))
        replaced.append(old.external_subscription_id)

    fields = _mirror_fields(ctx, stripe_sub)
    subscription = await engine.subscriptions.create(
        ctx.db,
        {
            "id": new_id,
            "customer_id": customer_id,
            "user_id": user_id,
            "external_subscription_id": external_id,
            "status": fields.get("status") or SubscriptionStatus.ACTIVE.value,
            "cancel_at_period_end": bool(fields.get("cancel_at_period_end")),
            "current_period_start": fields.get("current_period_start"),
            "current_period_end": fields.get("current_period_end"),
            "price_id": fields.get("price_id"),
            "plan_id": fields.get("plan_id") or engine.provider.plan_for_price(None),
        },
    )
    await engine.buffer.discard(ctx.db, external_id)
    await ctx.mark_processed(
        subscription_id=external_id,
        metadata={
            "user_id": user_id,
            "customer_id": customer_id,
            "subscription_id": str(subscription.id),
            "replaced": replaced,
        },
    )

    logger.info(
        f"Created subscription {external_id} ({subscription.status}) for user {user_id}, "
        f"customer {customer_id}"
        + (f", replacing {', '.join(replaced)}" if replaced else "")
    )
    return ReconcileResult(status=ResultStatus.PROCESSED, subscription_id=external_id)


async def _confirm_existing(
    ctx: EventContext,
    subscription: Subscription,
    stripe_sub: dict[str, Any] | None,
) -> ReconcileResult:
    """The row already exists: refresh it from provider state if we have it."""
    engine = ctx.engine
    if stripe_sub is not None:
        await _apply_provider_state(ctx, subscription, _mirror_fields(ctx, stripe_sub))
    await engine.buffer.discard(ctx.db, subscription.external_subscription_id)
    await ctx.mark_processed(
        subscription_id=subscription.external_subscription_id,
        metadata={"reason": "confirmed_existing"},
    )
    logger.info(f"Subscription {subscription.external_subscription_id} already on record")
    return ReconcileResult(
        status=ResultStatus.PROCESSED,
        subscription_id=subscription.external_subscription_id,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Creation handlers
# ─────────────────────────────────────────────────────────────────────────────


async def handle_session_completed(ctx: EventContext) -> ReconcileResult:
    """Checkout finished: the user-side half of a purchase."""
    engine = ctx.engine
    session = ctx.event.obj

    if session.get("mode") not in (None, "subscription"):
        await ctx.mark_processed(metadata={"reason": "not_subscription_checkout"})
        return ReconcileResult(status=ResultStatus.IGNORED)

    external_id = ref_id(session.get("subscription"))
    customer_id = ref_id(session.get("customer"))
    user_id = ref_id(session.get("client_reference_id"))
    if not external_id or not customer_id or not user_id:
        raise ValidationError(
            "Checkout session is missing subscription, customer or client_reference_id",
            event_id=ctx.event.event_id,
        )

    await engine.subscriptions.lock_customer(ctx.db, customer_id)

    existing = await engine.subscriptions.get_by_external_id(ctx.db, external_id)
    if existing:
        return await _confirm_existing(ctx, existing, await _fresh_state(ctx, external_id))

    guard = await engine.guard.check(
        ctx.db, customer_id, user_id, exclude_external_id=external_id, now=ctx.now
    )
    if guard.blocked:
        return await _block(ctx, external_id, customer_id, guard)

    try:
        stripe_sub = await engine.saga.retrieve_subscription(external_id)
    except ProviderAPIError as e:
        if await engine.buffer.peek(ctx.db, external_id, ctx.now):
            # The provider-side half is waiting on us; only a retry can complete it
            e.event_id = ctx.event.event_id
            raise
        await engine.buffer.hold(
            ctx.db, external_id, customer_id, user_id, CorrelationSource.SESSION_COMPLETED, ctx.now
        )
        await ctx.mark_processed(
            subscription_id=external_id,
            metadata={"reason": "awaiting_subscription", "user_id": user_id},
        )
        return ReconcileResult(
            status=ResultStatus.PENDING_CORRELATION, subscription_id=external_id
        )

    return await _materialize(
        ctx, external_id, customer_id, user_id, stripe_sub, guard, SESSION_REPLACEMENT_REASON
    )


async def handle_subscription_created(ctx: EventContext) -> ReconcileResult:
    """Provider created a subscription: the billing-side half of a purchase."""
    engine = ctx.engine
    stripe_sub = ctx.event.obj

    external_id = ref_id(stripe_sub.get("id"))
    customer_id = ref_id(stripe_sub.get("customer"))
    if not external_id or not customer_id:
        raise ValidationError(
            "Subscription is missing id or customer", event_id=ctx.event.event_id
        )

    await engine.subscriptions.lock_customer(ctx.db, customer_id)

    existing = await engine.subscriptions.get_by_external_id(ctx.db, external_id)
    if existing:
        return await _confirm_existing(ctx, existing, await _fresh_state(ctx, external_id))

    user_id: str | None = None
    pending = await engine.buffer.claim(ctx.db, external_id, ctx.now)
    if pending is not None and pending.user_id:
        user_id = pending.user_id
    else:
        metadata = stripe_sub.get("metadata") or {}
        if isinstance(metadata, dict):
            user_id = ref_id(metadata.get("user_id")) or ref_id(
                metadata.get("client_reference_id")
            )

    guard = await engine.guard.check(
        ctx.db, customer_id, user_id, exclude_external_id=external_id, now=ctx.now
    )
    if guard.blocked:
        return await _block(ctx, external_id, customer_id, guard)

    if user_id is None:
        await engine.buffer.hold(
            ctx.db, external_id, customer_id, None, CorrelationSource.SUBSCRIPTION_CREATED, ctx.now
        )
        await ctx.mark_processed(
            subscription_id=external_id, metadata={"reason": "awaiting_session"}
        )
        return ReconcileResult(
            status=ResultStatus.PENDING_CORRELATION, subscription_id=external_id
        )

    # The event payload is a creation-time snapshot; later updates may already be upstream
    fresh = await _fresh_state(ctx, external_id)
    return await _materialize(
        ctx,
        external_id,
        customer_id,
        user_id,
        fresh if fresh is not None else stripe_sub,
        guard,
        CREATED_REPLACEMENT_REASON,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle handlers
# ─────────────────────────────────────────────────────────────────────────────


async def _find_row(ctx: EventContext) -> tuple[str, Subscription | None]:
    external_id = ref_id(ctx.event.obj.get("id"))
    if not external_id:
        raise ValidationError("Subscription event has no id", event_id=ctx.event.event_id)
    return external_id, await ctx.engine.subscriptions.get_by_external_id(ctx.db, external_id)


async def _no_matching_subscription(ctx: EventContext, external_id: str) -> ReconcileResult:
    logger.warning(
        f"No subscription found for {external_id} ({ctx.event.raw_type}), nothing to update"
    )
    await ctx.mark_processed(
        subscription_id=external_id, metadata={"reason": "no_matching_subscription"}
    )
    return ReconcileResult(status=ResultStatus.PROCESSED, subscription_id=external_id)


async def handle_subscription_mirrored(ctx: EventContext) -> ReconcileResult:
    """Copy status, period bounds and cancel_at_period_end from the payload."""
    external_id, subscription = await _find_row(ctx)
    if subscription is None:
        return await _no_matching_subscription(ctx, external_id)

    updates = _mirror_fields(ctx, ctx.event.obj)
    previous_status = subscription.status
    reactivated = await _apply_provider_state(ctx, subscription, updates)
    metadata: dict[str, Any] = {
        "previous_status": previous_status,
        "status": subscription.status,
        "cancel_at_period_end": subscription.cancel_at_period_end,
    }
    if reactivated:
        metadata["reason"] = "superseded_reactivated"
    await ctx.mark_processed(subscription_id=external_id, metadata=metadata)
    logger.info(
        f"Subscription {external_id} {ctx.event.raw_type}: {previous_status} -> "
        f"{subscription.status} (cancel_at_period_end={subscription.cancel_at_period_end})"
    )
    return ReconcileResult(status=ResultStatus.PROCESSED, subscription_id=external_id)


async def handle_subscription_deleted(ctx: EventContext) -> ReconcileResult:
    """Subscription ended upstream: cancel locally and close the period now."""
    external_id, subscription = await _find_row(ctx)
    if subscription is None:
        # A half that was never matched is moot now
        await ctx.engine.buffer.discard(ctx.db, external_id)
        return await _no_matching_subscription(ctx, external_id)

    previous_status = subscription.status
    await ctx.engine.subscriptions.update(
        ctx.db,
        subscription,
        {
            "status": SubscriptionStatus.CANCELED.value,
            "cancel_at_period_end": False,
            "current_period_end": ctx.now,
        },
    )
    await ctx.mark_processed(
        subscription_id=external_id,
        metadata={"previous_status": previous_status, "status": SubscriptionStatus.CANCELED.value},
    )
    logger.info(f"Subscription {external_id} canceled (was {previous_status})")
    return ReconcileResult(status=ResultStatus.PROCESSED, subscription_id=external_id)


HANDLERS: dict[EventKind, Handler] = {
    EventKind.SESSION_COMPLETED: handle_session_completed,
    EventKind.SUBSCRIPTION_CREATED: handle_subscription_created,
    EventKind.SUBSCRIPTION_UPDATED: handle_subscription_mirrored,
    EventKind.SUBSCRIPTION_DELETED: handle_subscription_deleted,
    EventKind.PENDING_UPDATE_APPLIED: handle_subscription_mirrored,
    EventKind.PENDING_UPDATE_EXPIRED: handle_subscription_mirrored,
    EventKind.TRIAL_WILL_END: handle_subscription_mirrored,
    EventKind.SUBSCRIPTION_PAUSED: handle_subscription_mirrored,
    EventKind.SUBSCRIPTION_RESUMED: handle_subscription_mirrored,
}
