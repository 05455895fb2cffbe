"""Billing provider webhook ingress."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from reconciler.api.deps import DbSession, Reconciler
from reconciler.core.exceptions import ReconciliationError
from reconciler.services.reconciliation import parse_event
from reconciler.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/webhooks/stripe")
async def handle_stripe_webhook(
    request: Request,
    db: DbSession,
    reconciler: Reconciler,
) -> dict[str, Any]:
    """
    Handle Stripe webhook events.

    Verifies the webhook signature before anything is read or written.
    No authentication required (verified by Stripe signature).

    Any 400 response makes Stripe redeliver the event later, so it is
    reserved for events that were not (and must still be) processed.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = parse_event(stripe_service.construct_webhook_event(payload, sig_header))
        logger.info(f"Received Stripe webhook: {event.raw_type} ({event.event_id})")
        result = await reconciler.handle(db, event)
    except ReconciliationError as e:
        logger.warning(
            f"Rejected Stripe webhook{f' {e.event_id}' if e.event_id else ''}: {e.message}"
        )
        raise HTTPException(400, e.message) from None

    return result.to_response()
