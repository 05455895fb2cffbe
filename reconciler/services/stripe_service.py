"""Stripe billing provider service for subscription reconciliation."""

import logging
from datetime import UTC, datetime
from typing import Any

import stripe
from stripe import StripeError

from reconciler.config import settings
from reconciler.core.exceptions import ProviderAPIError, SignatureVerificationError

logger = logging.getLogger(__name__)

# Initialize Stripe with secret key
stripe.api_key = settings.stripe_secret_key

# Plan assigned when a price id is missing or unknown
DEFAULT_PLAN_ID = "starter"

# Error codes meaning the subscription is already gone upstream
ALREADY_GONE_CODES = frozenset({"resource_missing", "subscription_canceled"})


class StripeService:
    """
    Handles all Stripe API interactions.

    All methods are static and stateless. Stripe SDK handles connection pooling.
    Failures are raised as ProviderAPIError so callers never need to import
    the SDK's exception hierarchy.
    """

    @staticmethod
    def construct_webhook_event(payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and construct a webhook event from Stripe.

        Raises SignatureVerificationError if the signature or payload is invalid.
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload,
                signature,
                settings.stripe_webhook_secret,
            )
            return dict(event)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise SignatureVerificationError("Invalid webhook signature") from None
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise SignatureVerificationError("Invalid webhook payload") from None

    @staticmethod
    def get_subscription(stripe_subscription_id: str) -> dict[str, Any]:
        """Retrieve a Stripe subscription by ID."""
        try:
            sub = stripe.Subscription.retrieve(stripe_subscription_id)
            return dict(sub)
        except StripeError as e:
            logger.error(f"Failed to retrieve subscription {stripe_subscription_id}: {e}")
            raise ProviderAPIError(
                f"Could not retrieve subscription {stripe_subscription_id}",
                code=getattr(e, "code", None),
            ) from e

    @staticmethod
    def cancel_subscription(stripe_subscription_id: str) -> bool:
        """
        Cancel a Stripe subscription immediately.

        Returns False if Stripe reports the subscription as already canceled
        or missing; that outcome is treated as done by callers.
        """
        try:
            stripe.Subscription.cancel(stripe_subscription_id)
            logger.info(f"Canceled Stripe subscription {stripe_subscription_id}")
            return True
        except stripe.InvalidRequestError as e:
            code = getattr(e, "code", None)
            if code in ALREADY_GONE_CODES or "canceled" in str(e).lower():
                logger.info(
                    f"Stripe subscription {stripe_subscription_id} already canceled: {e}"
                )
                return False
            logger.error(f"Failed to cancel subscription {stripe_subscription_id}: {e}")
            raise ProviderAPIError(
                f"Could not cancel subscription {stripe_subscription_id}", code=code
            ) from e
        except StripeError as e:
            logger.error(f"Failed to cancel subscription {stripe_subscription_id}: {e}")
            raise ProviderAPIError(
                f"Could not cancel subscription {stripe_subscription_id}",
                code=getattr(e, "code", None),
            ) from e

    @staticmethod
    def plan_for_price(price_id: str | None) -> str:
        """Map a Stripe price ID to the plan id stored on the subscription."""
        if not price_id:
            return DEFAULT_PLAN_ID
        price_map = {
            settings.stripe_price_starter: "starter",
            settings.stripe_price_pro: "pro",
            settings.stripe_price_pro_plus: "pro_plus",
        }
        price_map.pop("", None)
        return price_map.get(price_id, DEFAULT_PLAN_ID)

    @staticmethod
    def primary_price_id(stripe_sub: dict[str, Any]) -> str | None:
        """Price ID of the first subscription item, if any."""
        items = stripe_sub.get("items") or {}
        data = items.get("data") if isinstance(items, dict) else None
        if not data:
            return None
        price = data[0].get("price") or {}
        return price.get("id") if isinstance(price, dict) else None

    @staticmethod
    def period_bounds(
        stripe_sub: dict[str, Any],
    ) -> tuple[datetime | None, datetime | None]:
        """
        Parse the current period of a subscription payload.

        Newer API versions moved the period fields onto subscription items,
        so fall back to the first item when the top-level fields are absent.
        """
        start = stripe_sub.get("current_period_start")
        end = stripe_sub.get("current_period_end")

        if start is None or end is None:
            items = stripe_sub.get("items") or {}
            data = items.get("data") if isinstance(items, dict) else None
            if data:
                start = start if start is not None else data[0].get("current_period_start")
                end = end if end is not None else data[0].get("current_period_end")

        return _from_timestamp(start), _from_timestamp(end)


def _from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


# Singleton instance
stripe_service = StripeService()
