"""Unit tests for StripeService — webhook verification and subscription calls."""

from datetime import UTC, datetime
from unittest.mock import patch

import pytest
import stripe

from reconciler.core.exceptions import ProviderAPIError, SignatureVerificationError
from reconciler.services.stripe_service import DEFAULT_PLAN_ID, StripeService


def _invalid_request(message: str, code: str | None = None) -> stripe.InvalidRequestError:
    return stripe.InvalidRequestError(message, param="id", code=code)


class TestConstructWebhookEvent:
    @patch("reconciler.services.stripe_service.stripe")
    def test_returns_event_dict(self, mock_stripe):
        mock_stripe.Webhook.construct_event.return_value = {"id": "evt_1", "type": "x"}
        event = StripeService.construct_webhook_event(b"{}", "t=1,v1=abc")
        assert event == {"id": "evt_1", "type": "x"}
        args = mock_stripe.Webhook.construct_event.call_args[0]
        assert args[0] == b"{}"
        assert args[1] == "t=1,v1=abc"

    @patch("reconciler.services.stripe_service.stripe")
    def test_bad_signature(self, mock_stripe):
        mock_stripe.SignatureVerificationError = stripe.SignatureVerificationError
        mock_stripe.Webhook.construct_event.side_effect = stripe.SignatureVerificationError(
            "No signatures found", "t=1,v1=abc"
        )
        with pytest.raises(SignatureVerificationError):
            StripeService.construct_webhook_event(b"{}", "t=1,v1=abc")

    @patch("reconciler.services.stripe_service.stripe")
    def test_bad_payload(self, mock_stripe):
        mock_stripe.SignatureVerificationError = stripe.SignatureVerificationError
        mock_stripe.Webhook.construct_event.side_effect = ValueError("not json")
        with pytest.raises(SignatureVerificationError):
            StripeService.construct_webhook_event(b"nope", "t=1,v1=abc")


class TestGetSubscription:
    @patch("reconciler.services.stripe_service.stripe")
    def test_returns_dict(self, mock_stripe):
        mock_stripe.Subscription.retrieve.return_value = {"id": "sub_1", "status": "active"}
        assert StripeService.get_subscription("sub_1") == {"id": "sub_1", "status": "active"}

    @patch("reconciler.services.stripe_service.stripe")
    def test_wraps_stripe_errors(self, mock_stripe):
        mock_stripe.Subscription.retrieve.side_effect = _invalid_request(
            "No such subscription", code="resource_missing"
        )
        with pytest.raises(ProviderAPIError) as exc_info:
            StripeService.get_subscription("sub_1")
        assert exc_info.value.code == "resource_missing"


class TestCancelSubscription:
    @patch("reconciler.services.stripe_service.stripe")
    def test_cancels(self, mock_stripe):
        mock_stripe.InvalidRequestError = stripe.InvalidRequestError
        assert StripeService.cancel_subscription("sub_1") is True
        mock_stripe.Subscription.cancel.assert_called_once_with("sub_1")

    @pytest.mark.parametrize(
        "error",
        [
            _invalid_request("No such subscription: 'sub_1'", code="resource_missing"),
            _invalid_request("This subscription has already been canceled"),
        ],
    )
    @patch("reconciler.services.stripe_service.stripe")
    def test_already_gone_is_not_an_error(self, mock_stripe, error):
        mock_stripe.InvalidRequestError = stripe.InvalidRequestError
        mock_stripe.Subscription.cancel.side_effect = error
        assert StripeService.cancel_subscription("sub_1") is False

    @patch("reconciler.services.stripe_service.stripe")
    def test_other_invalid_requests_raise(self, mock_stripe):
        mock_stripe.InvalidRequestError = stripe.InvalidRequestError
        mock_stripe.Subscription.cancel.side_effect = _invalid_request("Bad parameter")
        with pytest.raises(ProviderAPIError):
            StripeService.cancel_subscription("sub_1")

    @patch("reconciler.services.stripe_service.stripe")
    def test_api_errors_raise(self, mock_stripe):
        mock_stripe.InvalidRequestError = stripe.InvalidRequestError
        mock_stripe.Subscription.cancel.side_effect = stripe.APIConnectionError("timeout")
        with pytest.raises(ProviderAPIError):
            StripeService.cancel_subscription("sub_1")


class TestPlanForPrice:
    @patch("reconciler.services.stripe_service.settings")
    def test_maps_known_prices(self, mock_settings):
        mock_settings.stripe_price_starter = "price_s"
        mock_settings.stripe_price_pro = "price_p"
        mock_settings.stripe_price_pro_plus = "price_pp"
        assert StripeService.plan_for_price("price_s") == "starter"
        assert StripeService.plan_for_price("price_p") == "pro"
        assert StripeService.plan_for_price("price_pp") == "pro_plus"

    @patch("reconciler.services.stripe_service.settings")
    def test_unknown_and_missing_default_to_starter(self, mock_settings):
        mock_settings.stripe_price_starter = ""
        mock_settings.stripe_price_pro = "price_p"
        mock_settings.stripe_price_pro_plus = ""
        assert StripeService.plan_for_price("price_other") == DEFAULT_PLAN_ID
        assert StripeService.plan_for_price(None) == DEFAULT_PLAN_ID
        assert StripeService.plan_for_price("") == DEFAULT_PLAN_ID


class TestPayloadHelpers:
    def test_period_bounds_top_level(self):
        start, end = StripeService.period_bounds(
            {"current_period_start": 1_700_000_000, "current_period_end": 1_702_592_000}
        )
        assert start == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert end == datetime.fromtimestamp(1_702_592_000, tz=UTC)

    def test_period_bounds_fall_back_to_first_item(self):
        start, end = StripeService.period_bounds(
            {
                "items": {
                    "data": [
                        {"current_period_start": 1_700_000_000, "current_period_end": 1_702_592_000}
                    ]
                }
            }
        )
        assert start is not None
        assert end == datetime.fromtimestamp(1_702_592_000, tz=UTC)

    def test_period_bounds_missing(self):
        assert StripeService.period_bounds({}) == (None, None)

    def test_primary_price_id(self):
        sub = {"items": {"data": [{"price": {"id": "price_1"}}, {"price": {"id": "price_2"}}]}}
        assert StripeService.primary_price_id(sub) == "price_1"
        assert StripeService.primary_price_id({"items": {"data": []}}) is None
        assert StripeService.primary_price_id({}) is None

