"""Unit tests for the active-subscription guard — row classification."""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from reconciler.services.reconciliation.guard import (
    ActiveSubscriptionGuard,
    classify,
    is_replaceable,
    is_truly_active,
    would_be_truly_active,
)

from tests.helpers.mock_factories import NOW, make_mock_db, make_subscription


class TestTrulyActive:
    """Tests for the truly-active predicate."""

    def test_active_with_future_period_end(self):
        assert is_truly_active(make_subscription(), NOW) is True

    def test_cancel_at_period_end_is_not_truly_active(self):
        sub = make_subscription(cancel_at_period_end=True)
        assert is_truly_active(sub, NOW) is False
        assert is_replaceable(sub, NOW) is True

    def test_lapsed_period_is_not_truly_active(self):
        sub = make_subscription(current_period_end=NOW - timedelta(seconds=1))
        assert is_truly_active(sub, NOW) is False
        assert is_replaceable(sub, NOW) is True

    def test_period_ending_exactly_now_has_lapsed(self):
        sub = make_subscription(current_period_end=NOW)
        assert is_truly_active(sub, NOW) is False

    def test_missing_period_end_counts_as_lapsed(self):
        sub = make_subscription(current_period_end=None)
        assert is_truly_active(sub, NOW) is False
        assert is_replaceable(sub, NOW) is True

    @pytest.mark.parametrize("status", ["trialing", "past_due", "canceled", "unpaid", "paused"])
    def test_non_active_status_is_not_truly_active(self, status):
        assert is_truly_active(make_subscription(status=status), NOW) is False


class TestWouldBeTrulyActive:
    """Tests for the predicate over a row plus pending updates."""

    def test_clearing_cancel_at_period_end_makes_row_truly_active(self):
        sub = make_subscription(cancel_at_period_end=True)
        assert would_be_truly_active(sub, {"cancel_at_period_end": False}, NOW)

    def test_none_values_keep_current_fields(self):
        sub = make_subscription(cancel_at_period_end=True)
        updates = {"cancel_at_period_end": None, "current_period_end": None, "status": None}
        assert not would_be_truly_active(sub, updates, NOW)

    def test_new_period_end_in_the_past(self):
        sub = make_subscription()
        updates = {"current_period_end": NOW - timedelta(days=1)}
        assert not would_be_truly_active(sub, updates, NOW)

    def test_status_change_to_active(self):
        sub = make_subscription(status="past_due")
        assert would_be_truly_active(sub, {"status": "active"}, NOW)

    def test_row_is_not_modified(self):
        sub = make_subscription(cancel_at_period_end=True)
        would_be_truly_active(sub, {"cancel_at_period_end": False}, NOW)
        assert sub.cancel_at_period_end is True


class TestClassify:
    """Tests for bucketing a customer's rows."""

    def test_empty(self):
        result = classify([], NOW)
        assert result.blocked is False
        assert result.total == 0

    def test_truly_active_row_blocks(self):
        sub = make_subscription()
        result = classify([sub], NOW)
        assert result.blocked is True
        assert result.truly_active == [sub]

    def test_replaceable_rows_do_not_block(self):
        cancelling = make_subscription(cancel_at_period_end=True)
        expired = make_subscription(current_period_end=NOW - timedelta(days=1))
        result = classify([cancelling, expired], NOW)
        assert result.blocked is False
        assert result.replaceable == [cancelling, expired]

    def test_trialing_row_is_inert(self):
        trialing = make_subscription(status="trialing")
        result = classify([trialing], NOW)
        assert result.inert == [trialing]
        assert result.replaceable == []

    def test_superseded_rows_are_inert(self):
        old = make_subscription(cancel_at_period_end=True, superseded_by=uuid.uuid4())
        result = classify([old], NOW)
        assert result.inert == [old]
        assert result.replaceable == []

    def test_excluded_external_id_is_skipped(self):
        sub = make_subscription(external_subscription_id="sub_self")
        result = classify([sub], NOW, exclude_external_id="sub_self")
        assert result.blocked is False
        assert result.total == 0

    def test_duplicate_rows_counted_once(self):
        sub = make_subscription(external_subscription_id="sub_1")
        result = classify([sub, sub], NOW)
        assert result.total == 1

    def test_details_are_json_safe(self):
        sub = make_subscription(external_subscription_id="sub_1")
        details = classify([sub], NOW).details()
        assert details["total_found"] == 1
        assert details["truly_active"] == 1
        assert details["to_replace"] == 0
        row = details["subscriptions"][0]
        assert row["id"] == "sub_1"
        assert row["current_period_end"] == sub.current_period_end.isoformat()


class TestActiveSubscriptionGuard:
    """Tests for the guard's lookup."""

    @pytest.mark.asyncio
    async def test_checks_by_customer_and_user(self):
        ops = AsyncMock()
        ops.list_for_customer.return_value = [make_subscription()]
        guard = ActiveSubscriptionGuard(ops)
        db = make_mock_db()

        result = await guard.check(db, "cus_1", "user_1", now=NOW)

        ops.list_for_customer.assert_awaited_once_with(db, "cus_1", "user_1")
        assert result.blocked is True
