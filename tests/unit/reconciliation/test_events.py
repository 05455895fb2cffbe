"""Unit tests for webhook event parsing."""

import pytest

from reconciler.core.exceptions import ValidationError
from reconciler.services.reconciliation.events import EventKind, parse_event, ref_id


class TestParseEvent:
    def test_known_kind(self):
        event = parse_event(
            {"id": "evt_1", "type": "customer.subscription.updated", "data": {"object": {"id": "sub_1"}}}
        )
        assert event.event_id == "evt_1"
        assert event.kind is EventKind.SUBSCRIPTION_UPDATED
        assert event.obj == {"id": "sub_1"}
        assert event.is_creation is False

    def test_creation_kinds(self):
        for event_type in ("checkout.session.completed", "customer.subscription.created"):
            event = parse_event({"id": "evt_1", "type": event_type, "data": {"object": {}}})
            assert event.is_creation is True

    def test_unknown_kind_parses_without_kind(self):
        event = parse_event({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}})
        assert event.kind is None
        assert event.raw_type == "invoice.paid"

    @pytest.mark.parametrize(
        "raw",
        [
            {"type": "customer.subscription.updated", "data": {"object": {}}},
            {"id": "evt_1", "data": {"object": {}}},
            {"id": "evt_1", "type": "customer.subscription.updated"},
            {"id": "evt_1", "type": "customer.subscription.updated", "data": {"object": None}},
        ],
    )
    def test_malformed_events_are_rejected(self, raw):
        with pytest.raises(ValidationError):
            parse_event(raw)


class TestRefId:
    def test_bare_id(self):
        assert ref_id("cus_1") == "cus_1"

    def test_expanded_object(self):
        assert ref_id({"id": "cus_1", "object": "customer"}) == "cus_1"

    @pytest.mark.parametrize("value", [None, "", {}])
    def test_missing(self, value):
        assert ref_id(value) is None
