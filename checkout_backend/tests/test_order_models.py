"""Tests for order models, status transitions and metadata variants."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from checkout_backend.app.billing import BillingPeriod, OrderCreate, OrderKind, OrderStatus
from checkout_backend.app.billing.models import (
    CheckoutMetadata,
    InvalidOrderTransition,
    RefundMetadata,
    SubscriptionUpgradeMetadata,
    can_transition,
    cents_to_amount,
    format_amount,
    metadata_from_mapping,
    metadata_to_mapping,
    predecessors_of,
    timestamp_to_datetime,
)


@pytest.mark.parametrize(
    "current, requested, allowed",
    [
        (OrderStatus.PENDING, OrderStatus.PAID, True),
        (OrderStatus.PENDING, OrderStatus.PENDING, True),
        (OrderStatus.PAID, OrderStatus.REFUNDED, True),
        (OrderStatus.PAID, OrderStatus.PENDING, False),
        (OrderStatus.REFUNDED, OrderStatus.PAID, False),
        (OrderStatus.FAILED, OrderStatus.PAID, False),
    ],
)
def test_status_transitions_are_monotonic(current, requested, allowed):
    assert can_transition(current, requested) is allowed


def test_predecessors_of_paid():
    assert set(predecessors_of(OrderStatus.PAID)) == {OrderStatus.PENDING, OrderStatus.PAID}


def test_in_memory_ledger_rejects_backwards_move(ledger):
    order = ledger.create_order(
        OrderCreate(
            user_id="user-1",
            product_id="professional",
            product_name="Professional",
            amount="6.00",
            currency="usd",
            payment_provider="sandbox",
        )
    )
    assert order.currency == "USD"
    ledger.update_order_status(order.id, OrderStatus.PAID)

    with pytest.raises(InvalidOrderTransition):
        ledger.update_order_status(order.id, OrderStatus.PENDING)


def test_amount_requires_two_decimals():
    with pytest.raises(PydanticValidationError):
        OrderCreate(
            user_id="user-1",
            product_id="professional",
            product_name="Professional",
            amount="6",
            currency="USD",
            payment_provider="sandbox",
        )


def test_amount_helpers():
    assert format_amount("4") == "4.00"
    assert format_amount("0.005") == "0.01"
    assert cents_to_amount(5199) == "51.99"
    assert cents_to_amount(None) == "0.00"


def test_timestamps_in_seconds_and_milliseconds_agree():
    seconds = timestamp_to_datetime(1767225600)
    millis = timestamp_to_datetime(1767225600000)

    assert seconds == millis == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_metadata_keeps_unknown_keys_as_extensions():
    raw = {
        "kind": "subscription_upgrade",
        "plan_period": "yearly",
        "upgrade_from_order_id": "ord-1",
        "hidden": True,
    }

    metadata = metadata_from_mapping(raw)

    assert isinstance(metadata, SubscriptionUpgradeMetadata)
    assert metadata.plan_period == BillingPeriod.YEARLY
    assert metadata.extensions == {"hidden": True}
    assert metadata_to_mapping(metadata) == raw


def test_metadata_without_kind_is_a_checkout():
    metadata = metadata_from_mapping({"plan_period": "monthly"})

    assert isinstance(metadata, CheckoutMetadata)
    assert metadata.kind == OrderKind.CHECKOUT.value


def test_unrecognized_kind_is_preserved():
    metadata = metadata_from_mapping({"kind": "gift", "note": "x"})

    assert isinstance(metadata, CheckoutMetadata)
    assert metadata.extensions == {"note": "x", "unrecognized_kind": "gift"}


def test_refund_metadata_round_trips_through_the_mapping():
    metadata = RefundMetadata(refunded_order_id="ord-1", reason="requested")

    assert metadata_from_mapping(metadata_to_mapping(metadata)) == metadata
