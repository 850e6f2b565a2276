"""Membership status derived from the order ledger."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from .models import (
    BillingPeriod,
    MembershipStatus,
    Order,
    OrderStatus,
    SUBSCRIPTION_PRODUCT_ID,
)
from .protocols import OrderLedger

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _paid_sort_key(order: Order) -> datetime:
    return order.paid_at or order.created_at or _EPOCH


def _period_of(order: Order) -> Optional[BillingPeriod]:
    metadata = order.metadata
    upgraded = getattr(metadata, "upgrade_to_period", None)
    if upgraded is not None:
        return upgraded
    return getattr(metadata, "plan_period", None)


def membership_from_orders(orders: Iterable[Order]) -> MembershipStatus:
    """Compute a :class:`MembershipStatus` from one product's orders.

    The most recently paid order anchors the period and subscription
    references; a later upgrade merged onto it wins over its original period.
    """

    orders = list(orders)
    paid = [order for order in orders if order.status == OrderStatus.PAID]
    has_history = any(order.status in {OrderStatus.PAID, OrderStatus.REFUNDED} for order in orders)
    if not paid:
        return MembershipStatus(is_paid=False, has_paid_history=has_history)

    anchor = max(paid, key=_paid_sort_key)
    return MembershipStatus(
        is_paid=True,
        period=_period_of(anchor),
        subscription_id=getattr(anchor.metadata, "subscription_id", None),
        payment_session_id=anchor.payment_session_id,
        order_id=anchor.id,
        has_paid_history=True,
    )


@dataclass
class LedgerMembershipResolver:
    """Resolves membership by reading the user's subscription orders."""

    ledger: OrderLedger
    product_id: str = SUBSCRIPTION_PRODUCT_ID

    def resolve(self, user_id: str) -> MembershipStatus:
        return membership_from_orders(self.ledger.list_orders_for_product(user_id, self.product_id))


__all__ = ["LedgerMembershipResolver", "membership_from_orders"]
