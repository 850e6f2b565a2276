"""Collaborator interfaces consumed by the checkout core."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .models import (
    DiscountCode,
    MembershipStatus,
    Order,
    OrderCreate,
    OrderStatus,
    ProviderCheckout,
    ProviderSubscription,
    TransactionPage,
)

UPGRADE_BEHAVIOR_PRORATE_NOW = "proration-charge-immediately"


class PaymentProviderClient(Protocol):
    """External payment processor integration."""

    name: str

    def create_checkout(
        self,
        *,
        product_id: str,
        request_id: str,
        customer_email: str,
        success_url: str,
        metadata: Dict[str, str],
        discount_code: Optional[str] = None,
    ) -> ProviderCheckout:
        """Create a hosted checkout session."""

    def retrieve_checkout(self, checkout_id: str) -> ProviderCheckout:
        ...

    def upgrade_subscription(
        self,
        subscription_id: str,
        *,
        target_product_id: str,
        update_behavior: str = UPGRADE_BEHAVIOR_PRORATE_NOW,
    ) -> None:
        """Switch a subscription to another product; may capture a charge."""

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        ...

    def search_transactions(self, *, customer_id: str, page: int, page_size: int) -> TransactionPage:
        ...

    def create_discount(self, discount: DiscountCode, *, name: str) -> None:
        ...


class OrderLedger(Protocol):
    """Persistent order records."""

    def create_order(self, order: OrderCreate) -> Order:
        ...

    def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        payment_request_id: Optional[str] = None,
        payment_session_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> Order:
        """Move an order forward; raises ``InvalidOrderTransition`` when not allowed."""

    def merge_order_metadata(self, order_id: str, partial: Mapping[str, Any]) -> Order:
        ...

    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    def has_paid_order(self, user_id: str, product_id: str) -> bool:
        ...

    def list_orders_for_product(self, user_id: str, product_id: str) -> List[Order]:
        ...

    def list_orders(
        self,
        user_id: str,
        *,
        limit: int = 10,
        offset: int = 0,
        statuses: Sequence[OrderStatus] = (),
    ) -> Tuple[List[Order], int]:
        ...


class MembershipStatusResolver(Protocol):
    def resolve(self, user_id: str) -> MembershipStatus:
        ...


__all__ = [
    "MembershipStatusResolver",
    "OrderLedger",
    "PaymentProviderClient",
    "UPGRADE_BEHAVIOR_PRORATE_NOW",
]
