"""Shared fixtures for billing tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

from checkout_backend.app.billing import (
    BillingPeriod,
    CheckoutUser,
    Order,
    OrderCreate,
    OrderStatus,
    RetryPolicy,
    load_billing_config,
)
from checkout_backend.app.billing.models import (
    CheckoutMetadata,
    InvalidOrderTransition,
    can_transition,
    metadata_from_mapping,
    metadata_to_mapping,
)
from checkout_backend.app.billing.sandbox import SandboxPaymentProvider
from checkout_backend.app.services.billing import build_checkout_orchestrator

MONTHLY_PRODUCT = "prod_monthly"
YEARLY_PRODUCT = "prod_yearly"
PRODUCTS_ENV = '{"professional:monthly": "prod_monthly", "professional:yearly": "prod_yearly"}'


class InMemoryOrderLedger:
    def __init__(self) -> None:
        self.orders: Dict[str, Order] = {}
        self.calls: List[Tuple[str, str]] = []
        self._ids = count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def create_order(self, order: OrderCreate) -> Order:
        number = next(self._ids)
        now = self._tick()
        created = Order(
            id=f"ord-{number}",
            order_number=f"ORD{number:06d}",
            created_at=now,
            updated_at=now,
            metadata=order.metadata,
            **order.model_dump(exclude={"metadata"}),
        )
        self.orders[created.id] = created
        self.calls.append(("create_order", created.id))
        return created

    def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        payment_request_id: Optional[str] = None,
        payment_session_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise LookupError(order_id)
        if not can_transition(order.status, status):
            raise InvalidOrderTransition(order_id, order.status, status)
        updated = order.model_copy(
            update={
                "status": status,
                "payment_request_id": payment_request_id or order.payment_request_id,
                "payment_session_id": payment_session_id or order.payment_session_id,
                "paid_at": paid_at or order.paid_at,
                "updated_at": self._tick(),
            }
        )
        self.orders[order_id] = updated
        self.calls.append(("update_order_status", order_id))
        return updated

    def merge_order_metadata(self, order_id: str, partial: Mapping[str, Any]) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise LookupError(order_id)
        merged = {**metadata_to_mapping(order.metadata), **dict(partial)}
        updated = order.model_copy(update={"metadata": metadata_from_mapping(merged), "updated_at": self._tick()})
        self.orders[order_id] = updated
        self.calls.append(("merge_order_metadata", order_id))
        return updated

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    def has_paid_order(self, user_id: str, product_id: str) -> bool:
        return any(
            order.user_id == user_id and order.product_id == product_id and order.status == OrderStatus.PAID
            for order in self.orders.values()
        )

    def list_orders_for_product(self, user_id: str, product_id: str) -> List[Order]:
        matches = [o for o in self.orders.values() if o.user_id == user_id and o.product_id == product_id]
        return sorted(matches, key=lambda o: o.created_at, reverse=True)

    def list_orders(
        self,
        user_id: str,
        *,
        limit: int = 10,
        offset: int = 0,
        statuses: Sequence[OrderStatus] = (),
    ) -> Tuple[List[Order], int]:
        matches = [
            o
            for o in self.orders.values()
            if o.user_id == user_id and (not statuses or o.status in statuses)
        ]
        matches.sort(key=lambda o: o.created_at, reverse=True)
        return matches[offset:offset + limit], len(matches)


@pytest.fixture
def ledger() -> InMemoryOrderLedger:
    return InMemoryOrderLedger()


@pytest.fixture
def provider() -> SandboxPaymentProvider:
    return SandboxPaymentProvider(proration_cents={YEARLY_PRODUCT: 5200, MONTHLY_PRODUCT: 0})


@pytest.fixture
def billing_config():
    return load_billing_config(
        {
            "PAYMENT_PROVIDER": "sandbox",
            "CREEM_PRODUCTS": PRODUCTS_ENV,
            "NEXT_PUBLIC_WEB_URL": "https://app.example.com",
            "PROJECT_NAME": "rtvox",
        }
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def orchestrator(billing_config, provider, ledger, sleeps):
    return build_checkout_orchestrator(
        billing_config,
        provider=provider,
        ledger=ledger,
        retry_policy=RetryPolicy.linear(max_attempts=4, step_seconds=0.45, sleep=sleeps.append),
    )


@pytest.fixture
def user() -> CheckoutUser:
    return CheckoutUser(id="user-1", email="reader@example.com")


def seed_paid_subscription(
    ledger: InMemoryOrderLedger,
    provider: SandboxPaymentProvider,
    *,
    user_id: str = "user-1",
    period: BillingPeriod = BillingPeriod.MONTHLY,
    store_subscription_id: bool = True,
    with_initial_transaction: bool = True,
) -> Tuple[Order, str]:
    """Create a paid membership order backed by a live sandbox subscription."""

    product_id = MONTHLY_PRODUCT if period == BillingPeriod.MONTHLY else YEARLY_PRODUCT
    checkout = provider.create_checkout(
        product_id=product_id,
        request_id="req-seed",
        customer_email="reader@example.com",
        success_url="https://app.example.com/payment/success",
        metadata={},
    )
    subscription = provider.complete_checkout(checkout.id, amount_cents=600)
    if not with_initial_transaction:
        provider.transactions.clear()
        provider.subscriptions[subscription.id] = subscription.model_copy(update={"last_transaction_id": None})

    order = ledger.create_order(
        OrderCreate(
            user_id=user_id,
            product_id="professional",
            product_name="Professional",
            amount="6.00",
            currency="USD",
            status=OrderStatus.PENDING,
            payment_provider=provider.name,
            payment_request_id="req-seed",
            payment_session_id=checkout.id,
            customer_email="reader@example.com",
            metadata=CheckoutMetadata(
                plan_id="professional",
                plan_period=period,
                subscription_id=subscription.id if store_subscription_id else None,
            ),
        )
    )
    order = ledger.update_order_status(order.id, OrderStatus.PAID, paid_at=ledger._tick())
    return order, subscription.id


@pytest.fixture
def seed_subscription(ledger, provider):
    def _seed(**kwargs: Any) -> Tuple[Order, str]:
        return seed_paid_subscription(ledger, provider, **kwargs)

    return _seed
