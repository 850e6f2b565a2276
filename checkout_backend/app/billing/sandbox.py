"""In-memory payment provider for local development and tests."""
from __future__ import annotations

import time
from typing import Dict, List, Optional
from uuid import uuid4

from .exceptions import PaymentProviderError
from .models import (
    DiscountCode,
    ProviderCheckout,
    ProviderSubscription,
    ProviderTransaction,
    TransactionPage,
)
from .protocols import UPGRADE_BEHAVIOR_PRORATE_NOW


class SandboxPaymentProvider:
    """Minimal stateful provider mimicking hosted checkout and subscriptions.

    Checkouts stay open until :meth:`complete_checkout` is called, which
    creates the subscription and its first transaction. Upgrades switch the
    subscription product after ``confirmation_delay`` lookups and record a
    proration charge priced from ``proration_cents``.
    """

    name = "sandbox"

    def __init__(
        self,
        *,
        base_url: str = "https://billing.local",
        proration_cents: Optional[Dict[str, int]] = None,
        confirmation_delay: int = 0,
        embed_last_transaction: bool = True,
        currency: str = "USD",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.proration_cents = dict(proration_cents or {})
        self.confirmation_delay = confirmation_delay
        self.embed_last_transaction = embed_last_transaction
        self.currency = currency
        self.checkouts: Dict[str, ProviderCheckout] = {}
        self.checkout_requests: Dict[str, dict] = {}
        self.subscriptions: Dict[str, ProviderSubscription] = {}
        self.transactions: Dict[str, List[ProviderTransaction]] = {}
        self.discounts: List[DiscountCode] = []
        self.upgrade_calls: List[dict] = []
        self.failures: Dict[str, Exception] = {}
        self._pending_upgrades: Dict[str, dict] = {}

    def fail(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make every call of ``operation`` raise until :meth:`recover` is called."""

        self.failures[operation] = error or PaymentProviderError(f"sandbox {operation} failure", status_code=500)

    def recover(self, operation: str) -> None:
        self.failures.pop(operation, None)

    def _check(self, operation: str) -> None:
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def _record_transaction(self, *, customer_id: str, subscription_id: str, amount_cents: int) -> ProviderTransaction:
        transaction = ProviderTransaction(
            id=f"tran_{uuid4().hex[:12]}",
            amount=amount_cents,
            amount_paid=amount_cents,
            currency=self.currency,
            created_at=int(time.time() * 1000),
            subscription_id=subscription_id,
        )
        self.transactions.setdefault(customer_id, []).insert(0, transaction)
        return transaction

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
        self._check("create_checkout")
        session_id = f"ch_{uuid4().hex}"
        checkout = ProviderCheckout(id=session_id, checkout_url=f"{self.base_url}/checkout/{session_id}")
        self.checkouts[session_id] = checkout
        self.checkout_requests[session_id] = {
            "product_id": product_id,
            "request_id": request_id,
            "customer_email": customer_email,
            "success_url": success_url,
            "metadata": dict(metadata),
            "discount_code": discount_code,
        }
        return checkout

    def complete_checkout(self, checkout_id: str, *, amount_cents: int) -> ProviderSubscription:
        """Simulate the customer paying for a checkout."""

        request = self.checkout_requests[checkout_id]
        customer_id = f"cust_{uuid4().hex[:12]}"
        subscription_id = f"sub_{uuid4().hex[:12]}"
        transaction = self._record_transaction(
            customer_id=customer_id,
            subscription_id=subscription_id,
            amount_cents=amount_cents,
        )
        subscription = ProviderSubscription(
            id=subscription_id,
            product_id=request["product_id"],
            customer_id=customer_id,
            last_transaction_id=transaction.id,
        )
        self.subscriptions[subscription_id] = subscription
        self.checkouts[checkout_id] = self.checkouts[checkout_id].model_copy(update={"subscription_id": subscription_id})
        return subscription

    def retrieve_checkout(self, checkout_id: str) -> ProviderCheckout:
        self._check("retrieve_checkout")
        checkout = self.checkouts.get(checkout_id)
        if checkout is None:
            raise PaymentProviderError(f"checkout {checkout_id} not found", status_code=404)
        return checkout

    def upgrade_subscription(
        self,
        subscription_id: str,
        *,
        target_product_id: str,
        update_behavior: str = UPGRADE_BEHAVIOR_PRORATE_NOW,
    ) -> None:
        self._check("upgrade_subscription")
        if subscription_id not in self.subscriptions:
            raise PaymentProviderError(f"subscription {subscription_id} not found", status_code=404)
        self.upgrade_calls.append(
            {
                "subscription_id": subscription_id,
                "target_product_id": target_product_id,
                "update_behavior": update_behavior,
            }
        )
        self._pending_upgrades[subscription_id] = {
            "target_product_id": target_product_id,
            "remaining": self.confirmation_delay,
        }
        if self.confirmation_delay <= 0:
            self._apply_upgrade(subscription_id)

    def _apply_upgrade(self, subscription_id: str) -> None:
        pending = self._pending_upgrades.pop(subscription_id)
        subscription = self.subscriptions[subscription_id]
        target = pending["target_product_id"]
        transaction = self._record_transaction(
            customer_id=subscription.customer_id or "",
            subscription_id=subscription_id,
            amount_cents=self.proration_cents.get(target, 0),
        )
        self.subscriptions[subscription_id] = subscription.model_copy(
            update={"product_id": target, "last_transaction_id": transaction.id}
        )

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        self._check("retrieve_subscription")
        pending = self._pending_upgrades.get(subscription_id)
        if pending is not None:
            pending["remaining"] -= 1
            if pending["remaining"] <= 0:
                self._apply_upgrade(subscription_id)

        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            raise PaymentProviderError(f"subscription {subscription_id} not found", status_code=404)
        if self.embed_last_transaction and subscription.last_transaction_id:
            embedded = next(
                (
                    item
                    for item in self.transactions.get(subscription.customer_id or "", [])
                    if item.id == subscription.last_transaction_id
                ),
                None,
            )
            return subscription.model_copy(update={"last_transaction": embedded})
        return subscription

    def search_transactions(self, *, customer_id: str, page: int, page_size: int) -> TransactionPage:
        self._check("search_transactions")
        items = self.transactions.get(customer_id, [])
        start = max(0, page - 1) * page_size
        return TransactionPage(items=items[start:start + page_size])

    def create_discount(self, discount: DiscountCode, *, name: str) -> None:
        self._check("create_discount")
        self.discounts.append(discount)


__all__ = ["SandboxPaymentProvider"]
