"""Reconcile provider subscription transactions with ledger orders.

Backs the "refresh status" action: renewals and proration charges the
provider recorded but the ledger never saw become ``paid`` orders, and older
paid orders without a transaction reference get one matched by amount and
time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from .catalog import ProductMapping
from .models import (
    BillingPeriod,
    Order,
    OrderCreate,
    OrderStatus,
    ProviderTransaction,
    SUBSCRIPTION_PRODUCT_ID,
    SUBSCRIPTION_PRODUCT_TYPE,
    SubscriptionTransactionMetadata,
    cents_to_amount,
    timestamp_to_datetime,
)
from .protocols import OrderLedger, PaymentProviderClient

logger = logging.getLogger("billing.sync")

MATCH_AMOUNT_TOLERANCE_CENTS = 1
MATCH_TIME_WINDOW = timedelta(hours=6)
NEW_TRANSACTION_GRACE = timedelta(seconds=60)
# Older rows stored the provider transaction under these keys.
_LEGACY_TRANSACTION_KEYS = ("creem_transaction_id", "transaction_id", "lastTransactionId")


class SyncResult(BaseModel):
    subscription_id: Optional[str] = None
    backfilled: int = 0
    created: int = 0

    model_config = ConfigDict(frozen=True)


def subscription_id_of(order: Order) -> Optional[str]:
    value = getattr(order.metadata, "subscription_id", None)
    if value:
        return value
    legacy = order.metadata.extensions.get("subscriptionId")
    return legacy if isinstance(legacy, str) and legacy.strip() else None


def transaction_id_of(order: Order) -> Optional[str]:
    value = getattr(order.metadata, "provider_transaction_id", None)
    if value:
        return value
    for key in _LEGACY_TRANSACTION_KEYS:
        legacy = order.metadata.extensions.get(key)
        if isinstance(legacy, str) and legacy.strip():
            return legacy.strip()
    return None


def _amount_to_cents(amount: str) -> Optional[int]:
    try:
        return int((Decimal(amount) * 100).to_integral_value())
    except (InvalidOperation, ValueError):
        return None


def _settled_at(order: Order) -> datetime:
    return order.paid_at or order.created_at


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass
class SubscriptionTransactionSync:
    provider: PaymentProviderClient
    ledger: OrderLedger
    product_mapping: ProductMapping
    page_size: int = 50
    product_id: str = SUBSCRIPTION_PRODUCT_ID

    def sync_for_order(self, *, user_id: str, order: Order) -> SyncResult:
        """Refresh the subscription behind ``order`` and record missing charges."""

        if (
            order.user_id != user_id
            or order.status != OrderStatus.PAID
            or order.payment_provider != self.provider.name
            or order.product_id != self.product_id
            or order.product_type != SUBSCRIPTION_PRODUCT_TYPE
        ):
            return SyncResult(subscription_id=subscription_id_of(order))

        subscription_id = subscription_id_of(order)
        if not subscription_id and order.payment_session_id:
            checkout = self.provider.retrieve_checkout(order.payment_session_id)
            if checkout.subscription_id:
                subscription_id = checkout.subscription_id
                self.ledger.merge_order_metadata(order.id, {"subscription_id": subscription_id})
        if not subscription_id:
            return SyncResult()

        subscription = self.provider.retrieve_subscription(subscription_id)
        if not subscription.customer_id:
            return SyncResult(subscription_id=subscription_id)

        period = self.product_mapping.period_for(self.product_id, subscription.product_id)
        if period is None:
            period = getattr(order.metadata, "plan_period", None)

        page = self.provider.search_transactions(
            customer_id=subscription.customer_id,
            page=1,
            page_size=self.page_size,
        )
        transactions = sorted(
            (item for item in page.items if item.id and item.subscription_id == subscription_id),
            key=lambda item: item.created_at or 0,
            reverse=True,
        )
        if not transactions:
            return SyncResult(subscription_id=subscription_id)

        related = [
            candidate
            for candidate in self.ledger.list_orders_for_product(user_id, self.product_id)
            if candidate.status == OrderStatus.PAID and subscription_id_of(candidate) == subscription_id
        ]

        known: Set[str] = set()
        missing: List[Order] = []
        for candidate in related:
            transaction_id = transaction_id_of(candidate)
            if transaction_id:
                known.add(transaction_id)
            else:
                missing.append(candidate)

        backfilled = self._backfill(missing, transactions, known, subscription_id)
        created = self._create_unseen(
            source=order,
            related=related,
            transactions=transactions,
            known=known,
            subscription_id=subscription_id,
            period=period,
        )

        logger.info(
            "Subscription transactions synced",
            extra={
                "order_id": order.id,
                "subscription_id": subscription_id,
                "backfilled": backfilled,
                "created": created,
            },
        )
        return SyncResult(subscription_id=subscription_id, backfilled=backfilled, created=created)

    def _backfill(
        self,
        orders: List[Order],
        transactions: List[ProviderTransaction],
        known: Set[str],
        subscription_id: str,
    ) -> int:
        backfilled = 0
        for order in orders:
            cents = _amount_to_cents(order.amount)
            if not cents:
                continue
            settled = _aware(_settled_at(order))

            best: Optional[ProviderTransaction] = None
            best_diff: Optional[timedelta] = None
            for transaction in transactions:
                if transaction.id in known:
                    continue
                if transaction.currency and transaction.currency.upper() != order.currency:
                    continue
                if abs(transaction.paid_cents - cents) > MATCH_AMOUNT_TOLERANCE_CENTS:
                    continue
                diff = abs(timestamp_to_datetime(transaction.created_at) - settled)
                if diff > MATCH_TIME_WINDOW:
                    continue
                if best_diff is None or diff < best_diff:
                    best, best_diff = transaction, diff

            if best is not None:
                self.ledger.merge_order_metadata(
                    order.id,
                    {"provider_transaction_id": best.id, "subscription_id": subscription_id},
                )
                known.add(best.id)
                backfilled += 1
        return backfilled

    def _create_unseen(
        self,
        *,
        source: Order,
        related: List[Order],
        transactions: List[ProviderTransaction],
        known: Set[str],
        subscription_id: str,
        period: Optional[BillingPeriod],
    ) -> int:
        latest: Optional[datetime] = None
        for order in related:
            settled = _aware(_settled_at(order))
            if latest is None or settled > latest:
                latest = settled

        budget = max(0, len(transactions) - len(related))
        created = 0
        for transaction in transactions:
            if created >= budget:
                break
            if transaction.id in known:
                continue
            charged_at = timestamp_to_datetime(transaction.created_at)
            if latest is not None and charged_at <= latest + NEW_TRANSACTION_GRACE:
                continue

            plan_id = getattr(source.metadata, "plan_id", None) or self.product_id
            new_order = self.ledger.create_order(
                OrderCreate(
                    user_id=source.user_id,
                    product_id=self.product_id,
                    product_name=source.product_name,
                    product_type=SUBSCRIPTION_PRODUCT_TYPE,
                    amount=cents_to_amount(transaction.paid_cents),
                    currency=(transaction.currency or "").strip() or "USD",
                    status=OrderStatus.PENDING,
                    payment_provider=self.provider.name,
                    customer_email=source.customer_email,
                    metadata=SubscriptionTransactionMetadata(
                        plan_id=plan_id,
                        plan_period=period,
                        subscription_id=subscription_id,
                        provider_transaction_id=transaction.id,
                    ),
                )
            )
            self.ledger.update_order_status(
                new_order.id,
                OrderStatus.PAID,
                payment_request_id=str(uuid4()),
                paid_at=charged_at,
            )
            known.add(transaction.id)
            created += 1
        return created


__all__ = ["SubscriptionTransactionSync", "SyncResult", "subscription_id_of", "transaction_id_of"]
