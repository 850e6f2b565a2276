"""Billing-period upgrade reconciliation.

An upgrade moves an active subscription to another billing period in place.
The provider prorates and charges asynchronously, so after the upgrade call
the reconciler polls the subscription, locates the proration transaction and
only then writes a ``paid`` ledger row. The upgrade call is the safety line:

* failures before or during the call are hard errors and nothing is written;
* failures after it are reported as ``upgrade_pending`` because a charge may
  already exist.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from .catalog import DEFAULT_LOCALE, ProductMapping
from .models import (
    BillingPeriod,
    MembershipStatus,
    OrderCreate,
    OrderStatus,
    Plan,
    ProviderSubscription,
    ProviderTransaction,
    SubscriptionUpgradeMetadata,
    cents_to_amount,
    timestamp_to_datetime,
)
from .protocols import OrderLedger, PaymentProviderClient, UPGRADE_BEHAVIOR_PRORATE_NOW

logger = logging.getLogger("billing.upgrade")

SUBSCRIPTION_NOT_FOUND_MESSAGE = (
    "We couldn't find your subscription with the payment provider. Please open your latest order "
    "and click “Refresh Status”, then try again."
)
UPGRADE_REQUEST_FAILED_MESSAGE = "Upgrade request failed. No charge was captured. Please try again later."
UPGRADE_PENDING_MESSAGE = (
    "Upgrade requested. The payment provider hasn't returned the proration transaction yet "
    "(or your card needs confirmation). Please check the provider's transaction history, "
    "or wait a moment and try “Refresh Status”."
)


def _linear_backoff(step_seconds: float) -> Callable[[int], float]:
    def backoff(attempt: int) -> float:
        return attempt * step_seconds

    return backoff


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded polling schedule; ``attempt`` passed to ``backoff`` is 1-based."""

    max_attempts: int = 4
    backoff: Callable[[int], float] = field(default_factory=lambda: _linear_backoff(0.45))
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def linear(cls, *, max_attempts: int, step_seconds: float, sleep: Callable[[float], None] = time.sleep) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, backoff=_linear_backoff(step_seconds), sleep=sleep)


class UpgradeOutcome(str, Enum):
    UPGRADED = "upgraded"
    CONFIRMATION_PENDING = "upgrade_pending"
    SUBSCRIPTION_NOT_FOUND = "subscription_not_found"
    UPGRADE_REQUEST_FAILED = "upgrade_request_failed"


class UpgradeAttempt(BaseModel):
    """Correlates the pieces of one billing-period change; never persisted."""

    user_id: str
    customer_email: Optional[str] = None
    source_order_id: Optional[str] = None
    source_period: Optional[BillingPeriod] = None
    target_period: BillingPeriod
    locale: str = DEFAULT_LOCALE
    subscription_id: Optional[str] = None
    target_product_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ResolveSubscriptionResult(BaseModel):
    subscription_id: Optional[str] = None
    healed: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def resolved(self) -> bool:
        return bool(self.subscription_id)


class UpgradeCallResult(BaseModel):
    accepted: bool
    target_product_id: str
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ConfirmationResult(BaseModel):
    confirmed: bool
    attempts: int
    subscription: Optional[ProviderSubscription] = None

    model_config = ConfigDict(frozen=True)


class TransactionLookupResult(BaseModel):
    transaction: Optional[ProviderTransaction] = None
    searched: bool = False

    model_config = ConfigDict(frozen=True)


class UpgradeResult(BaseModel):
    """Terminal or soft outcome of an upgrade request."""

    outcome: UpgradeOutcome
    redirect_url: Optional[str] = None
    message: Optional[str] = None
    subscription_id: Optional[str] = None
    order_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def to_payload(self) -> dict:
        if self.outcome == UpgradeOutcome.UPGRADED:
            return {"action": self.outcome.value, "redirect_url": self.redirect_url}
        return {
            "action": self.outcome.value,
            "redirect_url": self.redirect_url,
            "message": self.message,
            "subscription_id": self.subscription_id,
        }


def membership_redirect_url(locale: str) -> str:
    return "/membership" if locale == DEFAULT_LOCALE else f"/{locale}/membership"


@dataclass
class UpgradeReconciler:
    """Drives an in-place billing-period change through to a ledger entry."""

    provider: PaymentProviderClient
    ledger: OrderLedger
    product_mapping: ProductMapping
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    transaction_page_size: int = 50
    project_name: str = ""

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def upgrade(
        self,
        *,
        plan: Plan,
        membership: MembershipStatus,
        attempt: UpgradeAttempt,
    ) -> UpgradeResult:
        redirect_url = membership_redirect_url(attempt.locale)
        target_product_id = self.product_mapping.require(plan.id, attempt.target_period)

        resolved = self.resolve_subscription(membership)
        if not resolved.resolved or not membership.order_id:
            logger.info(
                "Upgrade aborted: subscription not resolvable",
                extra={"user_id": attempt.user_id, "order_id": membership.order_id},
            )
            return UpgradeResult(
                outcome=UpgradeOutcome.SUBSCRIPTION_NOT_FOUND,
                redirect_url=redirect_url,
                message=SUBSCRIPTION_NOT_FOUND_MESSAGE,
            )

        subscription_id = resolved.subscription_id
        call = self.request_upgrade(subscription_id, target_product_id=target_product_id)
        if not call.accepted:
            return UpgradeResult(
                outcome=UpgradeOutcome.UPGRADE_REQUEST_FAILED,
                redirect_url=redirect_url,
                message=UPGRADE_REQUEST_FAILED_MESSAGE,
                subscription_id=subscription_id,
            )

        attempt = attempt.model_copy(
            update={
                "subscription_id": subscription_id,
                "target_product_id": call.target_product_id,
                "source_order_id": membership.order_id,
                "source_period": membership.period,
            }
        )
        pending = UpgradeResult(
            outcome=UpgradeOutcome.CONFIRMATION_PENDING,
            redirect_url=redirect_url,
            message=UPGRADE_PENDING_MESSAGE,
            subscription_id=subscription_id,
        )

        # A charge may exist from here on; every failure degrades to pending.
        try:
            confirmation = self.poll_confirmation(subscription_id, call.target_product_id)
            if not confirmation.confirmed or confirmation.subscription is None:
                logger.info(
                    "Upgrade not confirmed after polling",
                    extra={"subscription_id": subscription_id, "attempts": confirmation.attempts},
                )
                return pending

            lookup = self.locate_transaction(confirmation.subscription)
            if lookup.transaction is None:
                logger.info(
                    "Upgrade transaction not located",
                    extra={"subscription_id": subscription_id, "searched": lookup.searched},
                )
                return pending

            order_id = self.record_ledger(plan=plan, attempt=attempt, transaction=lookup.transaction)
        except Exception as exc:
            logger.warning(
                "Upgrade succeeded but could not confirm transaction",
                extra={"subscription_id": subscription_id, "error": str(exc)},
            )
            return pending

        return UpgradeResult(
            outcome=UpgradeOutcome.UPGRADED,
            redirect_url=redirect_url,
            subscription_id=subscription_id,
            order_id=order_id,
        )

    def resolve_subscription(self, membership: MembershipStatus) -> ResolveSubscriptionResult:
        if membership.subscription_id:
            return ResolveSubscriptionResult(subscription_id=membership.subscription_id)
        if not membership.payment_session_id:
            return ResolveSubscriptionResult()

        try:
            checkout = self.provider.retrieve_checkout(membership.payment_session_id)
        except Exception as exc:
            logger.warning(
                "Checkout lookup failed while resolving subscription",
                extra={"payment_session_id": membership.payment_session_id, "error": str(exc)},
            )
            return ResolveSubscriptionResult()

        subscription_id = checkout.subscription_id
        if not subscription_id:
            return ResolveSubscriptionResult()

        healed = False
        if membership.order_id:
            try:
                self.ledger.merge_order_metadata(membership.order_id, {"subscription_id": subscription_id})
                healed = True
            except Exception as exc:
                logger.warning(
                    "Could not store resolved subscription id on order",
                    extra={"order_id": membership.order_id, "error": str(exc)},
                )
        return ResolveSubscriptionResult(subscription_id=subscription_id, healed=healed)

    def request_upgrade(self, subscription_id: str, *, target_product_id: str) -> UpgradeCallResult:
        try:
            self.provider.upgrade_subscription(
                subscription_id,
                target_product_id=target_product_id,
                update_behavior=UPGRADE_BEHAVIOR_PRORATE_NOW,
            )
        except Exception as exc:
            logger.warning(
                "Subscription upgrade request failed",
                extra={"subscription_id": subscription_id, "target_product_id": target_product_id, "error": str(exc)},
            )
            return UpgradeCallResult(accepted=False, target_product_id=target_product_id, error=str(exc))

        logger.info(
            "Subscription upgrade requested",
            extra={"subscription_id": subscription_id, "target_product_id": target_product_id},
        )
        return UpgradeCallResult(accepted=True, target_product_id=target_product_id)

    def poll_confirmation(self, subscription_id: str, target_product_id: str) -> ConfirmationResult:
        policy = self.retry_policy
        subscription: Optional[ProviderSubscription] = None
        attempts = 0
        for attempt in range(1, policy.max_attempts + 1):
            attempts = attempt
            subscription = self.provider.retrieve_subscription(subscription_id)
            has_transaction = bool(subscription.last_transaction or subscription.last_transaction_id)
            if subscription.product_id == target_product_id or has_transaction:
                break
            if attempt < policy.max_attempts:
                policy.sleep(policy.backoff(attempt))

        confirmed = subscription is not None and subscription.product_id == target_product_id
        return ConfirmationResult(confirmed=confirmed, attempts=attempts, subscription=subscription)

    def locate_transaction(self, subscription: ProviderSubscription) -> TransactionLookupResult:
        if subscription.last_transaction is not None:
            return TransactionLookupResult(transaction=subscription.last_transaction)
        if not subscription.last_transaction_id or not subscription.customer_id:
            return TransactionLookupResult()

        # Single bounded page; a miss is reported as pending rather than paginating.
        page = self.provider.search_transactions(
            customer_id=subscription.customer_id,
            page=1,
            page_size=self.transaction_page_size,
        )
        match = next((item for item in page.items if item.id == subscription.last_transaction_id), None)
        return TransactionLookupResult(transaction=match, searched=True)

    def record_ledger(self, *, plan: Plan, attempt: UpgradeAttempt, transaction: ProviderTransaction) -> str:
        pricing = plan.pricing_for(attempt.target_period)
        currency = (transaction.currency or "").strip() or (pricing.currency if pricing else "USD")
        paid_at = timestamp_to_datetime(transaction.created_at) if transaction.created_at is not None else self._now()

        order = self.ledger.create_order(
            OrderCreate(
                user_id=attempt.user_id,
                product_id=plan.id,
                product_name=plan.name,
                amount=cents_to_amount(transaction.paid_cents),
                currency=currency,
                status=OrderStatus.PAID,
                payment_provider=self.provider.name,
                payment_request_id=str(uuid4()),
                customer_email=attempt.customer_email,
                paid_at=paid_at,
                metadata=SubscriptionUpgradeMetadata(
                    locale=attempt.locale,
                    project=self.project_name or None,
                    plan_id=plan.id,
                    plan_period=attempt.target_period,
                    subscription_id=attempt.subscription_id,
                    upgrade_from_order_id=attempt.source_order_id,
                    upgrade_from_period=attempt.source_period,
                    upgrade_to_period=attempt.target_period,
                    provider_transaction_id=transaction.id,
                    provider_target_product_id=attempt.target_product_id,
                ),
            )
        )

        if attempt.source_order_id:
            self.ledger.merge_order_metadata(
                attempt.source_order_id,
                {
                    "upgrade_to_period": attempt.target_period.value,
                    "upgraded_order_id": order.id,
                    "upgraded_at": paid_at.isoformat(),
                },
            )

        logger.info(
            "Subscription upgrade recorded",
            extra={
                "order_id": order.id,
                "source_order_id": attempt.source_order_id,
                "subscription_id": attempt.subscription_id,
                "transaction_id": transaction.id,
            },
        )
        return order.id


__all__ = [
    "ConfirmationResult",
    "RetryPolicy",
    "ResolveSubscriptionResult",
    "TransactionLookupResult",
    "UpgradeAttempt",
    "UpgradeCallResult",
    "UpgradeOutcome",
    "UpgradeReconciler",
    "UpgradeResult",
    "membership_redirect_url",
]
