"""Core service coordinating checkouts and billing-period changes."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from .catalog import DEFAULT_LOCALE, PlanCatalog, ProductMapping, normalize_locale, normalize_period
from .discounts import DiscountProvisioner
from .exceptions import (
    AuthError,
    CheckoutError,
    CheckoutFailed,
    ConfigurationError,
    ConflictError,
    ProviderRequestFailed,
    ValidationError,
)
from .models import (
    BillingPeriod,
    CheckoutMetadata,
    CheckoutUser,
    DiscountCode,
    IntroDiscountApplied,
    MembershipStatus,
    NewCheckoutResult,
    Order,
    OrderCreate,
    OrderStatus,
    Plan,
    format_amount,
)
from .protocols import MembershipStatusResolver, OrderLedger, PaymentProviderClient
from .upgrades import UpgradeAttempt, UpgradeOutcome, UpgradeReconciler, UpgradeResult

logger = logging.getLogger("billing")

# ``slots`` support for ``dataclass`` was added in Python 3.10.
_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


def already_active_message(period: BillingPeriod) -> str:
    return f"Your Professional membership is already active ({period.value})."


def payment_success_url(base_url: str, locale: str) -> str:
    path = "/payment/success" if locale == DEFAULT_LOCALE else f"/{locale}/payment/success"
    return f"{base_url.rstrip('/')}{path}"


@dataclass(**_dataclass_kwargs)
class CheckoutOrchestrator:
    """Decides between a new checkout and an in-place period change."""

    catalog: PlanCatalog
    product_mapping: ProductMapping
    provider: PaymentProviderClient
    ledger: OrderLedger
    membership_resolver: MembershipStatusResolver
    discount_provisioner: DiscountProvisioner
    upgrade_reconciler: UpgradeReconciler
    web_base_url: str = "http://localhost:3000"
    project_name: str = ""

    def handle_checkout(
        self,
        *,
        product_id: Optional[str],
        period: Any = None,
        locale: Any = None,
        intro_discount_requested: bool = True,
        user: Optional[CheckoutUser] = None,
    ) -> Union[NewCheckoutResult, UpgradeResult]:
        """Start a checkout or change the billing period of an active membership.

        Raises a :class:`CheckoutError` subclass for every failure; provider
        and configuration problems are converted here so nothing else escapes.
        """

        if not product_id:
            raise ValidationError("invalid params: product_id")
        plan = self.catalog.get_plan(product_id)
        if plan is None:
            raise ValidationError("invalid product_id")
        if user is None or not user.id or not user.email:
            raise AuthError()

        checkout_locale = normalize_locale(locale)
        requested_period = normalize_period(period)

        try:
            if self.catalog.is_subscription_plan(plan.id):
                membership = self.membership_resolver.resolve(user.id)
                if membership.is_paid:
                    if membership.period is None or membership.period == requested_period:
                        raise ConflictError(already_active_message(requested_period))
                    return self._change_period(
                        plan=plan,
                        user=user,
                        locale=checkout_locale,
                        requested_period=requested_period,
                        membership=membership,
                    )

            return self._new_checkout(
                plan=plan,
                user=user,
                locale=checkout_locale,
                period=requested_period,
                intro_discount_requested=intro_discount_requested,
            )
        except CheckoutError:
            raise
        except ConfigurationError as exc:
            logger.error("Checkout configuration error", extra={"product_id": product_id, "error": str(exc)})
            raise CheckoutFailed(str(exc)) from exc
        except Exception as exc:
            logger.exception("Checkout failed", extra={"product_id": product_id, "user_id": user.id})
            raise CheckoutFailed(str(exc)) from exc

    def _change_period(
        self,
        *,
        plan: Plan,
        user: CheckoutUser,
        locale: str,
        requested_period: BillingPeriod,
        membership: MembershipStatus,
    ) -> UpgradeResult:
        result = self.upgrade_reconciler.upgrade(
            plan=plan,
            membership=membership,
            attempt=UpgradeAttempt(
                user_id=user.id,
                customer_email=user.email,
                target_period=requested_period,
                locale=locale,
            ),
        )
        if result.outcome == UpgradeOutcome.SUBSCRIPTION_NOT_FOUND:
            raise ConflictError(result.message or "Subscription not found.")
        if result.outcome == UpgradeOutcome.UPGRADE_REQUEST_FAILED:
            raise ProviderRequestFailed(result.message or "Upgrade request failed.")
        return result

    def _new_checkout(
        self,
        *,
        plan: Plan,
        user: CheckoutUser,
        locale: str,
        period: BillingPeriod,
        intro_discount_requested: bool,
    ) -> NewCheckoutResult:
        pricing = plan.pricing_for(period)
        if pricing is None:
            raise ValidationError("invalid pricing config")

        provider_product_id = self.product_mapping.require(plan.id, period)
        request_id = str(uuid4())

        discount: Optional[DiscountCode] = None
        if intro_discount_requested:
            discount = self.discount_provisioner.provision(
                user_id=user.id,
                product_id=plan.id,
                period=period,
                currency=pricing.currency,
                provider_product_id=provider_product_id,
            )

        amount = pricing.amount
        intro_discount: Optional[IntroDiscountApplied] = None
        if discount is not None:
            amount = max(Decimal("0"), pricing.amount - Decimal(discount.amount_off_cents) / 100)
            intro_discount = IntroDiscountApplied(
                code=discount.code,
                currency=discount.currency,
                amount_off_cents=discount.amount_off_cents,
                list_price=format_amount(pricing.amount),
            )

        order = self.ledger.create_order(
            OrderCreate(
                user_id=user.id,
                product_id=plan.id,
                product_name=plan.name,
                amount=format_amount(amount),
                currency=pricing.currency,
                status=OrderStatus.PENDING,
                payment_provider=self.provider.name,
                payment_request_id=request_id,
                customer_email=user.email,
                metadata=CheckoutMetadata(
                    locale=locale,
                    pricing_locale=DEFAULT_LOCALE,
                    project=self.project_name or None,
                    plan_id=plan.id,
                    plan_period=period,
                    intro_discount=intro_discount,
                ),
            )
        )
        logger.info(
            "Checkout order created",
            extra={"order_id": order.id, "product_id": plan.id, "amount": order.amount, "request_id": request_id},
        )

        session = self.provider.create_checkout(
            product_id=provider_product_id,
            request_id=request_id,
            customer_email=user.email or "",
            success_url=payment_success_url(self.web_base_url, locale),
            discount_code=discount.code if discount else None,
            metadata=self._checkout_metadata(order=order, plan=plan, period=period, user=user, locale=locale, discount=discount),
        )

        self.ledger.update_order_status(order.id, OrderStatus.PENDING, payment_session_id=session.id)
        logger.info(
            "Checkout session attached",
            extra={"order_id": order.id, "payment_request_id": request_id, "payment_session_id": session.id},
        )
        return NewCheckoutResult(
            request_id=request_id,
            session_id=session.id,
            checkout_url=session.checkout_url,
            order_id=order.id,
        )

    def _checkout_metadata(
        self,
        *,
        order: Order,
        plan: Plan,
        period: BillingPeriod,
        user: CheckoutUser,
        locale: str,
        discount: Optional[DiscountCode],
    ) -> Dict[str, str]:
        metadata = {
            "locale": locale,
            "project": self.project_name,
            "user_id": user.id,
            "user_email": user.email or "",
            "product_name": plan.name,
            "plan_id": plan.id,
            "plan_period": period.value,
            "order_id": order.id,
            "order_number": order.order_number,
        }
        if discount is not None:
            metadata["intro_discount_code"] = discount.code
        return metadata


__all__ = ["CheckoutOrchestrator", "already_active_message", "payment_success_url"]
