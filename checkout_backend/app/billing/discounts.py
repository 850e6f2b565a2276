"""Best-effort provisioning of single-use intro discount codes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from .models import BillingPeriod, DiscountCode, SUBSCRIPTION_PRODUCT_ID
from .protocols import OrderLedger, PaymentProviderClient

logger = logging.getLogger("billing.discounts")

INTRO_CODE_PREFIX = "PRO4"


def generate_intro_code(prefix: str = INTRO_CODE_PREFIX) -> str:
    return f"{prefix}-{uuid4().hex[:8].upper()}"


@dataclass
class DiscountProvisioner:
    """Creates a fixed-amount intro discount for first-time monthly subscribers.

    Discount issuance never blocks a purchase: any provider failure yields
    ``None`` and the checkout continues at list price.
    """

    provider: PaymentProviderClient
    ledger: OrderLedger
    amount_off_cents: int = 200
    currency: str = "USD"
    expiry_days: int = 30
    product_id: str = SUBSCRIPTION_PRODUCT_ID

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def is_eligible(self, *, user_id: str, product_id: str, period: BillingPeriod, currency: str) -> bool:
        if self.amount_off_cents <= 0:
            return False
        if product_id != self.product_id or period != BillingPeriod.MONTHLY:
            return False
        if currency.upper() != self.currency.upper():
            return False
        return not self.ledger.has_paid_order(user_id, product_id)

    def provision(
        self,
        *,
        user_id: str,
        product_id: str,
        period: BillingPeriod,
        currency: str,
        provider_product_id: str,
    ) -> Optional[DiscountCode]:
        if not self.is_eligible(user_id=user_id, product_id=product_id, period=period, currency=currency):
            return None

        discount = DiscountCode(
            code=generate_intro_code(),
            amount_off_cents=self.amount_off_cents,
            currency=self.currency.upper(),
            applies_to_product_id=provider_product_id,
            expires_at=self._now() + timedelta(days=self.expiry_days),
        )
        dollars_off = self.amount_off_cents / 100
        name = f"Professional intro (${dollars_off:g} off) - {user_id}"
        try:
            self.provider.create_discount(discount, name=name)
        except Exception as exc:
            logger.warning(
                "Intro discount creation failed; falling back to list price",
                extra={"user_id": user_id, "discount_code": discount.code, "error": str(exc)},
            )
            return None

        logger.info(
            "Intro discount provisioned",
            extra={"user_id": user_id, "discount_code": discount.code, "provider_product_id": provider_product_id},
        )
        return discount


__all__ = ["DiscountProvisioner", "generate_intro_code", "INTRO_CODE_PREFIX"]
