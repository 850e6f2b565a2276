"""Static plan catalog and provider product mappings."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ConfigurationError
from .models import BillingPeriod, Plan, Pricing, SUBSCRIPTION_PRODUCT_ID

DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES: Tuple[str, ...] = ("en", "zh", "ja", "es", "ar", "id", "pt", "fr", "ru", "de")


def _usd(amount: str) -> Pricing:
    return Pricing(amount=Decimal(amount), currency="USD")


PLAN_CATALOG: Dict[str, Plan] = {
    "free": Plan(
        id="free",
        name="Free",
        pricing={
            "one-time": _usd("0"),
            BillingPeriod.MONTHLY.value: _usd("0"),
            BillingPeriod.YEARLY.value: _usd("0"),
        },
    ),
    SUBSCRIPTION_PRODUCT_ID: Plan(
        id=SUBSCRIPTION_PRODUCT_ID,
        name="Professional",
        pricing={
            "one-time": _usd("49"),
            BillingPeriod.MONTHLY.value: _usd("6"),
            BillingPeriod.YEARLY.value: _usd("58"),
        },
    ),
}


@dataclass(frozen=True)
class PlanCatalog:
    """Lookup of purchasable plans keyed by product id."""

    plans: Mapping[str, Plan] = field(default_factory=lambda: dict(PLAN_CATALOG))
    subscription_product_id: str = SUBSCRIPTION_PRODUCT_ID

    def get_plan(self, product_id: str) -> Optional[Plan]:
        return self.plans.get(product_id)

    def is_subscription_plan(self, product_id: str) -> bool:
        return product_id == self.subscription_product_id


def normalize_period(value: Any) -> BillingPeriod:
    """Coerce user input to a supported period, defaulting to monthly."""

    if isinstance(value, BillingPeriod):
        return value
    if isinstance(value, str):
        try:
            return BillingPeriod(value)
        except ValueError:
            pass
    return BillingPeriod.MONTHLY


def normalize_locale(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_LOCALE
    candidate = value.strip()
    return candidate if candidate in SUPPORTED_LOCALES else DEFAULT_LOCALE


def _strip_wrapping_quotes(value: str) -> str:
    trimmed = value.strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in {'"', "'"}:
        return trimmed[1:-1]
    return trimmed


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class ProductMapping:
    """Maps ``(product key, period)`` pairs to provider product ids.

    Accepted layouts: ``"key:period"``, ``"key_period"``, ``"key-period"`` and
    nested ``{"key": {"period": id}}``.
    """

    entries: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ProductMapping":
        if raw is None or str(raw).strip() == "":
            return cls()
        text = _strip_wrapping_quotes(str(raw))
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"CREEM_PRODUCTS must be valid JSON (got parse error: {exc})") from exc
        if not isinstance(parsed, dict):
            return cls()
        return cls(entries=parsed)

    def configured_keys(self) -> Tuple[str, ...]:
        return tuple(sorted(self.entries))

    def resolve(self, product_key: str, period: BillingPeriod) -> Optional[str]:
        period_value = period.value if isinstance(period, BillingPeriod) else str(period)
        for key in (
            f"{product_key}:{period_value}",
            f"{product_key}_{period_value}",
            f"{product_key}-{period_value}",
        ):
            value = _clean(self.entries.get(key))
            if value:
                return value

        nested = self.entries.get(product_key)
        if isinstance(nested, dict):
            return _clean(nested.get(period_value))
        return None

    def require(self, product_key: str, period: BillingPeriod) -> str:
        """Resolve a provider product id or fail with a diagnosable message."""

        resolved = self.resolve(product_key, period)
        if resolved:
            return resolved

        period_value = period.value if isinstance(period, BillingPeriod) else str(period)
        attempted = f"{product_key}:{period_value}"
        keys = self.configured_keys()
        listed = ", ".join(keys) if keys else "(none)"
        raise ConfigurationError(
            f"CREEM_PRODUCTS missing mapping for {attempted}. Configured keys: {listed}",
            attempted_key=attempted,
            configured_keys=keys,
        )

    def period_for(self, product_key: str, provider_product_id: Optional[str]) -> Optional[BillingPeriod]:
        """Inverse lookup: which period a provider product id belongs to."""

        if not provider_product_id:
            return None
        for period in (BillingPeriod.YEARLY, BillingPeriod.MONTHLY):
            if self.resolve(product_key, period) == provider_product_id:
                return period
        return None


__all__ = [
    "DEFAULT_LOCALE",
    "PLAN_CATALOG",
    "PlanCatalog",
    "ProductMapping",
    "SUPPORTED_LOCALES",
    "normalize_locale",
    "normalize_period",
]
