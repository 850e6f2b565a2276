"""Billing configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .catalog import ProductMapping
from .exceptions import ConfigurationError

CREEM_LIVE_API_URL = "https://api.creem.io"
CREEM_TEST_API_URL = "https://test-api.creem.io"


@dataclass(frozen=True)
class BillingConfig:
    """Settings injected into the checkout orchestrator and provider client."""

    provider_name: str
    creem_api_key: str
    creem_api_url: str
    creem_timeout_seconds: float
    product_mapping: ProductMapping
    web_base_url: str
    project_name: str
    transaction_page_size: int
    upgrade_poll_attempts: int
    upgrade_poll_backoff_seconds: float
    intro_discount_amount_cents: int
    intro_discount_currency: str
    intro_discount_expiry_days: int


def _to_int(env: Mapping[str, str], name: str, *, default: int) -> int:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer (got {value!r})") from exc


def _to_float(env: Mapping[str, str], name: str, *, default: float) -> float:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number (got {value!r})") from exc


def _default_creem_url(api_key: str) -> str:
    if api_key.startswith("creem_test_"):
        return CREEM_TEST_API_URL
    return CREEM_LIVE_API_URL


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("PAYMENT_PROVIDER") or env_mapping.get("PAY_PROVIDER") or "creem").strip().lower()
    api_key = (env_mapping.get("CREEM_API_KEY") or "").strip()
    api_url = (env_mapping.get("CREEM_API_URL") or "").strip() or _default_creem_url(api_key)

    web_base_url = (
        env_mapping.get("NEXT_PUBLIC_WEB_URL")
        or env_mapping.get("WEB_BASE_URL")
        or "http://localhost:3000"
    )

    return BillingConfig(
        provider_name=provider_name or "creem",
        creem_api_key=api_key,
        creem_api_url=api_url.rstrip("/"),
        creem_timeout_seconds=max(1.0, _to_float(env_mapping, "CREEM_TIMEOUT_SECONDS", default=30.0)),
        product_mapping=ProductMapping.parse(env_mapping.get("CREEM_PRODUCTS")),
        web_base_url=web_base_url.rstrip("/"),
        project_name=env_mapping.get("PROJECT_NAME") or env_mapping.get("NEXT_PUBLIC_PROJECT_NAME") or "",
        transaction_page_size=max(1, _to_int(env_mapping, "CREEM_TRANSACTION_PAGE_SIZE", default=50)),
        upgrade_poll_attempts=max(1, _to_int(env_mapping, "UPGRADE_POLL_ATTEMPTS", default=4)),
        upgrade_poll_backoff_seconds=max(
            0.0, _to_float(env_mapping, "UPGRADE_POLL_BACKOFF_SECONDS", default=0.45)
        ),
        intro_discount_amount_cents=max(0, _to_int(env_mapping, "INTRO_DISCOUNT_AMOUNT_CENTS", default=200)),
        intro_discount_currency=(env_mapping.get("INTRO_DISCOUNT_CURRENCY") or "USD").upper(),
        intro_discount_expiry_days=max(1, _to_int(env_mapping, "INTRO_DISCOUNT_EXPIRY_DAYS", default=30)),
    )


__all__ = ["BillingConfig", "load_billing_config", "CREEM_LIVE_API_URL", "CREEM_TEST_API_URL"]
