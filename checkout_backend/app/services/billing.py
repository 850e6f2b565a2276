"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from ..billing import (
    BillingConfig,
    CheckoutOrchestrator,
    ConfigurationError,
    OrderLedger,
    PaymentProviderClient,
    PlanCatalog,
    RetryPolicy,
    SubscriptionTransactionSync,
    UpgradeReconciler,
    load_billing_config,
)
from ..billing.creem import CreemClient
from ..billing.discounts import DiscountProvisioner
from ..billing.membership import LedgerMembershipResolver
from ..billing.repository import PostgresOrderLedger
from ..billing.sandbox import SandboxPaymentProvider
from ..credits import PostgresTokenBalanceStore, TokenBalanceStore


logger = logging.getLogger("billing")


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_order_ledger() -> OrderLedger:
    return PostgresOrderLedger()


@lru_cache(maxsize=1)
def get_payment_provider() -> PaymentProviderClient:
    config = get_billing_config()
    if config.provider_name == "creem":
        return CreemClient.from_config(config)
    if config.provider_name == "sandbox":
        logger.warning("Using the in-memory sandbox payment provider")
        return SandboxPaymentProvider()
    raise ConfigurationError(f"Unsupported PAYMENT_PROVIDER {config.provider_name!r}")


@lru_cache(maxsize=1)
def get_membership_resolver() -> LedgerMembershipResolver:
    return LedgerMembershipResolver(ledger=get_order_ledger())


def build_checkout_orchestrator(
    config: BillingConfig,
    *,
    provider: PaymentProviderClient,
    ledger: OrderLedger,
    retry_policy: Optional[RetryPolicy] = None,
) -> CheckoutOrchestrator:
    """Assemble the checkout core from configuration and its collaborators."""

    policy = retry_policy or RetryPolicy.linear(
        max_attempts=config.upgrade_poll_attempts,
        step_seconds=config.upgrade_poll_backoff_seconds,
    )
    return CheckoutOrchestrator(
        catalog=PlanCatalog(),
        product_mapping=config.product_mapping,
        provider=provider,
        ledger=ledger,
        membership_resolver=LedgerMembershipResolver(ledger=ledger),
        discount_provisioner=DiscountProvisioner(
            provider=provider,
            ledger=ledger,
            amount_off_cents=config.intro_discount_amount_cents,
            currency=config.intro_discount_currency,
            expiry_days=config.intro_discount_expiry_days,
        ),
        upgrade_reconciler=UpgradeReconciler(
            provider=provider,
            ledger=ledger,
            product_mapping=config.product_mapping,
            retry_policy=policy,
            transaction_page_size=config.transaction_page_size,
            project_name=config.project_name,
        ),
        web_base_url=config.web_base_url,
        project_name=config.project_name,
    )


@lru_cache(maxsize=1)
def get_checkout_orchestrator() -> CheckoutOrchestrator:
    config = get_billing_config()
    return build_checkout_orchestrator(config, provider=get_payment_provider(), ledger=get_order_ledger())


@lru_cache(maxsize=1)
def get_transaction_sync() -> SubscriptionTransactionSync:
    config = get_billing_config()
    return SubscriptionTransactionSync(
        provider=get_payment_provider(),
        ledger=get_order_ledger(),
        product_mapping=config.product_mapping,
        page_size=config.transaction_page_size,
    )


@lru_cache(maxsize=1)
def get_token_store() -> TokenBalanceStore:
    return PostgresTokenBalanceStore()


__all__ = [
    "build_checkout_orchestrator",
    "get_billing_config",
    "get_checkout_orchestrator",
    "get_membership_resolver",
    "get_order_ledger",
    "get_payment_provider",
    "get_token_store",
    "get_transaction_sync",
]
