"""Billing domain package: checkouts, period upgrades and the order ledger."""

from .catalog import PLAN_CATALOG, PlanCatalog, ProductMapping
from .config import BillingConfig, load_billing_config
from .exceptions import (
    AuthError,
    CheckoutError,
    CheckoutFailed,
    ConfigurationError,
    ConflictError,
    PaymentProviderError,
    ProviderRequestFailed,
    ValidationError,
)
from .models import (
    BillingPeriod,
    CheckoutUser,
    MembershipStatus,
    NewCheckoutResult,
    Order,
    OrderCreate,
    OrderKind,
    OrderStatus,
)
from .protocols import MembershipStatusResolver, OrderLedger, PaymentProviderClient
from .service import CheckoutOrchestrator
from .sync import SubscriptionTransactionSync, SyncResult
from .upgrades import RetryPolicy, UpgradeOutcome, UpgradeReconciler, UpgradeResult

__all__ = [
    "AuthError",
    "BillingConfig",
    "BillingPeriod",
    "CheckoutError",
    "CheckoutFailed",
    "CheckoutOrchestrator",
    "CheckoutUser",
    "ConfigurationError",
    "ConflictError",
    "MembershipStatus",
    "MembershipStatusResolver",
    "NewCheckoutResult",
    "Order",
    "OrderCreate",
    "OrderKind",
    "OrderLedger",
    "OrderStatus",
    "PLAN_CATALOG",
    "PaymentProviderClient",
    "PaymentProviderError",
    "PlanCatalog",
    "ProductMapping",
    "ProviderRequestFailed",
    "RetryPolicy",
    "SubscriptionTransactionSync",
    "SyncResult",
    "UpgradeOutcome",
    "UpgradeReconciler",
    "UpgradeResult",
    "ValidationError",
    "load_billing_config",
]
