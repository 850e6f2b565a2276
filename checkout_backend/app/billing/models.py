"""Domain models for orders, memberships, and provider payloads."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUBSCRIPTION_PRODUCT_ID = "professional"
SUBSCRIPTION_PRODUCT_TYPE = "subscription"

_AMOUNT_PATTERN = re.compile(r"^\d+\.\d{2}$")
_CENT = Decimal("0.01")


class BillingPeriod(str, Enum):
    """Billing frequencies a subscription can be purchased with."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class OrderStatus(str, Enum):
    """Lifecycle status of a ledger order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderKind(str, Enum):
    """Discriminator for order metadata variants."""

    CHECKOUT = "checkout"
    SUBSCRIPTION_UPGRADE = "subscription_upgrade"
    SUBSCRIPTION_TRANSACTION = "subscription_transaction"
    REFUND = "refund"


ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


class InvalidOrderTransition(ValueError):
    """Raised when an order status update would move backwards."""

    def __init__(self, order_id: str, current: OrderStatus, requested: OrderStatus) -> None:
        super().__init__(f"Order {order_id} cannot move from {current.value} to {requested.value}")
        self.order_id = order_id
        self.current = current
        self.requested = requested


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    """Return ``True`` when ``current -> requested`` keeps statuses monotonic.

    Re-applying the current status is allowed so that extra fields (session
    ids, request ids) can be attached without changing the lifecycle.
    """

    return current == requested or requested in ALLOWED_TRANSITIONS[current]


def predecessors_of(status: OrderStatus) -> List[OrderStatus]:
    """Statuses from which ``status`` may be reached, including itself."""

    return [current for current in OrderStatus if can_transition(current, status)]


def format_amount(value: Union[Decimal, int, float, str]) -> str:
    """Render an amount with currency-minor-unit precision."""

    return str(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def cents_to_amount(cents: Optional[int]) -> str:
    return format_amount(Decimal(int(cents or 0)) / 100)


def timestamp_to_datetime(value: Optional[Union[int, float]]) -> datetime:
    """Convert a provider timestamp to an aware datetime.

    Values below 10^12 are treated as seconds, larger values as milliseconds.
    """

    if value is None:
        return datetime.now(timezone.utc)
    seconds = value if value < 1_000_000_000_000 else value / 1000
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class Pricing(BaseModel):
    """List price for one plan and billing period."""

    amount: Decimal = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)

    model_config = ConfigDict(frozen=True)


class Plan(BaseModel):
    """A purchasable plan with its per-period pricing."""

    id: str
    name: str
    pricing: Dict[str, Pricing]

    model_config = ConfigDict(frozen=True)

    def pricing_for(self, period: BillingPeriod) -> Optional[Pricing]:
        return self.pricing.get(period.value)


class IntroDiscountApplied(BaseModel):
    code: str
    currency: str
    amount_off_cents: int
    list_price: str
    applied: bool = True

    model_config = ConfigDict(frozen=True)


class _MetadataBase(BaseModel):
    extensions: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


class CheckoutMetadata(_MetadataBase):
    """Metadata of an order created by a new checkout."""

    kind: Literal["checkout"] = "checkout"
    locale: Optional[str] = None
    pricing_locale: Optional[str] = None
    project: Optional[str] = None
    plan_id: Optional[str] = None
    plan_period: Optional[BillingPeriod] = None
    subscription_id: Optional[str] = None
    intro_discount: Optional[IntroDiscountApplied] = None
    provider_transaction_id: Optional[str] = None
    upgrade_to_period: Optional[BillingPeriod] = None
    upgraded_order_id: Optional[str] = None
    upgraded_at: Optional[str] = None


class SubscriptionUpgradeMetadata(_MetadataBase):
    """Metadata of an order recording a confirmed billing-period change."""

    kind: Literal["subscription_upgrade"] = "subscription_upgrade"
    locale: Optional[str] = None
    project: Optional[str] = None
    plan_id: Optional[str] = None
    plan_period: Optional[BillingPeriod] = None
    subscription_id: Optional[str] = None
    upgrade_from_order_id: Optional[str] = None
    upgrade_from_period: Optional[BillingPeriod] = None
    upgrade_to_period: Optional[BillingPeriod] = None
    provider_transaction_id: Optional[str] = None
    provider_target_product_id: Optional[str] = None
    upgraded_order_id: Optional[str] = None
    upgraded_at: Optional[str] = None


class SubscriptionTransactionMetadata(_MetadataBase):
    """Metadata of a renewal or proration recorded by the status refresh."""

    kind: Literal["subscription_transaction"] = "subscription_transaction"
    plan_id: Optional[str] = None
    plan_period: Optional[BillingPeriod] = None
    subscription_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    upgrade_to_period: Optional[BillingPeriod] = None
    upgraded_order_id: Optional[str] = None
    upgraded_at: Optional[str] = None


class RefundMetadata(_MetadataBase):
    kind: Literal["refund"] = "refund"
    refunded_order_id: Optional[str] = None
    reason: Optional[str] = None


OrderMetadata = Union[
    CheckoutMetadata,
    SubscriptionUpgradeMetadata,
    SubscriptionTransactionMetadata,
    RefundMetadata,
]

_METADATA_BY_KIND: Dict[str, Type[_MetadataBase]] = {
    OrderKind.CHECKOUT.value: CheckoutMetadata,
    OrderKind.SUBSCRIPTION_UPGRADE.value: SubscriptionUpgradeMetadata,
    OrderKind.SUBSCRIPTION_TRANSACTION.value: SubscriptionTransactionMetadata,
    OrderKind.REFUND.value: RefundMetadata,
}


def metadata_from_mapping(raw: Optional[Mapping[str, Any]]) -> OrderMetadata:
    """Build the typed metadata variant for a stored mapping.

    Keys the variant does not know are preserved under ``extensions``.
    """

    data = dict(raw or {})
    stored_extensions = data.pop("extensions", None)
    kind = str(data.get("kind") or OrderKind.CHECKOUT.value)
    model = _METADATA_BY_KIND.get(kind)
    if model is None:
        model = CheckoutMetadata
        data.pop("kind", None)
        data["unrecognized_kind"] = kind

    known = {name: value for name, value in data.items() if name in model.model_fields}
    extensions = {name: value for name, value in data.items() if name not in model.model_fields}
    if isinstance(stored_extensions, Mapping):
        extensions = {**stored_extensions, **extensions}
    return model(**known, extensions=extensions)


def metadata_to_mapping(metadata: OrderMetadata) -> Dict[str, Any]:
    """Flatten typed metadata into the JSON object stored on the order row."""

    payload = metadata.model_dump(mode="json", exclude={"extensions"}, exclude_none=True)
    return {**metadata.extensions, **payload}


class Order(BaseModel):
    """System-of-record row for one payment or upgrade attempt."""

    id: str
    order_number: str
    user_id: str
    product_id: str
    product_name: str
    product_type: str = SUBSCRIPTION_PRODUCT_TYPE
    amount: str
    currency: str = Field(min_length=3, max_length=3)
    status: OrderStatus = OrderStatus.PENDING
    payment_provider: str
    payment_request_id: Optional[str] = None
    payment_session_id: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: OrderMetadata = Field(default_factory=CheckoutMetadata, discriminator="kind")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("amount")
    @classmethod
    def _two_decimals(cls, value: str) -> str:
        if not _AMOUNT_PATTERN.match(value):
            raise ValueError(f"amount must carry two decimals, got {value!r}")
        return value

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def kind(self) -> OrderKind:
        return OrderKind(self.metadata.kind)


class OrderCreate(BaseModel):
    """Fields required to insert a new order."""

    user_id: str
    product_id: str
    product_name: str
    product_type: str = SUBSCRIPTION_PRODUCT_TYPE
    amount: str
    currency: str = Field(min_length=3, max_length=3)
    status: OrderStatus = OrderStatus.PENDING
    payment_provider: str
    payment_request_id: Optional[str] = None
    payment_session_id: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: OrderMetadata = Field(default_factory=CheckoutMetadata, discriminator="kind")
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("amount")
    @classmethod
    def _two_decimals(cls, value: str) -> str:
        if not _AMOUNT_PATTERN.match(value):
            raise ValueError(f"amount must carry two decimals, got {value!r}")
        return value

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class MembershipStatus(BaseModel):
    """Paid/free state and billing period derived from the ledger."""

    is_paid: bool = False
    period: Optional[BillingPeriod] = None
    subscription_id: Optional[str] = None
    payment_session_id: Optional[str] = None
    order_id: Optional[str] = None
    has_paid_history: bool = False

    model_config = ConfigDict(frozen=True)


class DiscountCode(BaseModel):
    """Single-use intro discount requested from the provider."""

    code: str
    amount_off_cents: int = Field(gt=0)
    currency: str
    applies_to_product_id: str
    duration: Literal["once"] = "once"
    max_redemptions: int = 1
    expires_at: datetime

    model_config = ConfigDict(frozen=True)


class CheckoutUser(BaseModel):
    """Authenticated purchaser as seen by the checkout flow."""

    id: str
    email: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ProviderCheckout(BaseModel):
    id: str
    checkout_url: Optional[str] = None
    subscription_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ProviderTransaction(BaseModel):
    """A provider-side charge, amounts in minor units."""

    id: str
    amount: Optional[int] = None
    amount_paid: Optional[int] = None
    currency: Optional[str] = None
    created_at: Optional[int] = None
    subscription_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def paid_cents(self) -> int:
        if self.amount_paid is not None:
            return self.amount_paid
        return self.amount or 0


class ProviderSubscription(BaseModel):
    id: str
    product_id: Optional[str] = None
    customer_id: Optional[str] = None
    last_transaction_id: Optional[str] = None
    last_transaction: Optional[ProviderTransaction] = None

    model_config = ConfigDict(frozen=True)


class TransactionPage(BaseModel):
    items: List[ProviderTransaction] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class NewCheckoutResult(BaseModel):
    """Return value of a freshly created checkout session."""

    request_id: str
    session_id: str
    checkout_url: Optional[str] = None
    order_id: str

    model_config = ConfigDict(frozen=True)
