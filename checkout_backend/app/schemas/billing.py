"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..billing import BillingPeriod, MembershipStatus, Order
from ..billing.models import metadata_to_mapping


class CheckoutRequest(BaseModel):
    product_id: Optional[str] = None
    # Coerced by normalize_period / normalize_locale, so any JSON value is accepted.
    period: Any = None
    locale: Any = None
    intro_discount: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def intro_discount_requested(self) -> bool:
        return self.intro_discount is not False


class OrderOut(BaseModel):
    id: str
    order_number: str = Field(alias="orderNumber")
    product_id: str = Field(alias="productId")
    product_name: str = Field(alias="productName")
    product_type: str = Field(alias="productType")
    amount: str
    currency: str
    status: str
    payment_provider: str = Field(alias="paymentProvider")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")
    paid_at: Optional[datetime] = Field(alias="paidAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_order(cls, order: Order) -> "OrderOut":
        return cls(
            id=order.id,
            order_number=order.order_number,
            product_id=order.product_id,
            product_name=order.product_name,
            product_type=order.product_type,
            amount=order.amount,
            currency=order.currency,
            status=order.status.value,
            payment_provider=order.payment_provider,
            metadata=metadata_to_mapping(order.metadata),
            created_at=order.created_at,
            paid_at=order.paid_at,
        )


class Pagination(BaseModel):
    limit: int
    offset: int
    total: int
    has_more: bool = Field(alias="hasMore")

    model_config = ConfigDict(populate_by_name=True)


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination

    model_config = ConfigDict(populate_by_name=True)


class MembershipStatusResponse(BaseModel):
    is_paid: bool = Field(alias="isPaid")
    period: Optional[BillingPeriod] = None
    reason: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_status(cls, membership: MembershipStatus) -> "MembershipStatusResponse":
        return cls(
            is_paid=membership.is_paid,
            period=membership.period if membership.is_paid else None,
            reason="paid" if membership.is_paid else "unpaid",
        )


def ok_response(data: Any, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    """Wrap ``data`` in the ``{ok: true, data}`` envelope."""

    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    return JSONResponse(status_code=status_code, content={"ok": True, "data": jsonable_encoder(data)})


def error_response(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "message": message})


__all__ = [
    "CheckoutRequest",
    "MembershipStatusResponse",
    "OrderListResponse",
    "OrderOut",
    "Pagination",
    "error_response",
    "ok_response",
]
