"""API routes exposing checkout, membership and order functionality."""
from __future__ import annotations

import logging
import os
from typing import Any, List, Optional

from fastapi import APIRouter, Cookie, Depends, Query, status
from fastapi.responses import JSONResponse

from ... import app_context
from ..billing import (
    CheckoutError,
    CheckoutFailed,
    CheckoutUser,
    ConfigurationError,
    OrderStatus,
    UpgradeResult,
)
from ..schemas.billing import (
    CheckoutRequest,
    MembershipStatusResponse,
    OrderListResponse,
    OrderOut,
    Pagination,
    error_response,
    ok_response,
)
from ..services.billing import (
    get_checkout_orchestrator,
    get_membership_resolver,
    get_order_ledger,
    get_transaction_sync,
)

logger = logging.getLogger("billing")

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
_DEFAULT_PAGE_SIZE = 10
_MAX_PAGE_SIZE = 100
_UNAUTHENTICATED_MESSAGE = "no auth, please sign-in"


def _get_optional_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
) -> Optional[Any]:
    return app_context.get_optional_current_user(session_token=session_token)


def _checkout_user(current_user: Optional[Any]) -> Optional[CheckoutUser]:
    if current_user is None:
        return None
    return CheckoutUser(id=str(current_user.id), email=getattr(current_user, "email", None))


def _parse_statuses(raw: Optional[str]) -> List[OrderStatus]:
    if not raw or raw.strip() == "all":
        return []
    statuses: List[OrderStatus] = []
    for part in raw.split(","):
        value = part.strip()
        if not value:
            continue
        statuses.append(OrderStatus(value))
    return statuses


router = APIRouter(prefix="/api", tags=["billing"])


@router.post("/payments")
def create_payment(
    payload: CheckoutRequest,
    *,
    current_user=Depends(_get_optional_current_user),
) -> JSONResponse:
    """Start a checkout, or change the billing period of an active membership."""

    try:
        orchestrator = get_checkout_orchestrator()
        result = orchestrator.handle_checkout(
            product_id=payload.product_id,
            period=payload.period,
            locale=payload.locale,
            intro_discount_requested=payload.intro_discount_requested,
            user=_checkout_user(current_user),
        )
    except CheckoutError as exc:
        return exc.to_response()
    except ConfigurationError as exc:
        logger.error("Billing is not configured", extra={"error": str(exc)})
        return CheckoutFailed(str(exc)).to_response()

    if isinstance(result, UpgradeResult):
        return ok_response(result.to_payload())
    return ok_response(result)


@router.get("/membership/status")
def membership_status(*, current_user=Depends(_get_optional_current_user)) -> JSONResponse:
    if current_user is None:
        return ok_response({"isPaid": False, "period": None, "reason": "unauth"})

    try:
        membership = get_membership_resolver().resolve(str(current_user.id))
    except Exception:
        logger.exception("Membership lookup failed", extra={"user_id": current_user.id})
        return ok_response({"isPaid": False, "period": None, "reason": "error"})
    return ok_response(MembershipStatusResponse.from_status(membership))


@router.get("/orders")
def list_orders(
    *,
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user=Depends(_get_optional_current_user),
) -> JSONResponse:
    if current_user is None:
        return error_response(_UNAUTHENTICATED_MESSAGE, status.HTTP_401_UNAUTHORIZED)

    try:
        statuses = _parse_statuses(status_filter)
    except ValueError:
        return error_response(f"invalid status: {status_filter}")

    orders, total = get_order_ledger().list_orders(
        str(current_user.id),
        limit=limit,
        offset=offset,
        statuses=statuses,
    )
    response = OrderListResponse(
        orders=[OrderOut.from_order(order) for order in orders],
        pagination=Pagination(limit=limit, offset=offset, total=total, has_more=offset + limit < total),
    )
    return ok_response(response)


@router.post("/orders/{order_id}/refresh")
def refresh_order(order_id: str, *, current_user=Depends(_get_optional_current_user)) -> JSONResponse:
    """Pull the latest subscription charges for an order into the ledger."""

    if current_user is None:
        return error_response(_UNAUTHENTICATED_MESSAGE, status.HTTP_401_UNAUTHORIZED)

    ledger = get_order_ledger()
    user_id = str(current_user.id)
    order = ledger.get_order(order_id)
    if order is None:
        return error_response("order not found", status.HTTP_404_NOT_FOUND)
    if order.user_id != user_id:
        return error_response("order belongs to another user", status.HTTP_403_FORBIDDEN)

    try:
        result = get_transaction_sync().sync_for_order(user_id=user_id, order=order)
    except Exception:
        logger.exception("Subscription refresh failed", extra={"order_id": order_id, "user_id": user_id})
    else:
        logger.info(
            "Subscription refreshed",
            extra={"order_id": order_id, "backfilled": result.backfilled, "created": result.created},
        )

    refreshed = ledger.get_order(order_id) or order
    return ok_response(OrderOut.from_order(refreshed))


__all__ = ["router", "create_payment", "membership_status", "list_orders", "refresh_order"]
