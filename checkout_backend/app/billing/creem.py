"""HTTP client for the Creem payments API."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from .config import BillingConfig, CREEM_LIVE_API_URL
from .exceptions import ConfigurationError, PaymentProviderError
from .models import (
    DiscountCode,
    ProviderCheckout,
    ProviderSubscription,
    ProviderTransaction,
    TransactionPage,
)
from .protocols import UPGRADE_BEHAVIOR_PRORATE_NOW

logger = logging.getLogger("billing.creem")


def _reference_id(value: Any) -> Optional[str]:
    """Creem expands some references into objects; accept either form."""

    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, Mapping):
        ref = value.get("id")
        if isinstance(ref, str) and ref.strip():
            return ref.strip()
    return None


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_transaction(payload: Mapping[str, Any]) -> ProviderTransaction:
    return ProviderTransaction(
        id=str(payload.get("id") or ""),
        amount=_int_or_none(payload.get("amount")),
        amount_paid=_int_or_none(payload.get("amount_paid")),
        currency=payload.get("currency") or None,
        created_at=_int_or_none(payload.get("created_at")),
        subscription_id=_reference_id(payload.get("subscription")),
    )


def parse_subscription(payload: Mapping[str, Any]) -> ProviderSubscription:
    last_transaction = payload.get("last_transaction")
    return ProviderSubscription(
        id=str(payload.get("id") or ""),
        product_id=_reference_id(payload.get("product")),
        customer_id=_reference_id(payload.get("customer")),
        last_transaction_id=payload.get("last_transaction_id") or _reference_id(last_transaction),
        last_transaction=parse_transaction(last_transaction) if isinstance(last_transaction, Mapping) and last_transaction.get("id") else None,
    )


def parse_checkout(payload: Mapping[str, Any]) -> ProviderCheckout:
    return ProviderCheckout(
        id=str(payload.get("id") or ""),
        checkout_url=payload.get("checkout_url") or None,
        subscription_id=_reference_id(payload.get("subscription")),
    )


class CreemClient:
    """Thin synchronous wrapper over the Creem REST API."""

    name = "creem"

    def __init__(self, *, api_key: str, base_url: str = CREEM_LIVE_API_URL, timeout: float = 30.0) -> None:
        if not api_key:
            raise ConfigurationError("CREEM_API_KEY is not set")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: BillingConfig) -> "CreemClient":
        return cls(
            api_key=config.creem_api_key,
            base_url=config.creem_api_url,
            timeout=config.creem_timeout_seconds,
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        query: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        if query:
            url = f"{url}?{urllib_parse.urlencode(query)}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {"x-api-key": self._api_key, "Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"
        request = urllib_request.Request(url, data=data, headers=headers, method=method)

        try:
            with urllib_request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            logger.warning(
                "Creem request failed",
                extra={"method": method, "path": path, "status_code": exc.code},
            )
            raise PaymentProviderError(
                f"Creem {method} {path} failed with status {exc.code}",
                status_code=exc.code,
                body=detail,
            ) from exc
        except urllib_error.URLError as exc:
            logger.warning("Creem request unreachable", extra={"method": method, "path": path, "error": str(exc)})
            raise PaymentProviderError(f"Creem {method} {path} unreachable: {exc.reason}") from exc

        if not raw:
            return {}
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PaymentProviderError(f"Creem {method} {path} returned invalid JSON") from exc
        return payload if isinstance(payload, dict) else {}

    def create_checkout(
        self,
        *,
        product_id: str,
        request_id: str,
        customer_email: str,
        success_url: str,
        metadata: Dict[str, str],
        discount_code: Optional[str] = None,
    ) -> ProviderCheckout:
        body: Dict[str, Any] = {
            "product_id": product_id,
            "request_id": request_id,
            "customer": {"email": customer_email},
            "success_url": success_url,
            "metadata": metadata,
        }
        if discount_code:
            body["discount_code"] = discount_code
        checkout = parse_checkout(self._request("POST", "/v1/checkouts", body=body))
        if not checkout.id:
            raise PaymentProviderError("Creem checkout response did not include an id")
        return checkout

    def retrieve_checkout(self, checkout_id: str) -> ProviderCheckout:
        return parse_checkout(self._request("GET", "/v1/checkouts", query={"checkout_id": checkout_id}))

    def upgrade_subscription(
        self,
        subscription_id: str,
        *,
        target_product_id: str,
        update_behavior: str = UPGRADE_BEHAVIOR_PRORATE_NOW,
    ) -> None:
        self._request(
            "POST",
            f"/v1/subscriptions/{urllib_parse.quote(subscription_id, safe='')}/upgrade",
            body={"product_id": target_product_id, "update_behavior": update_behavior},
        )

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        return parse_subscription(
            self._request("GET", "/v1/subscriptions", query={"subscription_id": subscription_id})
        )

    def search_transactions(self, *, customer_id: str, page: int, page_size: int) -> TransactionPage:
        payload = self._request(
            "GET",
            "/v1/transactions/search",
            query={"customer_id": customer_id, "page_number": page, "page_size": page_size},
        )
        items = [
            parse_transaction(item)
            for item in payload.get("items") or []
            if isinstance(item, Mapping) and item.get("id")
        ]
        return TransactionPage(items=items)

    def create_discount(self, discount: DiscountCode, *, name: str) -> None:
        body: Dict[str, Any] = {
            "name": name,
            "code": discount.code,
            "type": "fixed",
            "amount": discount.amount_off_cents,
            "currency": discount.currency,
            "duration": discount.duration,
            "max_redemptions": discount.max_redemptions,
            "applies_to_products": [discount.applies_to_product_id],
        }
        if discount.expires_at is not None:
            body["expiry_date"] = discount.expires_at.isoformat()
        self._request("POST", "/v1/discounts", body=body)


__all__ = ["CreemClient", "parse_checkout", "parse_subscription", "parse_transaction"]
