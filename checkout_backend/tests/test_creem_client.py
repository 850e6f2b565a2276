"""Tests for the Creem HTTP client wire mapping."""
from __future__ import annotations

import io
import json
from datetime import datetime, timezone
from urllib import error as urllib_error

import pytest

from checkout_backend.app.billing import ConfigurationError, PaymentProviderError
from checkout_backend.app.billing.creem import CreemClient
from checkout_backend.app.billing.models import DiscountCode


class _FakeResponse:
    def __init__(self, payload) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None


@pytest.fixture
def requests(monkeypatch):
    captured = []
    responses = []

    def _urlopen(request, timeout):
        body = json.loads(request.data.decode("utf-8")) if request.data else None
        captured.append(
            {
                "method": request.get_method(),
                "url": request.full_url,
                "api_key": request.get_header("X-api-key"),
                "body": body,
                "timeout": timeout,
            }
        )
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return _FakeResponse(result)

    monkeypatch.setattr("checkout_backend.app.billing.creem.urllib_request.urlopen", _urlopen)
    return captured, responses


@pytest.fixture
def client() -> CreemClient:
    return CreemClient(api_key="creem_test_key", base_url="https://test-api.creem.io", timeout=5)


def test_create_checkout_posts_snake_case_payload(client, requests):
    captured, responses = requests
    responses.append({"id": "ch_1", "checkout_url": "https://pay.creem.io/ch_1"})

    checkout = client.create_checkout(
        product_id="prod_monthly",
        request_id="req-1",
        customer_email="reader@example.com",
        success_url="https://app.example.com/payment/success",
        metadata={"order_id": "ord-1"},
        discount_code="PRO4-ABCDEF12",
    )

    assert checkout.id == "ch_1"
    assert checkout.checkout_url == "https://pay.creem.io/ch_1"
    call = captured[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://test-api.creem.io/v1/checkouts"
    assert call["api_key"] == "creem_test_key"
    assert call["timeout"] == 5
    assert call["body"] == {
        "product_id": "prod_monthly",
        "request_id": "req-1",
        "customer": {"email": "reader@example.com"},
        "success_url": "https://app.example.com/payment/success",
        "metadata": {"order_id": "ord-1"},
        "discount_code": "PRO4-ABCDEF12",
    }


def test_retrieve_checkout_reads_expanded_subscription(client, requests):
    captured, responses = requests
    responses.append({"id": "ch_1", "subscription": {"id": "sub_1", "status": "active"}})

    checkout = client.retrieve_checkout("ch_1")

    assert checkout.subscription_id == "sub_1"
    assert captured[0]["url"] == "https://test-api.creem.io/v1/checkouts?checkout_id=ch_1"


def test_retrieve_subscription_accepts_string_and_object_references(client, requests):
    _captured, responses = requests
    responses.append(
        {
            "id": "sub_1",
            "product": {"id": "prod_yearly"},
            "customer": "cust_1",
            "last_transaction_id": "tran_2",
            "last_transaction": {"id": "tran_2", "amount": 5200, "amount_paid": 5100, "currency": "USD", "created_at": 1767225600000},
        }
    )

    subscription = client.retrieve_subscription("sub_1")

    assert subscription.product_id == "prod_yearly"
    assert subscription.customer_id == "cust_1"
    assert subscription.last_transaction.paid_cents == 5100


def test_upgrade_posts_target_product(client, requests):
    captured, responses = requests
    responses.append({})

    client.upgrade_subscription("sub_1", target_product_id="prod_yearly", update_behavior="proration-charge-immediately")

    assert captured[0]["url"] == "https://test-api.creem.io/v1/subscriptions/sub_1/upgrade"
    assert captured[0]["body"] == {"product_id": "prod_yearly", "update_behavior": "proration-charge-immediately"}


def test_search_transactions_pages_by_customer(client, requests):
    captured, responses = requests
    responses.append({"items": [{"id": "tran_1", "amount": 600, "subscription": "sub_1"}, {"amount": 1}]})

    page = client.search_transactions(customer_id="cust_1", page=1, page_size=50)

    assert [item.id for item in page.items] == ["tran_1"]
    assert page.items[0].subscription_id == "sub_1"
    assert captured[0]["url"].endswith("/v1/transactions/search?customer_id=cust_1&page_number=1&page_size=50")


def test_create_discount_payload(client, requests):
    captured, responses = requests
    responses.append({"id": "dis_1"})
    discount = DiscountCode(
        code="PRO4-ABCDEF12",
        amount_off_cents=200,
        currency="USD",
        applies_to_product_id="prod_monthly",
        expires_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
    )

    client.create_discount(discount, name="Professional intro ($2 off) - user-1")

    body = captured[0]["body"]
    assert body["type"] == "fixed"
    assert body["amount"] == 200
    assert body["duration"] == "once"
    assert body["max_redemptions"] == 1
    assert body["applies_to_products"] == ["prod_monthly"]
    assert body["expiry_date"] == "2026-02-01T00:00:00+00:00"


def test_http_errors_raise_provider_error(client, requests):
    _captured, responses = requests
    responses.append(
        urllib_error.HTTPError(
            "https://test-api.creem.io/v1/subscriptions/sub_1/upgrade",
            400,
            "Bad Request",
            hdrs=None,
            fp=io.BytesIO(b'{"message": "invalid product"}'),
        )
    )

    with pytest.raises(PaymentProviderError) as excinfo:
        client.upgrade_subscription("sub_1", target_product_id="prod_x")

    assert excinfo.value.status_code == 400
    assert "invalid product" in excinfo.value.body


def test_transport_errors_raise_provider_error(client, requests):
    _captured, responses = requests
    responses.append(urllib_error.URLError("connection refused"))

    with pytest.raises(PaymentProviderError, match="unreachable"):
        client.retrieve_subscription("sub_1")


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        CreemClient(api_key="")
