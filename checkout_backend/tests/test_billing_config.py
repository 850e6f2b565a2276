"""Tests for billing configuration loading."""
from __future__ import annotations

import pytest

from checkout_backend.app.billing import BillingPeriod, ConfigurationError, load_billing_config
from checkout_backend.app.billing.config import CREEM_LIVE_API_URL, CREEM_TEST_API_URL


def test_defaults_for_empty_environment():
    config = load_billing_config({})

    assert config.provider_name == "creem"
    assert config.creem_api_url == CREEM_LIVE_API_URL
    assert config.web_base_url == "http://localhost:3000"
    assert config.transaction_page_size == 50
    assert config.upgrade_poll_attempts == 4
    assert config.upgrade_poll_backoff_seconds == pytest.approx(0.45)
    assert config.intro_discount_amount_cents == 200
    assert config.intro_discount_expiry_days == 30
    assert config.product_mapping.configured_keys() == ()


def test_test_keys_use_the_test_api():
    config = load_billing_config({"CREEM_API_KEY": "creem_test_abc"})

    assert config.creem_api_url == CREEM_TEST_API_URL


def test_explicit_values_override_defaults():
    config = load_billing_config(
        {
            "PAYMENT_PROVIDER": " Sandbox ",
            "CREEM_API_URL": "https://creem.internal/",
            "CREEM_PRODUCTS": '{"professional:yearly": "prod_y"}',
            "CREEM_TRANSACTION_PAGE_SIZE": "100",
            "UPGRADE_POLL_ATTEMPTS": "6",
            "UPGRADE_POLL_BACKOFF_SECONDS": "0",
            "WEB_BASE_URL": "https://app.example.com/",
            "INTRO_DISCOUNT_AMOUNT_CENTS": "0",
        }
    )

    assert config.provider_name == "sandbox"
    assert config.creem_api_url == "https://creem.internal"
    assert config.product_mapping.resolve("professional", BillingPeriod.YEARLY) == "prod_y"
    assert config.transaction_page_size == 100
    assert config.upgrade_poll_attempts == 6
    assert config.upgrade_poll_backoff_seconds == 0
    assert config.web_base_url == "https://app.example.com"
    assert config.intro_discount_amount_cents == 0


def test_invalid_integer_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="UPGRADE_POLL_ATTEMPTS must be an integer"):
        load_billing_config({"UPGRADE_POLL_ATTEMPTS": "many"})


def test_invalid_float_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="CREEM_TIMEOUT_SECONDS must be a number"):
        load_billing_config({"CREEM_TIMEOUT_SECONDS": "soon"})


def test_invalid_product_json_is_rejected():
    with pytest.raises(ConfigurationError):
        load_billing_config({"CREEM_PRODUCTS": "[oops"})
