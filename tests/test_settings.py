"""Tests for environment-driven settings."""

import pytest

from vilo.infra.settings import (
    PAYSTACK_BASE_URL,
    EftConfig,
    load_eft_config,
    load_engine_settings,
    load_paystack_config,
)


class TestEngineSettings:
    def test_defaults(self):
        settings = load_engine_settings({})
        assert settings.max_retry_attempts == 3
        assert settings.price_drift_threshold_cents == 100
        assert settings.payment_amount_tolerance_cents == 100
        assert settings.default_currency == "ZAR"

    def test_overrides(self):
        settings = load_engine_settings(
            {
                "VILO_MAX_RETRY_ATTEMPTS": "5",
                "VILO_PRICE_DRIFT_THRESHOLD_CENTS": "0",
                "VILO_DEFAULT_CURRENCY": "usd",
            }
        )
        assert settings.max_retry_attempts == 5
        assert settings.price_drift_threshold_cents == 0
        assert settings.default_currency == "USD"

    def test_blank_uses_default(self):
        assert load_engine_settings({"VILO_MAX_RETRY_ATTEMPTS": " "}).max_retry_attempts == 3

    def test_invalid_integer(self):
        with pytest.raises(ValueError, match="VILO_MAX_RETRY_ATTEMPTS"):
            load_engine_settings({"VILO_MAX_RETRY_ATTEMPTS": "three"})

    def test_negative_integer(self):
        with pytest.raises(ValueError):
            load_engine_settings({"VILO_PAYMENT_AMOUNT_TOLERANCE_CENTS": "-1"})


class TestPaystackConfig:
    def test_test_mode_by_default(self):
        config = load_paystack_config({"PAYSTACK_TEST_SECRET_KEY": "sk_test", "PAYSTACK_LIVE_SECRET_KEY": "sk_live"})
        assert config.mode == "test"
        assert config.secret_key == "sk_test"
        assert config.base_url == PAYSTACK_BASE_URL

    def test_live_mode(self):
        config = load_paystack_config({"PAYSTACK_MODE": "LIVE", "PAYSTACK_LIVE_SECRET_KEY": "sk_live"})
        assert config.secret_key == "sk_live"

    def test_unknown_mode_falls_back_to_test(self):
        config = load_paystack_config({"PAYSTACK_MODE": "production"})
        assert config.mode == "test"
        assert config.secret_key is None


class TestEftConfig:
    def test_not_configured_by_default(self):
        assert EftConfig().is_configured is False

    def test_loaded(self):
        config = load_eft_config(
            {
                "EFT_ACCOUNT_HOLDER": "Vilo Guesthouse",
                "EFT_BANK_NAME": "FNB",
                "EFT_ACCOUNT_NUMBER": "62000000001",
                "EFT_REFERENCE_PREFIX": "BK-",
            }
        )
        assert config.is_configured is True
        assert config.account_type == "Cheque"
        assert config.reference_prefix == "BK-"
