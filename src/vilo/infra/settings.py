"""Engine configuration loaded from environment variables.

Each loader reads os.environ once and returns a frozen dataclass, so
callers (and tests) can build settings explicitly instead of patching
the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping

PAYSTACK_BASE_URL = "https://api.paystack.co"


@dataclass(frozen=True)
class EngineSettings:
    """Booking engine limits.

    Attributes:
        max_retry_attempts: Retries allowed after a failed or abandoned payment.
        price_drift_threshold_cents: Grand total change on retry that is
            reported as pricing_changed.
        payment_amount_tolerance_cents: Allowed gap between the verified paid
            amount and the booking total.
        default_currency: ISO currency code used when a room has none.
    """

    max_retry_attempts: int = 3
    price_drift_threshold_cents: int = 100
    payment_amount_tolerance_cents: int = 100
    default_currency: str = "ZAR"


@dataclass(frozen=True)
class PaystackConfig:
    mode: Literal["test", "live"] = "test"
    test_secret_key: str | None = None
    live_secret_key: str | None = None
    webhook_secret: str | None = None
    base_url: str = PAYSTACK_BASE_URL

    @property
    def secret_key(self) -> str | None:
        """Secret key for the active mode."""
        if self.mode == "live":
            return self.live_secret_key
        return self.test_secret_key


@dataclass(frozen=True)
class EftConfig:
    """Bank details shown to guests who pay by EFT."""

    account_holder: str = ""
    bank_name: str = ""
    account_number: str = ""
    branch_code: str = ""
    account_type: str = "Cheque"
    reference_prefix: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.account_holder and self.bank_name and self.account_number)


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def load_engine_settings(env: Mapping[str, str] | None = None) -> EngineSettings:
    env = os.environ if env is None else env
    return EngineSettings(
        max_retry_attempts=_int_env(env, "VILO_MAX_RETRY_ATTEMPTS", 3),
        price_drift_threshold_cents=_int_env(env, "VILO_PRICE_DRIFT_THRESHOLD_CENTS", 100),
        payment_amount_tolerance_cents=_int_env(env, "VILO_PAYMENT_AMOUNT_TOLERANCE_CENTS", 100),
        default_currency=(env.get("VILO_DEFAULT_CURRENCY") or "ZAR").upper(),
    )


def load_paystack_config(env: Mapping[str, str] | None = None) -> PaystackConfig:
    """Load Paystack credentials.

    PAYSTACK_MODE defaults to "test"; any value other than "live" is
    treated as test so a typo never charges real cards.
    """
    env = os.environ if env is None else env
    mode = "live" if (env.get("PAYSTACK_MODE") or "").lower() == "live" else "test"
    return PaystackConfig(
        mode=mode,
        test_secret_key=env.get("PAYSTACK_TEST_SECRET_KEY") or None,
        live_secret_key=env.get("PAYSTACK_LIVE_SECRET_KEY") or None,
        webhook_secret=env.get("PAYSTACK_WEBHOOK_SECRET") or None,
        base_url=(env.get("PAYSTACK_BASE_URL") or PAYSTACK_BASE_URL).rstrip("/"),
    )


def load_eft_config(env: Mapping[str, str] | None = None) -> EftConfig:
    env = os.environ if env is None else env
    return EftConfig(
        account_holder=env.get("EFT_ACCOUNT_HOLDER", ""),
        bank_name=env.get("EFT_BANK_NAME", ""),
        account_number=env.get("EFT_ACCOUNT_NUMBER", ""),
        branch_code=env.get("EFT_BRANCH_CODE", ""),
        account_type=env.get("EFT_ACCOUNT_TYPE") or "Cheque",
        reference_prefix=env.get("EFT_REFERENCE_PREFIX", ""),
    )
