"""Thin wrapper around the Paystack REST API.

Purpose:
- Keep HTTP details (auth header, minor units, response envelope) out of
  domain code.
- Never log full Paystack payloads (only references + status).
"""

from __future__ import annotations

from typing import Any

import requests

from vilo.infra.settings import PaystackConfig, load_paystack_config
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 15


class PaystackError(Exception):
    """Paystack request failed or returned status=false."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PaystackClient:
    """Client for the Paystack transaction endpoints.

    Usage:
        client = PaystackClient()  # reads PAYSTACK_* from env
        tx = client.initialize_transaction(
            email="guest@example.com",
            amount_cents=300000,
            currency="ZAR",
            reference="VILO-7KQX",
        )
        print(tx["authorization_url"])
    """

    def __init__(
        self,
        config: PaystackConfig | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the client.

        Raises:
            RuntimeError: If no secret key is configured for the active mode.
        """
        self._config = config or load_paystack_config()
        if not self._config.secret_key:
            raise RuntimeError(
                f"Paystack secret key not configured for mode {self._config.mode!r}. "
                "Set PAYSTACK_TEST_SECRET_KEY or PAYSTACK_LIVE_SECRET_KEY."
            )
        self._session = session or requests.Session()
        self._timeout = timeout

    @property
    def mode(self) -> str:
        return self._config.mode

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._config.base_url}{path}"
        try:
            response = self._session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs
            )
        except requests.RequestException as e:
            raise PaystackError(f"Paystack request failed: {type(e).__name__}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise PaystackError("Paystack returned a non-JSON response", response.status_code) from e

        if response.status_code >= 400 or not body.get("status"):
            raise PaystackError(
                body.get("message") or f"Paystack error (HTTP {response.status_code})",
                response.status_code,
            )
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    def initialize_transaction(
        self,
        *,
        email: str,
        amount_cents: int,
        currency: str,
        reference: str,
        metadata: dict[str, Any] | None = None,
        callback_url: str | None = None,
    ) -> dict[str, Any]:
        """Create a transaction. Paystack amounts are already in minor units.

        Returns:
            Dict with authorization_url, access_code and reference.
        """
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_cents,
            "currency": currency.upper(),
            "reference": reference,
        }
        if metadata:
            payload["metadata"] = metadata
        if callback_url:
            payload["callback_url"] = callback_url

        data = self._request("POST", "/transaction/initialize", json=payload)
        logger.info(
            "paystack_transaction_initialized",
            extra={"extra_fields": safe_log_context(payment_reference=reference, mode=self.mode)},
        )
        return {
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
            "reference": data.get("reference") or reference,
        }

    def verify_transaction(self, reference: str) -> dict[str, Any]:
        """Fetch a transaction's verified state.

        Returns:
            Dict with status, amount (minor units), currency and reference.
        """
        data = self._request("GET", f"/transaction/verify/{reference}")
        logger.info(
            "paystack_transaction_verified",
            extra={
                "extra_fields": safe_log_context(
                    payment_reference=reference, status=data.get("status")
                )
            },
        )
        return {
            "status": data.get("status"),
            "amount": data.get("amount"),
            "currency": data.get("currency"),
            "reference": data.get("reference") or reference,
            "gateway_response": data.get("gateway_response"),
        }
