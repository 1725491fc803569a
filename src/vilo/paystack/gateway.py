"""PaymentGateway implementation backed by Paystack."""

from __future__ import annotations

from typing import Any

from vilo.domain.ports import ChargeResult, VerificationResult
from vilo.paystack.client import PaystackClient, PaystackError


class PaystackGateway:
    def __init__(self, client: PaystackClient, *, callback_url: str | None = None):
        self._client = client
        self._callback_url = callback_url

    def charge(
        self,
        *,
        amount_cents: int,
        currency: str,
        reference: str,
        email: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        tx = self._client.initialize_transaction(
            email=email,
            amount_cents=amount_cents,
            currency=currency,
            reference=reference,
            metadata=metadata,
            callback_url=self._callback_url,
        )
        return ChargeResult(
            provider_reference=tx["reference"],
            authorization_url=tx["authorization_url"],
            access_code=tx["access_code"],
        )

    def verify(self, provider_reference: str) -> VerificationResult:
        """Verify a transaction.

        A Paystack "not successful" answer is a normal failed result; only
        transport-level problems raise.
        """
        try:
            tx = self._client.verify_transaction(provider_reference)
        except PaystackError as e:
            if e.status_code is not None and 400 <= e.status_code < 500:
                return VerificationResult(
                    success=False,
                    provider_reference=provider_reference,
                    failure_reason="transaction_not_found",
                )
            raise

        status = tx.get("status")
        amount = tx.get("amount")
        return VerificationResult(
            success=status == "success",
            provider_reference=tx.get("reference") or provider_reference,
            amount_cents=int(amount) if amount is not None else None,
            currency=tx.get("currency"),
            failure_reason=None if status == "success" else f"paystack_{status or 'unknown'}",
        )
