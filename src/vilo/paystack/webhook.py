"""Paystack webhook signature validation and payload parsing.

Purpose:
- Validate x-paystack-signature (HMAC-SHA512 of the raw body, keyed with
  the secret key).
- Extract minimal data needed for routing (no full event).
- Never log payload or signature.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


@dataclass
class PaystackWebhookEvent:
    """Minimal extracted data from a Paystack webhook event."""

    event_id: str  # Paystack transaction id, unique per transaction
    event_type: str  # e.g. charge.success
    reference: str


def compute_signature(payload_bytes: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha512).hexdigest()


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str | None,
    secret: str,
) -> PaystackWebhookEvent:
    """Validate a Paystack webhook signature and extract minimal event data.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: Value of the x-paystack-signature header.
        secret: Paystack secret key used to sign webhooks.

    Returns:
        PaystackWebhookEvent with event_id, event_type and reference.

    Raises:
        InvalidSignatureError: If the signature is missing or wrong.
        InvalidPayloadError: If the event structure is invalid.
    """
    if not signature_header:
        raise InvalidSignatureError("Missing signature")

    expected = compute_signature(payload_bytes, secret)
    if not hmac.compare_digest(expected, signature_header.strip().lower()):
        logger.warning("paystack webhook signature verification failed")
        raise InvalidSignatureError("Invalid signature")

    try:
        event = json.loads(payload_bytes)
    except ValueError as e:
        logger.warning("paystack webhook payload parsing failed")
        raise InvalidPayloadError("Invalid payload") from e

    if not isinstance(event, dict):
        raise InvalidPayloadError("Payload is not an object")

    event_type = event.get("event")
    data = event.get("data")
    if not event_type or not isinstance(data, dict):
        raise InvalidPayloadError("Missing event or data")

    reference = data.get("reference")
    if not reference:
        raise InvalidPayloadError("Missing transaction reference")

    event_id = str(data.get("id") or reference)
    return PaystackWebhookEvent(event_id=event_id, event_type=event_type, reference=reference)
