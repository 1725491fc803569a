"""Booking lifecycle endpoints.

Thin glue over BookingLifecycleOrchestrator and RetryResolver: parse the
request, call one operation, map domain errors to HTTP statuses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from vilo.api.deps import get_orchestrator, get_retry_resolver
from vilo.domain.booking_lifecycle import (
    BookingLifecycleOrchestrator,
    BookingNotFoundError,
    InvalidTransitionError,
)
from vilo.domain.checkout import CheckoutValidationError
from vilo.domain.retry import RetryRejected, RetryResolution, RetryResolver
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

router = APIRouter(prefix="/bookings", tags=["bookings"])

logger = get_logger(__name__)


# ── Schemas ───────────────────────────────────────────────


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reference: str = Field(min_length=1)


class PaymentFailedRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(default="payment_failed", min_length=1, max_length=200)


class RetryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    accept_price_change: bool = False


def _resolution_body(resolution: RetryResolution) -> dict:
    return {
        "can_retry": True,
        "booking_id": resolution.booking_id,
        "original_total_cents": resolution.original_total_cents,
        "new_total_cents": resolution.new_total_cents,
        "difference_cents": resolution.difference_cents,
        "pricing_changed": resolution.pricing_changed,
        "retry_count": resolution.retry_count,
        "notices": list(resolution.notices),
    }


# ── POST /bookings/{booking_id}/verify-payment ───────────


@router.post("/{booking_id}/verify-payment")
def verify_payment(
    booking_id: str,
    body: VerifyPaymentRequest,
    orchestrator: BookingLifecycleOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Verify a payment server-side. Safe to call more than once."""
    try:
        outcome = orchestrator.verify_payment(booking_id, body.reference)
    except BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "booking_id": outcome.booking_id,
        "status": outcome.status.value,
        "already_processed": outcome.already_processed,
        "failure_reason": outcome.failure_reason,
    }


# ── POST /bookings/{booking_id}/abandon ──────────────────


@router.post("/{booking_id}/abandon")
def abandon_booking(
    booking_id: str,
    orchestrator: BookingLifecycleOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Mark a pending booking abandoned (page unload, widget closed)."""
    try:
        changed = orchestrator.abandon(booking_id)
    except BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    return {"booking_id": booking_id, "abandoned": changed}


# ── POST /bookings/{booking_id}/payment-failed ───────────


@router.post("/{booking_id}/payment-failed")
def payment_failed(
    booking_id: str,
    body: PaymentFailedRequest,
    orchestrator: BookingLifecycleOrchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        changed = orchestrator.mark_payment_failed(booking_id, body.reason)
    except BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    return {"booking_id": booking_id, "updated": changed}


# ── GET /bookings/{booking_id}/retry-availability ────────


@router.get("/{booking_id}/retry-availability")
async def retry_availability(
    booking_id: str,
    resolver: RetryResolver = Depends(get_retry_resolver),
) -> dict:
    """Report whether a failed or abandoned booking can be retried, and at what price."""
    try:
        resolution = await resolver.resolve(booking_id)
    except BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    except RetryRejected as e:
        body = {"can_retry": False, "booking_id": booking_id, "reason": e.reason, "message": str(e)}
        room_names = getattr(e, "room_names", None)
        if room_names:
            body["unavailable_rooms"] = room_names
        return body
    except CheckoutValidationError as e:
        return {
            "can_retry": False,
            "booking_id": booking_id,
            "reason": "pricing_unavailable",
            "message": str(e),
        }
    return _resolution_body(resolution)


# ── POST /bookings/{booking_id}/retry ────────────────────


@router.post("/{booking_id}/retry")
async def retry_booking(
    booking_id: str,
    body: RetryRequest,
    resolver: RetryResolver = Depends(get_retry_resolver),
    orchestrator: BookingLifecycleOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Re-price and reopen a booking for another payment attempt.

    A price change beyond the drift threshold needs accept_price_change=true.
    """
    try:
        resolution = await resolver.resolve(booking_id)
    except BookingNotFoundError:
        raise HTTPException(status_code=404, detail="Booking not found")
    except RetryRejected as e:
        raise HTTPException(status_code=409, detail={"reason": e.reason, "message": str(e)})
    except CheckoutValidationError as e:
        raise HTTPException(status_code=409, detail={"reason": "pricing_unavailable", "message": str(e)})

    if resolution.pricing_changed and not body.accept_price_change:
        raise HTTPException(
            status_code=409,
            detail={"reason": "pricing_changed", **_resolution_body(resolution)},
        )

    try:
        booking = orchestrator.resume(booking_id, repriced=resolution.session)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail={"reason": "not_retryable", "message": str(e)})

    logger.info(
        "booking_retry_started",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking.id, pricing_changed=resolution.pricing_changed
            )
        },
    )
    return {
        "booking_id": booking.id,
        "reference": booking.reference,
        "status": booking.status.value,
        "retry_count": booking.retry_count,
        "total_cents": booking.total_cents,
    }
