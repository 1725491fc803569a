"""Coupon evaluation - eligibility checks and discount calculation.

Stateless: the caller must re-evaluate whenever the subtotal changes, an
AppliedCoupon is only valid for the subtotal it was computed against.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from vilo.domain.models import AppliedCoupon, Coupon, DiscountType
from vilo.domain.ports import CouponStore
from vilo.domain.room_pricing import to_cents
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

logger = get_logger(__name__)

REASON_MESSAGES = {
    "code_required": "Coupon code is required",
    "not_found": "Invalid coupon code",
    "inactive": "This coupon is no longer active",
    "not_yet_valid": "This coupon is not valid yet for your dates",
    "expired": "This coupon has expired",
    "room_not_eligible": "This coupon is not valid for the selected room(s)",
    "max_uses_reached": "This coupon has reached its maximum usage limit",
    "customer_limit_reached": "You have already used this coupon the maximum number of times",
    "customer_excluded": "This coupon is not available for your account",
    "min_booking_amount": "The booking total is below this coupon's minimum",
    "min_nights": "Your stay is shorter than this coupon's minimum",
}


class CouponInvalid(Exception):
    """Coupon rejected. Carries every failed check, not only the first."""

    def __init__(self, code: str, reasons: list[str]):
        self.code = code
        self.reasons = reasons
        super().__init__(f"Coupon {code!r} invalid: {', '.join(reasons)}")

    @property
    def messages(self) -> list[str]:
        return [REASON_MESSAGES.get(r, r) for r in self.reasons]


@dataclass(frozen=True)
class CouponRequest:
    code: str
    subtotal_cents: int
    room_ids: tuple[str, ...]
    nights: int
    check_in: date | None = None
    check_out: date | None = None
    customer_email: str | None = None
    # set when re-pricing an existing booking, whose own usage must not count
    booking_id: str | None = None


def calculate_discount(coupon: Coupon, *, subtotal_cents: int, nights: int) -> int:
    """Discount in cents for a subtotal, never more than the subtotal."""
    if subtotal_cents <= 0:
        return 0

    value = Decimal(coupon.discount_value)

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = to_cents(Decimal(subtotal_cents) * value / 100)
    elif coupon.discount_type == DiscountType.FIXED_AMOUNT:
        discount = to_cents(value)
    elif coupon.discount_type == DiscountType.FREE_NIGHTS:
        if nights <= 0:
            return 0
        free_nights = min(value, Decimal(nights))
        discount = to_cents(Decimal(subtotal_cents) / nights * free_nights)
    else:
        raise ValueError(f"Unknown discount type: {coupon.discount_type}")

    return max(0, min(discount, subtotal_cents))


def _rooms_eligible(coupon: Coupon, room_ids: Iterable[str]) -> bool:
    room_ids = set(room_ids)
    if not coupon.applicable_room_ids or not room_ids:
        return True
    return bool(coupon.applicable_room_ids & room_ids)


def _normalise_email(email: str | None) -> str | None:
    return (email or "").strip().lower() or None


def _check(coupon: Coupon, request: CouponRequest, store: CouponStore, today: date) -> list[str]:
    reasons: list[str] = []

    if not coupon.is_active:
        reasons.append("inactive")

    stay_date = request.check_in or today
    if coupon.valid_from is not None and stay_date < coupon.valid_from:
        reasons.append("not_yet_valid")
    if coupon.valid_until is not None and (
        stay_date > coupon.valid_until or today > coupon.valid_until
    ):
        reasons.append("expired")

    if not _rooms_eligible(coupon, request.room_ids):
        reasons.append("room_not_eligible")

    own_uses = store.count_booking_uses(coupon.id, request.booking_id) if request.booking_id else 0

    if coupon.max_uses is not None and coupon.current_uses - own_uses >= coupon.max_uses:
        reasons.append("max_uses_reached")

    email = _normalise_email(request.customer_email)
    if email:
        excluded = {e.lower() for e in coupon.excluded_customer_emails}
        if email in excluded:
            reasons.append("customer_excluded")
        if coupon.max_uses_per_customer is not None:
            used = store.count_customer_uses(coupon.id, email)
            if used - own_uses >= coupon.max_uses_per_customer:
                reasons.append("customer_limit_reached")

    if (
        coupon.min_booking_amount_cents is not None
        and request.subtotal_cents < coupon.min_booking_amount_cents
    ):
        reasons.append("min_booking_amount")

    if coupon.min_nights is not None and request.nights < coupon.min_nights:
        reasons.append("min_nights")

    return reasons


def evaluate_coupon(
    store: CouponStore,
    request: CouponRequest,
    *,
    today: date | None = None,
) -> AppliedCoupon:
    """Validate a coupon code and compute its discount.

    Args:
        store: Coupon lookup capability.
        request: Code, pre-discount subtotal (rooms + add-ons), stay and customer.
        today: Evaluation date (defaults to date.today()).

    Returns:
        AppliedCoupon snapshot bound to request.subtotal_cents.

    Raises:
        CouponInvalid: If the code is unknown or any eligibility check fails.
    """
    code = request.code.strip()
    if not code:
        raise CouponInvalid(request.code, ["code_required"])

    coupon = store.lookup(code)
    if coupon is None:
        raise CouponInvalid(code, ["not_found"])

    reasons = _check(coupon, request, store, today or date.today())
    if reasons:
        logger.info(
            "coupon_rejected",
            extra={
                "extra_fields": safe_log_context(
                    coupon_id=coupon.id,
                    reasons=",".join(reasons),
                )
            },
        )
        raise CouponInvalid(code, reasons)

    discount = calculate_discount(
        coupon, subtotal_cents=request.subtotal_cents, nights=request.nights
    )
    return AppliedCoupon(
        coupon=coupon,
        discount_cents=discount,
        subtotal_cents=request.subtotal_cents,
        customer_email=_normalise_email(request.customer_email),
    )


def needs_revalidation(
    applied: AppliedCoupon, subtotal_cents: int, customer_email: str | None
) -> bool:
    """True when the snapshot was computed for another subtotal or customer.

    A coupon applied before the guest entered an email skipped the
    per-customer checks, so a new email forces them to run.
    """
    return (
        applied.subtotal_cents != subtotal_cents
        or applied.customer_email != _normalise_email(customer_email)
    )
