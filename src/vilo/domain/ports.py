"""Capabilities the engine consumes from external collaborators.

Concrete implementations live in vilo.infra.repositories (Postgres) and
vilo.paystack (payment gateway). Tests use in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Protocol

from vilo.domain.models import (
    Addon,
    Availability,
    Booking,
    BookingStatus,
    Coupon,
    Room,
    StayPricing,
)


class RateLookup(Protocol):
    async def get_pricing(self, room: Room, check_in: date, check_out: date) -> StayPricing:
        """Return per-night pricing for the stay. Raises on lookup failure."""
        ...


class AvailabilityCheck(Protocol):
    async def check(self, room: Room, check_in: date, check_out: date) -> Availability:
        ...


class CouponStore(Protocol):
    def lookup(self, code: str) -> Coupon | None:
        ...

    def count_customer_uses(self, coupon_id: str, customer_email: str) -> int:
        ...

    def count_booking_uses(self, coupon_id: str, booking_id: str) -> int:
        ...

    def record_usage(
        self,
        *,
        coupon_id: str,
        booking_id: str,
        customer_email: str,
        discount_cents: int,
        original_cents: int,
        final_cents: int,
    ) -> None:
        ...


class RoomCatalog(Protocol):
    def get_room(self, room_id: str) -> Room | None:
        ...


class AddonCatalog(Protocol):
    def get_addon(self, addon_id: str) -> Addon | None:
        ...


@dataclass(frozen=True)
class ChargeResult:
    provider_reference: str
    authorization_url: str | None = None
    access_code: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    provider_reference: str
    amount_cents: int | None = None
    currency: str | None = None
    failure_reason: str | None = None


class PaymentGateway(Protocol):
    def charge(
        self,
        *,
        amount_cents: int,
        currency: str,
        reference: str,
        email: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        ...

    def verify(self, provider_reference: str) -> VerificationResult:
        """Confirm a transaction server-side."""
        ...


class BookingStore(Protocol):
    def create(self, booking: Booking) -> None:
        ...

    def get(self, booking_id: str) -> Booking | None:
        ...

    def find_by_payment_reference(self, provider_reference: str) -> Booking | None:
        ...

    def find_by_reference(self, reference: str) -> Booking | None:
        ...

    def transition(
        self,
        booking_id: str,
        *,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        reason: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Conditionally move a booking to to_status.

        Applies only when the current status is in from_statuses (compare and
        set). Returns True when the row changed.
        """
        ...

    def update_payment(
        self,
        booking_id: str,
        *,
        payment_method: str,
        payment_reference: str | None,
    ) -> None:
        ...
