"""Retry resolution for failed and abandoned bookings.

Rebuilds a checkout session from a booking's frozen line items against
current rooms, rates and add-on prices, and reports whether the price moved.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable

from vilo.domain.booking_lifecycle import RETRYABLE_STATUSES, BookingNotFoundError
from vilo.domain.checkout import (
    AddonSet,
    CheckoutEvent,
    CouponApplied,
    DatesChanged,
    PricingFailed,
    PricingLoaded,
    RoomNotSelectable,
    RoomSelected,
    StepForward,
    apply,
    availability_problem,
)
from vilo.domain.coupons import CouponInvalid
from vilo.domain.models import Booking, BookingStatus, CheckoutSession, Room
from vilo.domain.ports import (
    AddonCatalog,
    AvailabilityCheck,
    BookingStore,
    CouponStore,
    RateLookup,
    RoomCatalog,
)
from vilo.infra.settings import EngineSettings
from vilo.infra.time import utc_today
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

logger = get_logger(__name__)


class RetryRejected(Exception):
    """Booking cannot be retried."""

    reason = "not_retryable"


class BookingExpired(RetryRejected):
    reason = "expired"


class AlreadyCompleted(RetryRejected):
    reason = "already_completed"


class TooManyRetries(RetryRejected):
    reason = "too_many_retries"


class NotRetryable(RetryRejected):
    reason = "not_retryable"


class RoomsUnavailable(RetryRejected):
    reason = "rooms_unavailable"

    def __init__(self, room_names: list[str]):
        self.room_names = room_names
        super().__init__("No longer available: " + ", ".join(room_names))


@dataclass(frozen=True)
class RetryResolution:
    booking_id: str
    session: CheckoutSession
    original_total_cents: int
    new_total_cents: int
    pricing_changed: bool
    retry_count: int

    @property
    def difference_cents(self) -> int:
        return self.new_total_cents - self.original_total_cents

    @property
    def notices(self) -> tuple[str, ...]:
        return self.session.notices


class RetryResolver:
    """Decides whether a booking can be retried and at what price."""

    def __init__(
        self,
        store: BookingStore,
        *,
        rooms: RoomCatalog,
        addons: AddonCatalog,
        rates: RateLookup,
        availability: AvailabilityCheck,
        coupons: CouponStore | None = None,
        settings: EngineSettings | None = None,
        today: Callable[[], date] = utc_today,
    ):
        self._store = store
        self._rooms = rooms
        self._addons = addons
        self._rates = rates
        self._availability = availability
        self._coupons = coupons
        self._settings = settings or EngineSettings()
        self._today = today

    def check_eligibility(self, booking: Booking, today: date) -> None:
        """Raise the first RetryRejected that applies.

        Order matters: an expired stay is reported as expired even when it is
        also paid or out of retries.
        """
        if booking.check_in < today:
            raise BookingExpired(f"Check-in {booking.check_in.isoformat()} has passed")
        if booking.status == BookingStatus.PAID:
            raise AlreadyCompleted("Booking is already paid")
        # max_retry_attempts is the number of retries allowed
        if booking.retry_count >= self._settings.max_retry_attempts:
            raise TooManyRetries(
                f"Retry limit of {self._settings.max_retry_attempts} reached"
            )
        if booking.status not in RETRYABLE_STATUSES:
            raise NotRetryable(f"Booking is {booking.status.value}")

    async def _current_rooms(self, booking: Booking) -> dict[str, Room]:
        rooms: dict[str, Room] = {}
        unavailable: list[str] = []
        for item in booking.line_items:
            room = self._rooms.get_room(item.room_id)
            if room is None or not room.is_active:
                unavailable.append(item.room_name)
            else:
                rooms[item.room_id] = room

        checks = await asyncio.gather(
            *(self._availability.check(r, booking.check_in, booking.check_out) for r in rooms.values())
        )
        for room, availability in zip(list(rooms.values()), checks):
            if availability_problem(availability):
                unavailable.append(room.name)
        if unavailable:
            raise RoomsUnavailable(unavailable)
        return rooms

    async def _price_events(
        self, rooms: dict[str, Room], check_in: date, check_out: date
    ) -> list[CheckoutEvent]:
        results = await asyncio.gather(
            *(self._rates.get_pricing(r, check_in, check_out) for r in rooms.values()),
            return_exceptions=True,
        )
        events: list[CheckoutEvent] = []
        for room_id, result in zip(list(rooms), results):
            if isinstance(result, BaseException):
                logger.warning(
                    "retry_rate_lookup_failed",
                    extra={
                        "extra_fields": safe_log_context(
                            room_id=room_id, error_type=type(result).__name__
                        )
                    },
                )
                events.append(PricingFailed(room_id, str(result)))
            else:
                events.append(PricingLoaded(room_id, result))
        return events

    async def resolve(self, booking_id: str) -> RetryResolution:
        """Check retry eligibility and re-price the booking.

        Returns:
            RetryResolution with a session at selecting_payment.

        Raises:
            BookingNotFoundError: If the booking does not exist.
            RetryRejected: BookingExpired, AlreadyCompleted, TooManyRetries,
                NotRetryable or RoomsUnavailable.
            PricingUnavailable: If current rates cannot be loaded.
        """
        booking = self._store.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking not found: {booking_id}")

        today = self._today()
        self.check_eligibility(booking, today)
        rooms = await self._current_rooms(booking)

        def step(session: CheckoutSession, event: CheckoutEvent) -> CheckoutSession:
            return apply(session, event, coupons=self._coupons, today=today)

        session = CheckoutSession(
            currency=booking.currency,
            guest=booking.guest,
            booking_id=booking.id,
        )
        session = step(session, DatesChanged(booking.check_in, booking.check_out))
        for item in booking.line_items:
            room = rooms[item.room_id]
            try:
                session = step(session, RoomSelected(room, item.adults, item.child_ages))
            except RoomNotSelectable as exc:
                raise RoomsUnavailable([room.name]) from exc

        for event in await self._price_events(rooms, booking.check_in, booking.check_out):
            session = step(session, event)

        notices: list[str] = []
        for line in booking.addon_lines:
            addon = self._addons.get_addon(line.addon_id)
            if addon is None:
                notices.append(f"{line.name} is no longer offered and was removed")
                continue
            session = step(session, AddonSet(addon, min(line.quantity, addon.max_quantity)))

        if booking.coupon_code:
            if self._coupons is None:
                notices.append(f"Coupon {booking.coupon_code} could not be re-applied")
            else:
                try:
                    session = step(session, CouponApplied(booking.coupon_code))
                except CouponInvalid as exc:
                    notices.append(
                        f"Coupon {booking.coupon_code} no longer applies: {'; '.join(exc.messages)}"
                    )

        if notices:
            session = replace(session, notices=session.notices + tuple(notices))

        for _ in range(3):
            session = step(session, StepForward())

        new_total = session.grand_total_cents
        pricing_changed = (
            abs(new_total - booking.total_cents) > self._settings.price_drift_threshold_cents
        )

        logger.info(
            "retry_resolved",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking.id,
                    original_total_cents=booking.total_cents,
                    new_total_cents=new_total,
                    pricing_changed=pricing_changed,
                    retry_count=booking.retry_count,
                )
            },
        )
        return RetryResolution(
            booking_id=booking.id,
            session=session,
            original_total_cents=booking.total_cents,
            new_total_cents=new_total,
            pricing_changed=pricing_changed,
            retry_count=booking.retry_count,
        )
