"""Async checkout driver: feeds rate and availability lookups into the reducer."""

from __future__ import annotations

import asyncio
from datetime import date

from vilo.domain import checkout
from vilo.domain.checkout import (
    AvailabilityUpdated,
    CheckoutEvent,
    DatesChanged,
    PricingFailed,
    PricingLoaded,
    RoomSelected,
)
from vilo.domain.models import CheckoutSession, Room
from vilo.domain.ports import AvailabilityCheck, CouponStore, RateLookup
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context

logger = get_logger(__name__)


class CheckoutService:
    """Wraps checkout.apply with the I/O collaborators.

    Rate lookups and availability checks for every selected room run
    concurrently. A failed rate lookup becomes a PricingFailed event so the
    session shows a base-rate estimate but cannot move past room selection.
    """

    def __init__(
        self,
        rates: RateLookup,
        availability: AvailabilityCheck,
        coupons: CouponStore | None = None,
        *,
        today: date | None = None,
    ):
        self._rates = rates
        self._availability = availability
        self._coupons = coupons
        self._today = today

    def dispatch(self, session: CheckoutSession, event: CheckoutEvent) -> CheckoutSession:
        return checkout.apply(session, event, coupons=self._coupons, today=self._today)

    async def _lookup(self, room: Room, check_in: date, check_out: date) -> list[CheckoutEvent]:
        pricing, availability = await asyncio.gather(
            self._rates.get_pricing(room, check_in, check_out),
            self._availability.check(room, check_in, check_out),
            return_exceptions=True,
        )

        events: list[CheckoutEvent] = []
        if isinstance(availability, BaseException):
            logger.warning(
                "availability_check_failed",
                extra={
                    "extra_fields": safe_log_context(
                        room_id=room.id, error_type=type(availability).__name__
                    )
                },
            )
        else:
            events.append(AvailabilityUpdated(room.id, availability))

        if isinstance(pricing, BaseException):
            logger.warning(
                "rate_lookup_failed",
                extra={
                    "extra_fields": safe_log_context(
                        room_id=room.id, error_type=type(pricing).__name__
                    )
                },
            )
            events.append(PricingFailed(room.id, str(pricing)))
        else:
            events.append(PricingLoaded(room.id, pricing))
        return events

    async def refresh(self, session: CheckoutSession) -> CheckoutSession:
        """Fetch pricing and availability for every selected room."""
        if session.check_in is None or session.check_out is None or not session.rooms:
            return session

        results = await asyncio.gather(
            *(self._lookup(s.room, session.check_in, session.check_out) for s in session.rooms)
        )
        for events in results:
            for event in events:
                session = self.dispatch(session, event)
        return session

    async def change_dates(
        self, session: CheckoutSession, check_in: date, check_out: date
    ) -> CheckoutSession:
        session = self.dispatch(session, DatesChanged(check_in, check_out))
        return await self.refresh(session)

    async def select_room(
        self,
        session: CheckoutSession,
        room: Room,
        *,
        adults: int = 1,
        child_ages: tuple[int, ...] = (),
    ) -> CheckoutSession:
        """Select a room after checking its availability for the session dates.

        Raises:
            RoomNotSelectable: If the room is booked out or fails stay rules.
            CheckoutValidationError: If the guest composition is invalid.
        """
        if session.check_in is None or session.check_out is None:
            return self.dispatch(session, RoomSelected(room, adults, tuple(child_ages)))

        availability = await self._availability.check(room, session.check_in, session.check_out)
        session = self.dispatch(session, AvailabilityUpdated(room.id, availability))
        session = self.dispatch(session, RoomSelected(room, adults, tuple(child_ages)))

        try:
            pricing = await self._rates.get_pricing(room, session.check_in, session.check_out)
        except Exception as exc:
            logger.warning(
                "rate_lookup_failed",
                extra={
                    "extra_fields": safe_log_context(
                        room_id=room.id, error_type=type(exc).__name__
                    )
                },
            )
            return self.dispatch(session, PricingFailed(room.id, str(exc)))
        return self.dispatch(session, PricingLoaded(room.id, pricing))
