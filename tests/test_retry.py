"""Tests for RetryResolver (retry eligibility and re-pricing)."""

import asyncio
from dataclasses import replace
from datetime import date

import pytest

from vilo.domain.booking_lifecycle import BookingLifecycleOrchestrator, BookingNotFoundError
from vilo.domain.checkout import PricingUnavailable
from vilo.domain.models import Availability, BookingStatus, CheckoutStep
from vilo.domain.retry import (
    AlreadyCompleted,
    BookingExpired,
    NotRetryable,
    RetryResolver,
    RoomsUnavailable,
    TooManyRetries,
)
from vilo.infra.settings import EngineSettings

from fakes import (
    FakeAddonCatalog,
    FakeAvailability,
    FakeCouponStore,
    FakeGateway,
    FakeRateLookup,
    FakeRoomCatalog,
    InMemoryBookingStore,
    make_addon,
    make_coupon,
    make_room,
    payable_session,
)

TODAY = date(2026, 3, 1)
ROOM = make_room("room-1", name="Garden Suite", max_guests=4)


class World:
    """Booking store plus catalogs, with one abandoned booking to retry."""

    def __init__(self, *, addons=(), coupon=None):
        self.store = InMemoryBookingStore()
        self.coupons = FakeCouponStore([coupon] if coupon else [])
        self.rooms = FakeRoomCatalog([ROOM])
        self.addons = FakeAddonCatalog(addons)
        self.rates = FakeRateLookup()
        self.availability = FakeAvailability()
        orchestrator = BookingLifecycleOrchestrator(
            self.store, FakeGateway(), coupons=self.coupons, reference_factory=lambda: "VILO-RTRY"
        )
        session = payable_session(
            ROOM,
            addons=addons,
            coupon_code=coupon.code if coupon else None,
            coupons=self.coupons,
        )
        self.booking = orchestrator.create_booking(session, "paystack")
        orchestrator.abandon(self.booking.id)

    def resolver(self, today=TODAY, **settings):
        return RetryResolver(
            self.store,
            rooms=self.rooms,
            addons=self.addons,
            rates=self.rates,
            availability=self.availability,
            coupons=self.coupons,
            settings=EngineSettings(**settings),
            today=lambda: today,
        )

    def resolve(self, **kwargs):
        return asyncio.run(self.resolver(**kwargs).resolve(self.booking.id))


class TestEligibility:
    def test_expired_reported_before_paid(self):
        world = World()
        world.store.force_status(world.booking.id, BookingStatus.PAID)
        with pytest.raises(BookingExpired):
            world.resolve(today=date(2026, 4, 11))

    def test_paid_booking(self):
        world = World()
        world.store.force_status(world.booking.id, BookingStatus.PAID)
        with pytest.raises(AlreadyCompleted) as exc:
            world.resolve()
        assert exc.value.reason == "already_completed"

    def test_too_many_retries(self):
        world = World()
        world.store.force_status(world.booking.id, BookingStatus.PAYMENT_FAILED, retry_count=3)
        with pytest.raises(TooManyRetries):
            world.resolve()

    def test_retry_cap_counts_retries_allowed(self):
        world = World()
        world.store.force_status(world.booking.id, BookingStatus.PAYMENT_FAILED, retry_count=2)
        assert world.resolve().retry_count == 2
        with pytest.raises(TooManyRetries):
            world.resolve(max_retry_attempts=2)

    def test_pending_not_retryable(self):
        world = World()
        world.store.force_status(world.booking.id, BookingStatus.PENDING)
        with pytest.raises(NotRetryable):
            world.resolve()

    def test_check_in_today_still_retryable(self):
        world = World()
        resolution = world.resolve(today=date(2026, 4, 10))
        assert resolution.pricing_changed is False

    def test_unknown_booking(self):
        world = World()
        with pytest.raises(BookingNotFoundError):
            asyncio.run(world.resolver().resolve("missing"))


class TestRooms:
    def test_room_removed_from_catalog(self):
        world = World()
        world.rooms.rooms.clear()
        with pytest.raises(RoomsUnavailable) as exc:
            world.resolve()
        assert exc.value.room_names == ["Garden Suite"]
        assert exc.value.reason == "rooms_unavailable"

    def test_room_booked_out(self):
        world = World()
        world.availability.overrides[ROOM.id] = Availability(available=False, available_units=0)
        with pytest.raises(RoomsUnavailable):
            world.resolve()

    def test_rate_lookup_failure(self):
        world = World()
        world.rates.failing.add(ROOM.id)
        with pytest.raises(PricingUnavailable):
            world.resolve()


class TestRepricing:
    def test_unchanged_price(self):
        world = World()
        resolution = world.resolve()

        assert resolution.original_total_cents == 300000
        assert resolution.new_total_cents == 300000
        assert resolution.pricing_changed is False
        assert resolution.session.step == CheckoutStep.SELECTING_PAYMENT
        assert resolution.session.booking_id == world.booking.id
        assert resolution.notices == ()

    def test_price_increase_flagged(self):
        """R3,000 booked, rates now R1,100/night: R3,300."""
        world = World()
        world.rates.rates[ROOM.id] = 110000
        resolution = world.resolve()

        assert resolution.new_total_cents == 330000
        assert resolution.difference_cents == 30000
        assert resolution.pricing_changed is True

    def test_small_drift_ignored(self):
        world = World()
        world.rates.rates[ROOM.id] = 100030
        resolution = world.resolve()
        assert resolution.difference_cents == 90
        assert resolution.pricing_changed is False

    def test_threshold_is_configurable(self):
        world = World()
        world.rates.rates[ROOM.id] = 100030
        assert world.resolve(price_drift_threshold_cents=50).pricing_changed is True

    def test_addon_repriced(self):
        breakfast = make_addon("breakfast", price_cents=15000)
        world = World(addons=[breakfast])
        world.addons.addons["breakfast"] = replace(breakfast, price_cents=20000)

        resolution = world.resolve()
        assert resolution.original_total_cents == 315000
        assert resolution.new_total_cents == 320000

    def test_discontinued_addon_dropped_with_notice(self):
        world = World(addons=[make_addon("breakfast", name="Breakfast")])
        world.addons.addons.clear()

        resolution = world.resolve()
        assert resolution.new_total_cents == 300000
        assert resolution.notices == ("Breakfast is no longer offered and was removed",)

    def test_own_coupon_usage_does_not_block_reapply(self):
        world = World(coupon=make_coupon(max_uses=1))
        resolution = world.resolve()

        assert resolution.original_total_cents == 270000
        assert resolution.new_total_cents == 270000
        assert resolution.session.coupon is not None

    def test_invalid_coupon_dropped_with_notice(self):
        coupon = make_coupon()
        world = World(coupon=coupon)
        world.coupons.coupons["save10"] = replace(
            world.coupons.coupons["save10"], is_active=False
        )

        resolution = world.resolve()
        assert resolution.session.coupon is None
        assert resolution.new_total_cents == 300000
        assert resolution.pricing_changed is True
        assert resolution.notices == (
            "Coupon SAVE10 no longer applies: This coupon is no longer active",
        )
