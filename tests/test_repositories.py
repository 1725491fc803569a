"""Tests for the Postgres repositories, against mocked cursors."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import psycopg2.errors
import pytest

from vilo.domain.booking_lifecycle import DuplicateReferenceError
from vilo.domain.models import (
    AddonPricingType,
    Booking,
    BookingAddonLine,
    BookingLineItem,
    BookingStatus,
    DiscountType,
    NightRate,
    PaymentMethod,
    PricingMode,
)
from vilo.infra.repositories import bookings_repository as bookings
from vilo.infra.repositories import coupons_repository as coupons
from vilo.infra.repositories import rates_repository as rates
from vilo.infra.repositories.processed_events_repository import record_event

from fakes import GUEST, make_room

LINE_ITEM = BookingLineItem(
    room_id="room-1",
    room_name="Garden Suite",
    pricing_mode=PricingMode.PER_UNIT,
    adults=2,
    child_ages=(4,),
    nightly_rates=(
        NightRate(date(2026, 4, 10), 100000),
        NightRate(date(2026, 4, 11), 120000, rate_name="Easter"),
    ),
    subtotal_cents=220000,
    adjusted_total_cents=220000,
)
ADDON_LINE = BookingAddonLine(
    addon_id="addon-1",
    name="Breakfast",
    pricing_type=AddonPricingType.PER_NIGHT,
    unit_price_cents=5000,
    quantity=1,
    total_cents=10000,
)


def _cursor(fetchone=None, rowcount=1):
    cur = MagicMock()
    cur.fetchone.return_value = fetchone
    cur.rowcount = rowcount
    return cur


def _booking(**overrides):
    values = dict(
        id="b-1",
        reference="VILO-7KQX",
        guest=GUEST,
        check_in=date(2026, 4, 10),
        check_out=date(2026, 4, 12),
        line_items=(LINE_ITEM,),
        addon_lines=(ADDON_LINE,),
        subtotal_cents=230000,
        discount_cents=0,
        total_cents=230000,
        currency="ZAR",
        status=BookingStatus.DRAFT,
        payment_method=PaymentMethod.PAYSTACK,
    )
    values.update(overrides)
    return Booking(**values)


class TestSnapshots:
    def test_line_items_survive_json(self):
        raw = bookings.line_items_to_json([LINE_ITEM])
        assert json.loads(raw)[0]["nightly_rates"][1] == {
            "date": "2026-04-11",
            "rate_cents": 120000,
            "rate_name": "Easter",
        }
        assert bookings.line_items_from_json(raw) == (LINE_ITEM,)

    def test_decoded_jsonb_accepted(self):
        decoded = json.loads(bookings.addon_lines_to_json([ADDON_LINE]))
        assert bookings.addon_lines_from_json(decoded) == (ADDON_LINE,)
        assert bookings.addon_lines_from_json(None) == ()


class TestBookingsRepository:
    def test_insert_booking_writes_history(self):
        cur = _cursor()
        bookings.insert_booking(cur, _booking())

        assert cur.execute.call_count == 2
        insert_sql, params = cur.execute.call_args_list[0].args
        assert "INSERT INTO bookings" in insert_sql
        assert params[1] == "VILO-7KQX"
        assert params[14] == "draft"
        history_params = cur.execute.call_args_list[1].args[1]
        assert history_params == ("b-1", None, "draft", "created")

    def test_duplicate_reference(self):
        cur = _cursor()
        cur.execute.side_effect = psycopg2.errors.UniqueViolation("duplicate key")
        with pytest.raises(DuplicateReferenceError):
            bookings.insert_booking(cur, _booking())

    def test_get_booking_maps_row(self):
        created = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        row = (
            "b-1", "VILO-7KQX", GUEST.name, GUEST.email, GUEST.phone, None,
            date(2026, 4, 10), date(2026, 4, 12),
            json.loads(bookings.line_items_to_json([LINE_ITEM])), [],
            220000, 0, 220000, "ZAR",
            "payment_failed", "paystack", "VILO-7KQX", "amount_mismatch",
            1, None, None, created,
        )
        cur = _cursor(fetchone=row)
        cur.fetchall.return_value = [
            (None, "draft", created, "created"),
            ("draft", "pending", created, "created"),
            ("pending", "payment_failed", created, "amount_mismatch"),
        ]

        booking = bookings.get_booking(cur, "b-1")

        assert booking.status == BookingStatus.PAYMENT_FAILED
        assert booking.payment_method == PaymentMethod.PAYSTACK
        assert booking.guest.special_requests == ""
        assert booking.line_items == (LINE_ITEM,)
        assert booking.retry_count == 1
        assert [c.to_status for c in booking.history] == [
            BookingStatus.DRAFT,
            BookingStatus.PENDING,
            BookingStatus.PAYMENT_FAILED,
        ]

    def test_get_missing_booking(self):
        assert bookings.get_booking(_cursor(fetchone=None), "nope") is None

    def test_transition_updates_and_records_history(self):
        cur = _cursor(fetchone=("pending",))
        changed = bookings.transition_status(
            cur,
            "b-1",
            from_statuses=[BookingStatus.PENDING, BookingStatus.CART_ABANDONED],
            to_status=BookingStatus.PAID,
            reason="payment_verified",
            fields={"payment_reference": "VILO-7KQX", "failure_reason": None},
        )

        assert changed is True
        lock_sql = cur.execute.call_args_list[0].args[0]
        assert "FOR UPDATE" in lock_sql
        update_sql, update_params = cur.execute.call_args_list[1].args
        assert "status = ANY(%s)" in update_sql
        assert "failure_reason = %s" in update_sql
        assert update_params == ("paid", None, "VILO-7KQX", "b-1", ["pending", "cart_abandoned"])
        history_params = cur.execute.call_args_list[2].args[1]
        assert history_params == ("b-1", "pending", "paid", "payment_verified")

    def test_transition_from_wrong_status(self):
        cur = _cursor(fetchone=("paid",))
        changed = bookings.transition_status(
            cur, "b-1", from_statuses=[BookingStatus.PENDING], to_status=BookingStatus.CART_ABANDONED
        )
        assert changed is False
        assert cur.execute.call_count == 1

    def test_transition_lost_update(self):
        cur = _cursor(fetchone=("pending",), rowcount=0)
        changed = bookings.transition_status(
            cur, "b-1", from_statuses=[BookingStatus.PENDING], to_status=BookingStatus.PAID
        )
        assert changed is False
        assert cur.execute.call_count == 2

    def test_transition_serialises_snapshots(self):
        cur = _cursor(fetchone=("cart_abandoned",))
        bookings.transition_status(
            cur,
            "b-1",
            from_statuses=[BookingStatus.CART_ABANDONED],
            to_status=BookingStatus.PENDING,
            reason="retry",
            fields={"line_items": (LINE_ITEM,), "retry_count": 1},
        )
        update_sql, update_params = cur.execute.call_args_list[1].args
        assert "line_items = %s::jsonb" in update_sql
        assert json.loads(update_params[1])[0]["room_id"] == "room-1"
        assert update_params[2] == 1

    def test_transition_rejects_unknown_fields(self):
        cur = _cursor(fetchone=("pending",))
        with pytest.raises(ValueError, match="status_note"):
            bookings.transition_status(
                cur,
                "b-1",
                from_statuses=[BookingStatus.PENDING],
                to_status=BookingStatus.PAID,
                fields={"status_note": "x"},
            )
        cur.execute.assert_not_called()


class TestCouponsRepository:
    def test_row_mapping(self):
        row = (
            "c-1", "SAVE10", None, "percentage", Decimal("10.00"), ["room-1"],
            None, date(2026, 12, 31), 2, None, 100, 1, 7, ["VIP@Example.com"], True,
        )
        coupon = coupons.get_coupon_by_code(_cursor(fetchone=row), " save10 ")

        assert coupon.discount_type == DiscountType.PERCENTAGE
        assert coupon.discount_value == Decimal("10")
        assert coupon.applicable_room_ids == frozenset({"room-1"})
        assert coupon.excluded_customer_emails == frozenset({"vip@example.com"})
        assert coupon.current_uses == 7
        assert coupon.name == ""

    def test_lookup_uses_lower(self):
        cur = _cursor(fetchone=None)
        assert coupons.get_coupon_by_code(cur, " Save10 ") is None
        sql, params = cur.execute.call_args.args
        assert "lower(code) = lower(%s)" in sql
        assert params == ("Save10",)

    def test_count_customer_uses(self):
        assert coupons.count_customer_uses(_cursor(fetchone=(2,)), "c-1", "a@b.co") == 2

    def test_insert_usage_increments_once(self):
        cur = _cursor(rowcount=1)
        recorded = coupons.insert_usage(
            cur,
            coupon_id="c-1",
            booking_id="b-1",
            customer_email="a@b.co",
            discount_cents=100,
            original_cents=1000,
            final_cents=900,
        )
        assert recorded is True
        assert "current_uses = current_uses + 1" in cur.execute.call_args_list[1].args[0]

    def test_insert_usage_duplicate(self):
        cur = _cursor(rowcount=0)
        recorded = coupons.insert_usage(
            cur,
            coupon_id="c-1",
            booking_id="b-1",
            customer_email="a@b.co",
            discount_cents=100,
            original_cents=1000,
            final_cents=900,
        )
        assert recorded is False
        assert cur.execute.call_count == 1


class TestRatesRepository:
    def test_highest_priority_season_wins(self):
        room = make_room(base_price_cents=100000)
        seasonal = [
            rates.SeasonalRate("Autumn", date(2026, 4, 1), date(2026, 4, 30), 110000, priority=1),
            rates.SeasonalRate("Easter", date(2026, 4, 11), date(2026, 4, 11), 150000, priority=5),
        ]
        pricing = rates.nightly_rates(room, date(2026, 4, 10), date(2026, 4, 13), seasonal)
        assert [n.rate_cents for n in pricing.nights] == [110000, 150000, 110000]
        assert pricing.nights[1].rate_name == "Easter"
        assert pricing.subtotal_cents == 370000

    def test_base_price_outside_seasons(self):
        room = make_room(base_price_cents=90000)
        seasonal = [rates.SeasonalRate("Winter", date(2026, 6, 1), date(2026, 8, 31), 50000)]
        pricing = rates.nightly_rates(room, date(2026, 4, 11), date(2026, 4, 13), seasonal)
        assert [n.rate_cents for n in pricing.nights] == [90000, 90000]
        assert pricing.nights[0].rate_name is None

    def test_season_end_date_inclusive(self):
        room = make_room(base_price_cents=90000)
        seasonal = [rates.SeasonalRate("Peak", date(2026, 4, 1), date(2026, 4, 10), 50000)]
        pricing = rates.nightly_rates(room, date(2026, 4, 10), date(2026, 4, 12), seasonal)
        assert [n.rate_cents for n in pricing.nights] == [50000, 90000]

    def test_invalid_dates(self):
        with pytest.raises(ValueError):
            rates.nightly_rates(make_room(), date(2026, 4, 10), date(2026, 4, 10), [])

    def test_build_availability(self):
        room = make_room(total_units=3, min_stay_nights=2, max_stay_nights=5)
        availability = rates.build_availability(room, nights=1, booked_units=3)
        assert availability.available is False
        assert availability.available_units == 0
        assert availability.meets_min_stay is False
        assert availability.meets_max_stay is True

    def test_count_booked_units_only_holding_statuses(self):
        cur = _cursor(fetchone=(2,))
        count = rates.count_booked_units(cur, "room-1", date(2026, 4, 10), date(2026, 4, 13))
        assert count == 2
        params = cur.execute.call_args.args[1]
        assert params[1] == ["pending", "paid"]

    def test_get_room_defaults(self):
        row = ("room-1", "Garden Suite", 100000, None, None, None, None, None, None, None, None, None, True, None)
        room = rates.get_room(_cursor(fetchone=row), "room-1")
        assert room.pricing_mode == PricingMode.PER_UNIT
        assert room.max_guests == 2
        assert room.child_age_limit == 12
        assert room.total_units == 1
        assert room.currency == "ZAR"


class TestProcessedEvents:
    def test_first_delivery(self):
        assert record_event(_cursor(rowcount=1), source="paystack:charge.success", external_id="1") is True

    def test_duplicate_delivery(self):
        assert record_event(_cursor(rowcount=0), source="paystack:charge.success", external_id="1") is False
