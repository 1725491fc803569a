"""Tests for coupon eligibility and discount calculation."""

from datetime import date

import pytest

from vilo.domain.coupons import (
    CouponInvalid,
    CouponRequest,
    calculate_discount,
    evaluate_coupon,
    needs_revalidation,
)
from vilo.domain.models import DiscountType

from fakes import FakeCouponStore, make_coupon

TODAY = date(2026, 3, 1)


def _request(code="SAVE10", **overrides):
    values = {
        "code": code,
        "subtotal_cents": 400000,
        "room_ids": ("room-1",),
        "nights": 4,
        "check_in": date(2026, 4, 10),
        "check_out": date(2026, 4, 14),
        "customer_email": "guest@example.com",
    }
    values.update(overrides)
    return CouponRequest(**values)


class TestCalculateDiscount:
    def test_percentage(self):
        coupon = make_coupon(discount_value="10")
        assert calculate_discount(coupon, subtotal_cents=400000, nights=4) == 40000

    def test_percentage_rounds_half_up(self):
        coupon = make_coupon(discount_value="12.5")
        assert calculate_discount(coupon, subtotal_cents=1004, nights=1) == 126

    def test_fixed_amount_is_cents(self):
        coupon = make_coupon(discount_type=DiscountType.FIXED_AMOUNT, discount_value=50000)
        assert calculate_discount(coupon, subtotal_cents=400000, nights=4) == 50000

    def test_fixed_amount_capped_at_subtotal(self):
        coupon = make_coupon(discount_type=DiscountType.FIXED_AMOUNT, discount_value=50000)
        assert calculate_discount(coupon, subtotal_cents=30000, nights=1) == 30000

    def test_free_nights(self):
        coupon = make_coupon(discount_type=DiscountType.FREE_NIGHTS, discount_value=1)
        assert calculate_discount(coupon, subtotal_cents=400000, nights=4) == 100000

    def test_free_nights_capped_at_stay(self):
        coupon = make_coupon(discount_type=DiscountType.FREE_NIGHTS, discount_value=7)
        assert calculate_discount(coupon, subtotal_cents=300000, nights=3) == 300000

    def test_zero_subtotal(self):
        assert calculate_discount(make_coupon(), subtotal_cents=0, nights=2) == 0


class TestEvaluateCoupon:
    def test_valid_percentage_coupon(self):
        """10% off R4,000 leaves R3,600."""
        store = FakeCouponStore([make_coupon()])
        applied = evaluate_coupon(store, _request(), today=TODAY)
        assert applied.discount_cents == 40000
        assert applied.subtotal_cents == 400000
        assert 400000 - applied.discount_cents == 360000

    def test_lookup_is_case_insensitive(self):
        store = FakeCouponStore([make_coupon("SAVE10")])
        applied = evaluate_coupon(store, _request(code="  save10 "), today=TODAY)
        assert applied.coupon.code == "SAVE10"

    def test_blank_code(self):
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(FakeCouponStore(), _request(code="  "), today=TODAY)
        assert exc.value.reasons == ["code_required"]

    def test_unknown_code(self):
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(FakeCouponStore(), _request(code="NOPE"), today=TODAY)
        assert exc.value.reasons == ["not_found"]
        assert exc.value.messages == ["Invalid coupon code"]

    def test_reports_every_failed_check(self):
        coupon = make_coupon(
            is_active=False,
            min_nights=7,
            min_booking_amount_cents=500000,
            applicable_room_ids=frozenset({"room-9"}),
        )
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(FakeCouponStore([coupon]), _request(), today=TODAY)
        assert exc.value.reasons == [
            "inactive",
            "room_not_eligible",
            "min_booking_amount",
            "min_nights",
        ]

    def test_validity_window_uses_stay_date(self):
        coupon = make_coupon(valid_from=date(2026, 5, 1))
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(FakeCouponStore([coupon]), _request(), today=TODAY)
        assert exc.value.reasons == ["not_yet_valid"]

    def test_expired_before_stay(self):
        coupon = make_coupon(valid_until=date(2026, 4, 1))
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(FakeCouponStore([coupon]), _request(), today=TODAY)
        assert exc.value.reasons == ["expired"]

    def test_expired_today(self):
        coupon = make_coupon(valid_until=date(2026, 2, 1))
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(
                FakeCouponStore([coupon]), _request(check_in=None, check_out=None), today=TODAY
            )
        assert "expired" in exc.value.reasons

    def test_room_restriction_matches_any_selected_room(self):
        coupon = make_coupon(applicable_room_ids=frozenset({"room-2"}))
        applied = evaluate_coupon(
            FakeCouponStore([coupon]), _request(room_ids=("room-1", "room-2")), today=TODAY
        )
        assert applied.discount_cents == 40000

    def test_max_uses_reached(self):
        coupon = make_coupon(max_uses=5, current_uses=5)
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(FakeCouponStore([coupon]), _request(), today=TODAY)
        assert exc.value.reasons == ["max_uses_reached"]

    def test_own_booking_usage_not_counted(self):
        coupon = make_coupon(max_uses=1, max_uses_per_customer=1)
        store = FakeCouponStore([coupon])
        store.record_usage(
            coupon_id=coupon.id,
            booking_id="booking-1",
            customer_email="guest@example.com",
            discount_cents=40000,
            original_cents=400000,
            final_cents=360000,
        )
        with pytest.raises(CouponInvalid):
            evaluate_coupon(store, _request(), today=TODAY)

        applied = evaluate_coupon(store, _request(booking_id="booking-1"), today=TODAY)
        assert applied.discount_cents == 40000

    def test_customer_limit(self):
        coupon = make_coupon(max_uses_per_customer=1)
        store = FakeCouponStore([coupon])
        store.record_usage(
            coupon_id=coupon.id,
            booking_id="booking-0",
            customer_email="guest@example.com",
            discount_cents=1,
            original_cents=1,
            final_cents=0,
        )
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(store, _request(), today=TODAY)
        assert exc.value.reasons == ["customer_limit_reached"]

    def test_customer_checks_skipped_without_email(self):
        coupon = make_coupon(
            max_uses_per_customer=0,
            excluded_customer_emails=frozenset({"guest@example.com"}),
        )
        applied = evaluate_coupon(
            FakeCouponStore([coupon]), _request(customer_email=None), today=TODAY
        )
        assert applied.discount_cents == 40000

    def test_excluded_customer_case_insensitive(self):
        coupon = make_coupon(excluded_customer_emails=frozenset({"guest@example.com"}))
        with pytest.raises(CouponInvalid) as exc:
            evaluate_coupon(
                FakeCouponStore([coupon]), _request(customer_email="Guest@Example.com"), today=TODAY
            )
        assert exc.value.reasons == ["customer_excluded"]

    def test_needs_revalidation(self):
        applied = evaluate_coupon(FakeCouponStore([make_coupon()]), _request(), today=TODAY)
        assert needs_revalidation(applied, 400000, "guest@example.com") is False
        assert needs_revalidation(applied, 400000, " Guest@Example.com") is False
        assert needs_revalidation(applied, 415000, "guest@example.com") is True
        assert needs_revalidation(applied, 400000, "other@example.com") is True

    def test_skipped_customer_checks_need_revalidation_once_email_known(self):
        applied = evaluate_coupon(
            FakeCouponStore([make_coupon()]), _request(customer_email=None), today=TODAY
        )
        assert applied.customer_email is None
        assert needs_revalidation(applied, 400000, None) is False
        assert needs_revalidation(applied, 400000, "guest@example.com") is True
