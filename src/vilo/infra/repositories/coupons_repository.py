"""Coupons repository - coupon lookup and usage tracking.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from vilo.domain.models import Coupon, DiscountType
from vilo.infra.db import fetchone, txn


def _row_to_coupon(row: tuple[Any, ...]) -> Coupon:
    return Coupon(
        id=str(row[0]),
        code=row[1],
        name=row[2] or "",
        discount_type=DiscountType(row[3]),
        discount_value=Decimal(row[4]),
        applicable_room_ids=frozenset(str(r) for r in (row[5] or [])),
        valid_from=row[6],
        valid_until=row[7],
        min_nights=row[8],
        min_booking_amount_cents=row[9],
        max_uses=row[10],
        max_uses_per_customer=row[11],
        current_uses=row[12] or 0,
        excluded_customer_emails=frozenset(e.lower() for e in (row[13] or [])),
        is_active=bool(row[14]),
    )


def get_coupon_by_code(cur: PgCursor, code: str) -> Coupon | None:
    """Case-insensitive lookup of a coupon by code."""
    cur.execute(
        """
        SELECT id, code, name, discount_type, discount_value, applicable_room_ids,
               valid_from, valid_until, min_nights, min_booking_amount_cents,
               max_uses, max_uses_per_customer, current_uses,
               excluded_customer_emails, is_active
        FROM coupons
        WHERE lower(code) = lower(%s)
        """,
        (code.strip(),),
    )
    row = cur.fetchone()
    return _row_to_coupon(row) if row else None


def count_customer_uses(cur: PgCursor, coupon_id: str, customer_email: str) -> int:
    row = fetchone(
        cur,
        """
        SELECT count(*) FROM coupon_usage
        WHERE coupon_id = %s AND lower(customer_email) = lower(%s)
        """,
        (coupon_id, customer_email),
    )
    return int(row[0]) if row else 0


def count_booking_uses(cur: PgCursor, coupon_id: str, booking_id: str) -> int:
    row = fetchone(
        cur,
        "SELECT count(*) FROM coupon_usage WHERE coupon_id = %s AND booking_id = %s",
        (coupon_id, booking_id),
    )
    return int(row[0]) if row else 0


def insert_usage(
    cur: PgCursor,
    *,
    coupon_id: str,
    booking_id: str,
    customer_email: str,
    discount_cents: int,
    original_cents: int,
    final_cents: int,
) -> bool:
    """Record one coupon redemption per booking.

    Returns:
        True if recorded, False if this booking already used the coupon.
    """
    cur.execute(
        """
        INSERT INTO coupon_usage (
            coupon_id, booking_id, customer_email,
            discount_cents, original_cents, final_cents
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (coupon_id, booking_id) DO NOTHING
        """,
        (coupon_id, booking_id, customer_email, discount_cents, original_cents, final_cents),
    )
    if cur.rowcount == 0:
        return False

    cur.execute(
        "UPDATE coupons SET current_uses = current_uses + 1, updated_at = now() WHERE id = %s",
        (coupon_id,),
    )
    return True


class PostgresCouponStore:
    def lookup(self, code: str) -> Coupon | None:
        with txn() as cur:
            return get_coupon_by_code(cur, code)

    def count_customer_uses(self, coupon_id: str, customer_email: str) -> int:
        with txn() as cur:
            return count_customer_uses(cur, coupon_id, customer_email)

    def count_booking_uses(self, coupon_id: str, booking_id: str) -> int:
        with txn() as cur:
            return count_booking_uses(cur, coupon_id, booking_id)

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
        with txn() as cur:
            insert_usage(
                cur,
                coupon_id=coupon_id,
                booking_id=booking_id,
                customer_email=customer_email,
                discount_cents=discount_cents,
                original_cents=original_cents,
                final_cents=final_cents,
            )
