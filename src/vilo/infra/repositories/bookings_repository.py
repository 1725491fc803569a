"""Bookings repository - persistence for bookings and their status history.

Uses raw SQL with psycopg2 (no ORM). Line items and add-on lines are
stored as JSONB snapshots; they are written once at creation (or on a
re-priced retry) and never recomputed.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Iterable

import psycopg2.errors
from psycopg2.extensions import cursor as PgCursor

from vilo.domain.booking_lifecycle import DuplicateReferenceError
from vilo.domain.models import (
    AddonPricingType,
    Booking,
    BookingAddonLine,
    BookingLineItem,
    BookingStatus,
    GuestDetails,
    NightRate,
    PaymentMethod,
    PricingMode,
    StatusChange,
)
from vilo.infra.db import txn

# Columns transition() may set alongside the status
UPDATABLE_FIELDS = frozenset(
    {
        "payment_reference",
        "failure_reason",
        "retry_count",
        "line_items",
        "addon_lines",
        "subtotal_cents",
        "discount_cents",
        "total_cents",
        "coupon_id",
        "coupon_code",
    }
)
_JSON_FIELDS = frozenset({"line_items", "addon_lines"})

_BOOKING_COLUMNS = """
    id, reference, guest_name, guest_email, guest_phone, special_requests,
    check_in, check_out, line_items, addon_lines,
    subtotal_cents, discount_cents, total_cents, currency,
    status, payment_method, payment_reference, failure_reason,
    retry_count, coupon_id, coupon_code, created_at
"""


# ── JSON snapshots ───────────────────────────────────────


def line_items_to_json(items: Iterable[BookingLineItem]) -> str:
    return json.dumps(
        [
            {
                "room_id": i.room_id,
                "room_name": i.room_name,
                "pricing_mode": PricingMode.parse(i.pricing_mode).value,
                "adults": i.adults,
                "child_ages": list(i.child_ages),
                "nightly_rates": [
                    {"date": n.date.isoformat(), "rate_cents": n.rate_cents, "rate_name": n.rate_name}
                    for n in i.nightly_rates
                ],
                "subtotal_cents": i.subtotal_cents,
                "adjusted_total_cents": i.adjusted_total_cents,
            }
            for i in items
        ]
    )


def line_items_from_json(raw: Any) -> tuple[BookingLineItem, ...]:
    data = json.loads(raw) if isinstance(raw, str) else (raw or [])
    return tuple(
        BookingLineItem(
            room_id=str(d["room_id"]),
            room_name=d["room_name"],
            pricing_mode=PricingMode.parse(d.get("pricing_mode")),
            adults=int(d["adults"]),
            child_ages=tuple(int(a) for a in d.get("child_ages", [])),
            nightly_rates=tuple(
                NightRate(
                    date=date.fromisoformat(n["date"]),
                    rate_cents=int(n["rate_cents"]),
                    rate_name=n.get("rate_name"),
                )
                for n in d.get("nightly_rates", [])
            ),
            subtotal_cents=int(d["subtotal_cents"]),
            adjusted_total_cents=int(d["adjusted_total_cents"]),
        )
        for d in data
    )


def addon_lines_to_json(lines: Iterable[BookingAddonLine]) -> str:
    return json.dumps(
        [
            {
                "addon_id": a.addon_id,
                "name": a.name,
                "pricing_type": AddonPricingType(a.pricing_type).value,
                "unit_price_cents": a.unit_price_cents,
                "quantity": a.quantity,
                "total_cents": a.total_cents,
            }
            for a in lines
        ]
    )


def addon_lines_from_json(raw: Any) -> tuple[BookingAddonLine, ...]:
    data = json.loads(raw) if isinstance(raw, str) else (raw or [])
    return tuple(
        BookingAddonLine(
            addon_id=str(d["addon_id"]),
            name=d["name"],
            pricing_type=AddonPricingType(d["pricing_type"]),
            unit_price_cents=int(d["unit_price_cents"]),
            quantity=int(d["quantity"]),
            total_cents=int(d["total_cents"]),
        )
        for d in data
    )


# ── Cursor-level functions ───────────────────────────────


def insert_booking(cur: PgCursor, booking: Booking) -> None:
    """Insert a booking row and its initial history entry.

    Raises:
        DuplicateReferenceError: If the reference is already taken.
    """
    try:
        cur.execute(
            """
            INSERT INTO bookings (
                id, reference, guest_name, guest_email, guest_phone, special_requests,
                check_in, check_out, line_items, addon_lines,
                subtotal_cents, discount_cents, total_cents, currency,
                status, payment_method, payment_reference, failure_reason,
                retry_count, coupon_id, coupon_code
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb,
                    %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                booking.id,
                booking.reference,
                booking.guest.name,
                booking.guest.email,
                booking.guest.phone,
                booking.guest.special_requests,
                booking.check_in,
                booking.check_out,
                line_items_to_json(booking.line_items),
                addon_lines_to_json(booking.addon_lines),
                booking.subtotal_cents,
                booking.discount_cents,
                booking.total_cents,
                booking.currency,
                booking.status.value,
                booking.payment_method.value if booking.payment_method else None,
                booking.payment_reference,
                booking.failure_reason,
                booking.retry_count,
                booking.coupon_id,
                booking.coupon_code,
            ),
        )
    except psycopg2.errors.UniqueViolation as e:
        raise DuplicateReferenceError(booking.reference) from e

    insert_history(cur, booking_id=booking.id, from_status=None, to_status=booking.status, reason="created")


def insert_history(
    cur: PgCursor,
    *,
    booking_id: str,
    from_status: BookingStatus | None,
    to_status: BookingStatus,
    reason: str | None,
) -> None:
    cur.execute(
        """
        INSERT INTO booking_status_history (booking_id, from_status, to_status, reason)
        VALUES (%s, %s, %s, %s)
        """,
        (booking_id, from_status.value if from_status else None, to_status.value, reason),
    )


def _row_to_booking(row: tuple[Any, ...], history: tuple[StatusChange, ...]) -> Booking:
    return Booking(
        id=str(row[0]),
        reference=row[1],
        guest=GuestDetails(
            name=row[2] or "",
            email=row[3] or "",
            phone=row[4] or "",
            special_requests=row[5] or "",
        ),
        check_in=row[6],
        check_out=row[7],
        line_items=line_items_from_json(row[8]),
        addon_lines=addon_lines_from_json(row[9]),
        subtotal_cents=row[10],
        discount_cents=row[11],
        total_cents=row[12],
        currency=row[13],
        status=BookingStatus(row[14]),
        payment_method=PaymentMethod(row[15]) if row[15] else None,
        payment_reference=row[16],
        failure_reason=row[17],
        retry_count=row[18] or 0,
        coupon_id=str(row[19]) if row[19] else None,
        coupon_code=row[20],
        created_at=row[21],
        history=history,
    )


def fetch_history(cur: PgCursor, booking_id: str) -> tuple[StatusChange, ...]:
    cur.execute(
        """
        SELECT from_status, to_status, created_at, reason
        FROM booking_status_history
        WHERE booking_id = %s
        ORDER BY created_at, id
        """,
        (booking_id,),
    )
    return tuple(
        StatusChange(
            from_status=BookingStatus(r[0]) if r[0] else None,
            to_status=BookingStatus(r[1]),
            at=r[2],
            reason=r[3],
        )
        for r in cur.fetchall()
    )


def get_booking(cur: PgCursor, booking_id: str) -> Booking | None:
    cur.execute(f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = %s", (booking_id,))
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_booking(row, fetch_history(cur, booking_id))


def get_booking_by_payment_reference(cur: PgCursor, payment_reference: str) -> Booking | None:
    cur.execute(
        f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE payment_reference = %s",
        (payment_reference,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_booking(row, fetch_history(cur, str(row[0])))


def get_booking_by_reference(cur: PgCursor, reference: str) -> Booking | None:
    cur.execute(f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE reference = %s", (reference,))
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_booking(row, fetch_history(cur, str(row[0])))


def _field_value(name: str, value: Any) -> Any:
    if name == "line_items":
        return line_items_to_json(value)
    if name == "addon_lines":
        return addon_lines_to_json(value)
    return value


def transition_status(
    cur: PgCursor,
    booking_id: str,
    *,
    from_statuses: Iterable[BookingStatus],
    to_status: BookingStatus,
    reason: str | None = None,
    fields: dict[str, Any] | None = None,
) -> bool:
    """Conditionally move a booking to to_status and record history.

    The row is locked first so the history entry carries the status that was
    actually replaced; the UPDATE itself is still guarded by status.

    Returns:
        True if the booking changed, False if its status was not in
        from_statuses (or it does not exist).

    Raises:
        ValueError: If fields names a column outside UPDATABLE_FIELDS.
    """
    fields = fields or {}
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update booking fields: {sorted(unknown)}")

    allowed = [s.value for s in from_statuses]

    cur.execute("SELECT status FROM bookings WHERE id = %s FOR UPDATE", (booking_id,))
    row = cur.fetchone()
    if row is None or row[0] not in allowed:
        return False

    assignments = ["status = %s"]
    params: list[Any] = [to_status.value]
    for name in sorted(fields):
        cast = "::jsonb" if name in _JSON_FIELDS else ""
        assignments.append(f"{name} = %s{cast}")
        params.append(_field_value(name, fields[name]))

    cur.execute(
        f"""
        UPDATE bookings
        SET {", ".join(assignments)}, updated_at = now()
        WHERE id = %s AND status = ANY(%s)
        """,
        (*params, booking_id, allowed),
    )
    if cur.rowcount == 0:
        return False

    insert_history(
        cur,
        booking_id=booking_id,
        from_status=BookingStatus(row[0]),
        to_status=to_status,
        reason=reason,
    )
    return True


def update_payment(
    cur: PgCursor,
    booking_id: str,
    *,
    payment_method: str,
    payment_reference: str | None,
) -> None:
    cur.execute(
        """
        UPDATE bookings
        SET payment_method = %s, payment_reference = %s, updated_at = now()
        WHERE id = %s
        """,
        (payment_method, payment_reference, booking_id),
    )


# ── BookingStore ─────────────────────────────────────────


class PostgresBookingStore:
    """BookingStore backed by Postgres, one short transaction per call."""

    def create(self, booking: Booking) -> None:
        with txn() as cur:
            insert_booking(cur, booking)

    def get(self, booking_id: str) -> Booking | None:
        with txn() as cur:
            return get_booking(cur, booking_id)

    def find_by_payment_reference(self, provider_reference: str) -> Booking | None:
        with txn() as cur:
            return get_booking_by_payment_reference(cur, provider_reference)

    def find_by_reference(self, reference: str) -> Booking | None:
        with txn() as cur:
            return get_booking_by_reference(cur, reference)

    def transition(
        self,
        booking_id: str,
        *,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        reason: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        with txn() as cur:
            return transition_status(
                cur,
                booking_id,
                from_statuses=from_statuses,
                to_status=to_status,
                reason=reason,
                fields=fields,
            )

    def update_payment(
        self,
        booking_id: str,
        *,
        payment_method: str,
        payment_reference: str | None,
    ) -> None:
        with txn() as cur:
            update_payment(
                cur,
                booking_id,
                payment_method=payment_method,
                payment_reference=payment_reference,
            )
