"""Rates, availability and catalog lookups.

Uses raw SQL with psycopg2 (no ORM). The async adapters run the blocking
queries in a worker thread so CheckoutService can gather them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Sequence

from psycopg2.extensions import cursor as PgCursor

from vilo.domain.models import (
    Addon,
    AddonPricingType,
    Availability,
    BookingStatus,
    NightRate,
    PricingMode,
    Room,
    StayPricing,
)
from vilo.infra.db import txn

# Bookings in these statuses hold inventory
HOLDING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.PAID.value)


@dataclass(frozen=True)
class SeasonalRate:
    name: str
    start_date: date
    end_date: date  # inclusive
    price_per_night_cents: int
    priority: int = 0

    def covers(self, night: date) -> bool:
        return self.start_date <= night <= self.end_date


def iter_nights(check_in: date, check_out: date) -> list[date]:
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def nightly_rates(
    room: Room,
    check_in: date,
    check_out: date,
    seasonal: Sequence[SeasonalRate],
) -> StayPricing:
    """Price each night with the highest-priority seasonal rate covering it.

    Nights without a seasonal rate use the room's base price.

    Raises:
        ValueError: If check_out is not after check_in.
    """
    if check_out <= check_in:
        raise ValueError("check_out must be after check_in")

    ranked = sorted(seasonal, key=lambda r: r.priority, reverse=True)
    nights = []
    for night in iter_nights(check_in, check_out):
        rate = next((r for r in ranked if r.covers(night)), None)
        if rate is None:
            nights.append(NightRate(date=night, rate_cents=room.base_price_cents))
        else:
            nights.append(
                NightRate(date=night, rate_cents=rate.price_per_night_cents, rate_name=rate.name)
            )
    return StayPricing(nights=tuple(nights), currency=room.currency)


def build_availability(room: Room, *, nights: int, booked_units: int) -> Availability:
    available_units = max(0, room.total_units - booked_units)
    return Availability(
        available=available_units > 0,
        available_units=available_units,
        min_stay_nights=room.min_stay_nights,
        meets_min_stay=nights >= room.min_stay_nights,
        max_stay_nights=room.max_stay_nights,
        meets_max_stay=room.max_stay_nights is None or nights <= room.max_stay_nights,
    )


# ── Cursor-level functions ───────────────────────────────


def fetch_seasonal_rates(
    cur: PgCursor, room_id: str, check_in: date, check_out: date
) -> list[SeasonalRate]:
    cur.execute(
        """
        SELECT name, start_date, end_date, price_per_night_cents, priority
        FROM seasonal_rates
        WHERE room_id = %s
          AND is_active = true
          AND start_date < %s
          AND end_date >= %s
        ORDER BY priority DESC
        """,
        (room_id, check_out, check_in),
    )
    return [
        SeasonalRate(
            name=r[0],
            start_date=r[1],
            end_date=r[2],
            price_per_night_cents=r[3],
            priority=r[4] or 0,
        )
        for r in cur.fetchall()
    ]


def count_booked_units(cur: PgCursor, room_id: str, check_in: date, check_out: date) -> int:
    """Count line items for room_id on bookings overlapping the stay."""
    cur.execute(
        """
        SELECT count(*)
        FROM bookings b
        CROSS JOIN LATERAL jsonb_array_elements(b.line_items) AS li
        WHERE li ->> 'room_id' = %s
          AND b.status = ANY(%s)
          AND b.check_in < %s
          AND b.check_out > %s
        """,
        (room_id, list(HOLDING_STATUSES), check_out, check_in),
    )
    row = cur.fetchone()
    return int(row[0]) if row else 0


_ROOM_COLUMNS = """
    id, name, base_price_cents, pricing_mode, max_guests,
    child_free_until_age, child_age_limit, child_price_per_night_cents,
    additional_person_rate_cents, min_stay_nights, max_stay_nights,
    total_units, is_active, currency
"""


def _row_to_room(row: tuple[Any, ...]) -> Room:
    return Room(
        id=str(row[0]),
        name=row[1],
        base_price_cents=row[2],
        pricing_mode=PricingMode.parse(row[3]),
        max_guests=row[4] if row[4] is not None else 2,
        child_free_until_age=row[5] if row[5] is not None else 0,
        child_age_limit=row[6] if row[6] is not None else 12,
        child_price_per_night_cents=row[7],
        additional_person_rate_cents=row[8],
        min_stay_nights=row[9] if row[9] is not None else 1,
        max_stay_nights=row[10],
        total_units=row[11] if row[11] is not None else 1,
        is_active=bool(row[12]),
        currency=row[13] or "ZAR",
    )


def get_room(cur: PgCursor, room_id: str) -> Room | None:
    cur.execute(f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE id = %s", (room_id,))
    row = cur.fetchone()
    return _row_to_room(row) if row else None


def get_addon(cur: PgCursor, addon_id: str) -> Addon | None:
    """Active add-on by id (inactive add-ons are treated as gone)."""
    cur.execute(
        """
        SELECT id, name, price_cents, pricing_type, max_quantity
        FROM addons
        WHERE id = %s AND is_active = true
        """,
        (addon_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return Addon(
        id=str(row[0]),
        name=row[1],
        price_cents=row[2],
        pricing_type=AddonPricingType(row[3]),
        max_quantity=row[4] if row[4] is not None else 10,
    )


# ── Capability adapters ──────────────────────────────────


def _load_pricing(room: Room, check_in: date, check_out: date) -> StayPricing:
    with txn() as cur:
        seasonal = fetch_seasonal_rates(cur, room.id, check_in, check_out)
    return nightly_rates(room, check_in, check_out, seasonal)


def _load_availability(room: Room, check_in: date, check_out: date) -> Availability:
    with txn() as cur:
        booked = count_booked_units(cur, room.id, check_in, check_out)
    return build_availability(room, nights=(check_out - check_in).days, booked_units=booked)


class PostgresRateLookup:
    async def get_pricing(self, room: Room, check_in: date, check_out: date) -> StayPricing:
        return await asyncio.to_thread(_load_pricing, room, check_in, check_out)


class PostgresAvailabilityCheck:
    async def check(self, room: Room, check_in: date, check_out: date) -> Availability:
        return await asyncio.to_thread(_load_availability, room, check_in, check_out)


class PostgresRoomCatalog:
    def get_room(self, room_id: str) -> Room | None:
        with txn() as cur:
            return get_room(cur, room_id)


class PostgresAddonCatalog:
    def get_addon(self, addon_id: str) -> Addon | None:
        with txn() as cur:
            return get_addon(cur, addon_id)
