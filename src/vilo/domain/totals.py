"""Booking price aggregation across rooms, add-ons and discount."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from vilo.domain.addons import selection_total
from vilo.domain.models import AddonSelection, RoomSelection


@dataclass(frozen=True)
class Totals:
    room_total_cents: int
    addons_total_cents: int
    discount_cents: int
    grand_total_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.room_total_cents + self.addons_total_cents


def room_total(selections: Sequence[RoomSelection]) -> int:
    """Sum adjusted totals, falling back to the raw StayPricing subtotal."""
    total = 0
    for selection in selections:
        if selection.adjusted_total_cents is not None:
            total += selection.adjusted_total_cents
        elif selection.pricing is not None:
            total += selection.pricing.subtotal_cents
    return total


def total_guests(selections: Sequence[RoomSelection]) -> int:
    return sum(s.guest_count for s in selections)


def stay_nights(selections: Sequence[RoomSelection]) -> int:
    """Night count of the first priced room (every room shares the dates)."""
    for selection in selections:
        if selection.pricing is not None:
            return selection.pricing.night_count
    return 0


def addons_total(
    addon_selections: Sequence[AddonSelection], *, nights: int, guests: int
) -> int:
    return sum(
        selection_total(a, nights=nights, total_guests=guests)
        for a in addon_selections
    )


def compute_totals(
    selections: Sequence[RoomSelection],
    addon_selections: Sequence[AddonSelection],
    discount_cents: int = 0,
    *,
    nights: int | None = None,
) -> Totals:
    """Aggregate room, add-on and discount amounts into a grand total.

    Args:
        selections: Room selections (adjusted totals already derived).
        addon_selections: Selected add-ons.
        discount_cents: Applied coupon discount.
        nights: Stay length override; defaults to the first priced room's.

    Returns:
        Totals where grand_total_cents is never negative.
    """
    if discount_cents < 0:
        raise ValueError("discount_cents must be >= 0")

    rooms = room_total(selections)
    if nights is None:
        nights = stay_nights(selections)
    addons = addons_total(addon_selections, nights=nights, guests=total_guests(selections))

    return Totals(
        room_total_cents=rooms,
        addons_total_cents=addons,
        discount_cents=discount_cents,
        grand_total_cents=max(0, rooms + addons - discount_cents),
    )
