"""Room price calculation - guest-adjusted totals per pricing mode.

Pure functions, no I/O. The caller supplies the nightly rate (usually the
average of the stay's per-night rates) and the guest composition.

Child age bands (thresholds belong to the higher band):
- age < child_free_until_age            -> free
- free age <= age < child_age_limit     -> paying child
- age >= child_age_limit                -> billed as an adult
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from vilo.domain.models import PricingMode, Room, RoomSelection


@dataclass(frozen=True)
class ChildBreakdown:
    free: int
    paying: int
    as_adults: int


def to_cents(amount: Decimal | int) -> int:
    """Round a (possibly fractional) cent amount half-up to whole cents."""
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify_children(room: Room, child_ages: Sequence[int]) -> ChildBreakdown:
    """Split child ages into free, paying and billed-as-adult counts."""
    free = paying = as_adults = 0
    for age in child_ages:
        if age < 0:
            raise ValueError(f"invalid child age: {age}")
        if age < room.child_free_until_age:
            free += 1
        elif age < room.child_age_limit:
            paying += 1
        else:
            as_adults += 1
    return ChildBreakdown(free=free, paying=paying, as_adults=as_adults)


def calculate_room_total(
    room: Room,
    *,
    nightly_rate_cents: Decimal | int,
    nights: int,
    adults: int,
    child_ages: Sequence[int] = (),
) -> int:
    """Calculate the guest-adjusted total for one room's stay.

    Args:
        room: Room definition (pricing mode and child policy).
        nightly_rate_cents: Nightly rate for the stay, may be fractional.
        nights: Number of nights.
        adults: Adult count.
        child_ages: Age of every child in the room.

    Returns:
        Total in cents, rounded half-up.

    Raises:
        ValueError: If counts are negative.
    """
    if nights < 0:
        raise ValueError("nights must be >= 0")
    if adults < 0:
        raise ValueError("adults must be >= 0")
    if nights == 0:
        return 0

    rate = Decimal(nightly_rate_cents)
    mode = PricingMode.parse(room.pricing_mode)

    if mode == PricingMode.PER_UNIT:
        return to_cents(rate * nights)

    children = classify_children(room, child_ages)
    occupants = adults + children.as_adults

    if mode == PricingMode.PER_PERSON:
        child_rate = (
            Decimal(room.child_price_per_night_cents)
            if room.child_price_per_night_cents is not None
            else rate
        )
        per_night = occupants * rate + children.paying * child_rate
        return to_cents(per_night * nights)

    # per_person_sharing: first occupant pays base, the rest pay the additional rate
    additional_rate = (
        Decimal(room.additional_person_rate_cents)
        if room.additional_person_rate_cents is not None
        else rate
    )
    if room.child_price_per_night_cents is not None:
        child_rate = min(Decimal(room.child_price_per_night_cents), additional_rate)
    else:
        child_rate = additional_rate

    first = rate if occupants > 0 else Decimal(0)
    per_night = (
        first
        + max(0, occupants - 1) * additional_rate
        + children.paying * child_rate
    )
    return to_cents(per_night * nights)


def price_selection(selection: RoomSelection) -> RoomSelection:
    """Return the selection with adjusted_total_cents derived from its pricing.

    Selections without StayPricing get adjusted_total_cents=None. per_unit
    rooms take the StayPricing subtotal as-is so mixed seasonal rates never
    lose a cent to averaging.
    """
    pricing = selection.pricing
    if pricing is None:
        return replace(selection, adjusted_total_cents=None)

    if PricingMode.parse(selection.room.pricing_mode) == PricingMode.PER_UNIT:
        return replace(selection, adjusted_total_cents=pricing.subtotal_cents)

    average = pricing.average_nightly_rate
    total = calculate_room_total(
        selection.room,
        nightly_rate_cents=average if average is not None else selection.room.base_price_cents,
        nights=pricing.night_count,
        adults=selection.adults,
        child_ages=selection.child_ages,
    )
    return replace(selection, adjusted_total_cents=total)


def estimate_selection(selection: RoomSelection, nights: int) -> RoomSelection:
    """Best-effort display total from the room's base rate.

    Used when the rate lookup failed. The result is never payable: the
    selection keeps pricing=None, which blocks checkout progression.
    """
    total = calculate_room_total(
        selection.room,
        nightly_rate_cents=selection.room.base_price_cents,
        nights=nights,
        adults=selection.adults,
        child_ages=selection.child_ages,
    )
    return replace(selection, pricing=None, adjusted_total_cents=total)
