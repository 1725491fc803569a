"""Domain logic for booking add-ons.

Pure calculation functions for add-on pricing. No DB access here;
the caller supplies nights and the guest count across all rooms.
"""

from __future__ import annotations

from vilo.domain.models import AddonPricingType, AddonSelection, BookingAddonLine


def calculate_addon_total(
    *,
    pricing_type: AddonPricingType | str,
    unit_price_cents: int,
    quantity: int,
    nights: int,
    total_guests: int,
) -> int:
    """Calculate the total for one add-on selection.

    Args:
        pricing_type: One of the AddonPricingType values.
        unit_price_cents: Unit price in cents (>= 0).
        quantity: Number of units (>= 1).
        nights: Number of nights in the stay (>= 0, 0 while unpriced).
        total_guests: adults + children across every selected room (>= 0).

    Returns:
        Computed total in cents.

    Raises:
        ValueError: If pricing_type is unknown or inputs are invalid.
    """
    if isinstance(pricing_type, str):
        pricing_type = AddonPricingType(pricing_type)

    if unit_price_cents < 0:
        raise ValueError("unit_price_cents must be >= 0")
    if quantity < 1:
        raise ValueError("quantity must be >= 1")
    if nights < 0:
        raise ValueError("nights must be >= 0")
    if total_guests < 0:
        raise ValueError("total_guests must be >= 0")

    if pricing_type == AddonPricingType.PER_BOOKING:
        return unit_price_cents * quantity

    if pricing_type == AddonPricingType.PER_NIGHT:
        return unit_price_cents * quantity * nights

    if pricing_type == AddonPricingType.PER_GUEST:
        return unit_price_cents * quantity * total_guests

    if pricing_type == AddonPricingType.PER_GUEST_PER_NIGHT:
        return unit_price_cents * quantity * total_guests * nights

    raise ValueError(f"Unknown pricing type: {pricing_type}")


def selection_total(selection: AddonSelection, *, nights: int, total_guests: int) -> int:
    return calculate_addon_total(
        pricing_type=selection.addon.pricing_type,
        unit_price_cents=selection.addon.price_cents,
        quantity=selection.quantity,
        nights=nights,
        total_guests=total_guests,
    )


def freeze_addon(
    selection: AddonSelection, *, nights: int, total_guests: int
) -> BookingAddonLine:
    """Snapshot an add-on selection into a booking line."""
    return BookingAddonLine(
        addon_id=selection.addon.id,
        name=selection.addon.name,
        pricing_type=selection.addon.pricing_type,
        unit_price_cents=selection.addon.price_cents,
        quantity=selection.quantity,
        total_cents=selection_total(selection, nights=nights, total_guests=total_guests),
    )
