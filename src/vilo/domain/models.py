"""Checkout and booking value types.

All money is integer cents. Every type here is immutable: the checkout
reducer and the booking orchestrator produce new values instead of mutating
existing ones, so a derived total can never drift away from its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class PricingMode(str, Enum):
    PER_UNIT = "per_unit"
    PER_PERSON = "per_person"
    PER_PERSON_SHARING = "per_person_sharing"

    @classmethod
    def parse(cls, value: PricingMode | str | None) -> PricingMode:
        """Parse a stored pricing mode; unset or unknown values mean per_unit."""
        if isinstance(value, PricingMode):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.PER_UNIT


class AddonPricingType(str, Enum):
    PER_BOOKING = "per_booking"
    PER_NIGHT = "per_night"
    PER_GUEST = "per_guest"
    PER_GUEST_PER_NIGHT = "per_guest_per_night"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_NIGHTS = "free_nights"


class CheckoutStep(str, Enum):
    SELECTING_ROOM = "selecting_room"
    SELECTING_ADDONS = "selecting_addons"
    ENTERING_GUEST_DETAILS = "entering_guest_details"
    SELECTING_PAYMENT = "selecting_payment"


class BookingStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    CART_ABANDONED = "cart_abandoned"


class PaymentMethod(str, Enum):
    PAYSTACK = "paystack"
    EFT = "eft"


# ── Reference data ───────────────────────────────────────


@dataclass(frozen=True)
class Room:
    """A bookable room type and its guest pricing policy."""

    id: str
    name: str
    base_price_cents: int
    pricing_mode: PricingMode | None = None
    max_guests: int = 2
    child_free_until_age: int = 0
    child_age_limit: int = 12
    child_price_per_night_cents: int | None = None
    additional_person_rate_cents: int | None = None
    min_stay_nights: int = 1
    max_stay_nights: int | None = None
    total_units: int = 1
    is_active: bool = True
    currency: str = "ZAR"


@dataclass(frozen=True)
class NightRate:
    date: date
    rate_cents: int
    rate_name: str | None = None  # seasonal rate name, None for base rate


@dataclass(frozen=True)
class StayPricing:
    """Per-night rate breakdown for one room over one date range."""

    nights: tuple[NightRate, ...]
    currency: str = "ZAR"

    @property
    def subtotal_cents(self) -> int:
        return sum(n.rate_cents for n in self.nights)

    @property
    def night_count(self) -> int:
        return len(self.nights)

    @property
    def average_nightly_rate(self) -> Decimal | None:
        if not self.nights:
            return None
        return Decimal(self.subtotal_cents) / Decimal(self.night_count)


@dataclass(frozen=True)
class Availability:
    available: bool
    available_units: int
    min_stay_nights: int = 1
    meets_min_stay: bool = True
    max_stay_nights: int | None = None
    meets_max_stay: bool = True

    @property
    def is_booked_out(self) -> bool:
        return self.available_units <= 0


@dataclass(frozen=True)
class Addon:
    id: str
    name: str
    price_cents: int
    pricing_type: AddonPricingType = AddonPricingType.PER_BOOKING
    max_quantity: int = 10


@dataclass(frozen=True)
class Coupon:
    """Promotional code.

    discount_value is a percentage for PERCENTAGE, cents for FIXED_AMOUNT and
    a night count for FREE_NIGHTS. An empty applicable_room_ids means the
    coupon applies to every room.
    """

    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    name: str = ""
    applicable_room_ids: frozenset[str] = frozenset()
    valid_from: date | None = None
    valid_until: date | None = None
    min_nights: int | None = None
    min_booking_amount_cents: int | None = None
    max_uses: int | None = None
    max_uses_per_customer: int | None = None
    current_uses: int = 0
    excluded_customer_emails: frozenset[str] = frozenset()
    is_active: bool = True


# ── Checkout session ─────────────────────────────────────


@dataclass(frozen=True)
class RoomSelection:
    room: Room
    adults: int = 1
    child_ages: tuple[int, ...] = ()
    pricing: StayPricing | None = None
    adjusted_total_cents: int | None = None

    @property
    def children(self) -> int:
        return len(self.child_ages)

    @property
    def guest_count(self) -> int:
        return self.adults + self.children


@dataclass(frozen=True)
class AddonSelection:
    addon: Addon
    quantity: int = 1


@dataclass(frozen=True)
class AppliedCoupon:
    """A coupon plus the discount computed against one subtotal snapshot."""

    coupon: Coupon
    discount_cents: int
    subtotal_cents: int
    # Normalised email the customer checks ran against; None if they were skipped
    customer_email: str | None = None


@dataclass(frozen=True)
class GuestDetails:
    name: str = ""
    email: str = ""
    phone: str = ""
    special_requests: str = ""


@dataclass(frozen=True)
class CheckoutSession:
    """Client-side checkout state. Totals are derived by the reducer only."""

    step: CheckoutStep = CheckoutStep.SELECTING_ROOM
    check_in: date | None = None
    check_out: date | None = None
    rooms: tuple[RoomSelection, ...] = ()
    addons: tuple[AddonSelection, ...] = ()
    guest: GuestDetails = field(default_factory=GuestDetails)
    coupon: AppliedCoupon | None = None
    currency: str = "ZAR"
    booking_id: str | None = None  # set when re-pricing an existing booking
    availability: dict[str, Availability] = field(default_factory=dict)
    pricing_errors: frozenset[str] = frozenset()
    notices: tuple[str, ...] = ()
    room_total_cents: int = 0
    addons_total_cents: int = 0
    discount_cents: int = 0
    grand_total_cents: int = 0

    @property
    def nights(self) -> int:
        if self.check_in is None or self.check_out is None:
            return 0
        return max(0, (self.check_out - self.check_in).days)

    @property
    def subtotal_cents(self) -> int:
        return self.room_total_cents + self.addons_total_cents

    def selection_for(self, room_id: str) -> RoomSelection | None:
        for selection in self.rooms:
            if selection.room.id == room_id:
                return selection
        return None


# ── Booking (durable) ────────────────────────────────────


@dataclass(frozen=True)
class BookingLineItem:
    """Frozen copy of a room selection's pricing at booking time."""

    room_id: str
    room_name: str
    pricing_mode: PricingMode
    adults: int
    child_ages: tuple[int, ...]
    nightly_rates: tuple[NightRate, ...]
    subtotal_cents: int
    adjusted_total_cents: int


@dataclass(frozen=True)
class BookingAddonLine:
    addon_id: str
    name: str
    pricing_type: AddonPricingType
    unit_price_cents: int
    quantity: int
    total_cents: int


@dataclass(frozen=True)
class StatusChange:
    from_status: BookingStatus | None
    to_status: BookingStatus
    at: datetime
    reason: str | None = None


@dataclass(frozen=True)
class Booking:
    id: str
    reference: str
    guest: GuestDetails
    check_in: date
    check_out: date
    line_items: tuple[BookingLineItem, ...]
    addon_lines: tuple[BookingAddonLine, ...]
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    currency: str
    status: BookingStatus
    payment_method: PaymentMethod | None = None
    coupon_id: str | None = None
    coupon_code: str | None = None
    payment_reference: str | None = None
    failure_reason: str | None = None
    retry_count: int = 0
    history: tuple[StatusChange, ...] = ()
    created_at: datetime | None = None

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days
