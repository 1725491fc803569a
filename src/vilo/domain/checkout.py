"""Checkout state machine - a pure reducer over CheckoutSession.

Every event goes through apply(session, event), which returns a new session
with per-room adjusted totals, aggregates and the coupon discount already
recomputed. Nothing in here performs I/O except the optional coupon store
lookup used to re-evaluate a coupon once its subtotal snapshot is stale.

Steps are strictly linear:

    selecting_room -> selecting_addons -> entering_guest_details -> selecting_payment

Going back is always allowed. Going forward is gated by the checks in
room_step_errors() and validate_guest_details().
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, Union

from vilo.domain.coupons import CouponInvalid, CouponRequest, evaluate_coupon, needs_revalidation
from vilo.domain.models import (
    Addon,
    AddonSelection,
    Availability,
    CheckoutSession,
    CheckoutStep,
    GuestDetails,
    Room,
    RoomSelection,
    StayPricing,
)
from vilo.domain.ports import CouponStore
from vilo.domain.room_pricing import estimate_selection, price_selection
from vilo.domain.totals import compute_totals

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PHONE_DIGITS = 10

_STEP_ORDER = (
    CheckoutStep.SELECTING_ROOM,
    CheckoutStep.SELECTING_ADDONS,
    CheckoutStep.ENTERING_GUEST_DETAILS,
    CheckoutStep.SELECTING_PAYMENT,
)


class CheckoutValidationError(Exception):
    """Session is not in a state that allows the requested transition."""

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        detail = "; ".join(f"{k}: {v}" for k, v in self.field_errors.items())
        super().__init__(detail or "checkout validation failed")


class PricingUnavailable(CheckoutValidationError):
    """One or more selected rooms have no confirmed pricing."""


class RoomNotSelectable(Exception):
    """Room cannot be selected for the current dates."""

    def __init__(self, room_id: str, reason: str):
        self.room_id = room_id
        self.reason = reason
        super().__init__(f"Room {room_id} not selectable: {reason}")


# ── Events ───────────────────────────────────────────────


@dataclass(frozen=True)
class DatesChanged:
    check_in: date
    check_out: date


@dataclass(frozen=True)
class RoomSelected:
    room: Room
    adults: int = 1
    child_ages: tuple[int, ...] = ()


@dataclass(frozen=True)
class RoomDeselected:
    room_id: str


@dataclass(frozen=True)
class GuestsChanged:
    room_id: str
    adults: int
    child_ages: tuple[int, ...] = ()


@dataclass(frozen=True)
class PricingLoaded:
    room_id: str
    pricing: StayPricing


@dataclass(frozen=True)
class PricingFailed:
    room_id: str
    error: str = ""


@dataclass(frozen=True)
class AvailabilityUpdated:
    room_id: str
    availability: Availability


@dataclass(frozen=True)
class AddonSet:
    addon: Addon
    quantity: int = 1


@dataclass(frozen=True)
class AddonRemoved:
    addon_id: str


@dataclass(frozen=True)
class CouponApplied:
    code: str


@dataclass(frozen=True)
class CouponRemoved:
    pass


@dataclass(frozen=True)
class GuestDetailsChanged:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    special_requests: str | None = None


@dataclass(frozen=True)
class StepForward:
    pass


@dataclass(frozen=True)
class StepBack:
    pass


CheckoutEvent = Union[
    DatesChanged,
    RoomSelected,
    RoomDeselected,
    GuestsChanged,
    PricingLoaded,
    PricingFailed,
    AvailabilityUpdated,
    AddonSet,
    AddonRemoved,
    CouponApplied,
    CouponRemoved,
    GuestDetailsChanged,
    StepForward,
    StepBack,
]


# ── Validation ───────────────────────────────────────────


def validate_guest_details(guest: GuestDetails) -> dict[str, str]:
    """Return field errors for guest contact details (empty when valid)."""
    errors: dict[str, str] = {}
    if not guest.name.strip():
        errors["name"] = "Name is required"
    if not EMAIL_RE.match(guest.email.strip()):
        errors["email"] = "A valid email address is required"
    digits = re.sub(r"\D", "", guest.phone)
    if len(digits) < MIN_PHONE_DIGITS:
        errors["phone"] = f"Phone number must have at least {MIN_PHONE_DIGITS} digits"
    return errors


def room_step_errors(session: CheckoutSession) -> dict[str, str]:
    errors: dict[str, str] = {}
    if session.check_in is None or session.check_out is None:
        errors["dates"] = "Check-in and check-out dates are required"
    if not session.rooms:
        errors["rooms"] = "Select at least one room"
    unpriced = [s.room.id for s in session.rooms if s.pricing is None]
    if unpriced:
        errors["pricing"] = "Pricing unavailable for: " + ", ".join(unpriced)
    return errors


def _raise_room_step(errors: dict[str, str]) -> None:
    if not errors:
        return
    if set(errors) == {"pricing"}:
        raise PricingUnavailable(errors)
    raise CheckoutValidationError(errors)


def _validate_guests(room: Room, adults: int, child_ages: tuple[int, ...]) -> None:
    errors: dict[str, str] = {}
    if adults < 1:
        errors["adults"] = "At least one adult is required"
    if any(age < 0 for age in child_ages):
        errors["child_ages"] = "Child ages must be >= 0"
    if adults + len(child_ages) > room.max_guests:
        errors["guests"] = f"{room.name} sleeps at most {room.max_guests} guests"
    if errors:
        raise CheckoutValidationError(errors)


def availability_problem(availability: Availability) -> str | None:
    if not availability.available or availability.is_booked_out:
        return "booked out"
    if not availability.meets_min_stay:
        return f"minimum stay is {availability.min_stay_nights} nights"
    if not availability.meets_max_stay:
        return f"maximum stay is {availability.max_stay_nights} nights"
    return None


def _stay_problem(room: Room, nights: int) -> str | None:
    if nights <= 0:
        return None
    if nights < room.min_stay_nights:
        return f"minimum stay is {room.min_stay_nights} nights"
    if room.max_stay_nights is not None and nights > room.max_stay_nights:
        return f"maximum stay is {room.max_stay_nights} nights"
    return None


def assert_payable(session: CheckoutSession) -> None:
    """Raise unless the session can be turned into a booking.

    Raises:
        PricingUnavailable: If a selected room has no StayPricing.
        CheckoutValidationError: If the step, dates, guest details, the
            coupon snapshot or the derived totals are not consistent.
    """
    if session.step != CheckoutStep.SELECTING_PAYMENT:
        raise CheckoutValidationError({"step": f"session is at {session.step.value}"})
    _raise_room_step(room_step_errors(session))
    guest_errors = validate_guest_details(session.guest)
    if guest_errors:
        raise CheckoutValidationError(guest_errors)

    if session.coupon is not None and needs_revalidation(
        session.coupon,
        compute_totals(session.rooms, session.addons).subtotal_cents,
        session.guest.email,
    ):
        raise CheckoutValidationError({"coupon": "coupon was not checked for this booking"})

    discount = session.coupon.discount_cents if session.coupon else 0
    totals = compute_totals(session.rooms, session.addons, discount)
    if (
        totals.grand_total_cents != session.grand_total_cents
        or totals.room_total_cents != session.room_total_cents
        or totals.addons_total_cents != session.addons_total_cents
    ):
        raise CheckoutValidationError({"totals": "session totals are stale"})


# ── Reducer ──────────────────────────────────────────────


@dataclass(frozen=True)
class _Context:
    coupons: CouponStore | None
    today: date | None


def _derive_selection(session: CheckoutSession, selection: RoomSelection) -> RoomSelection:
    if selection.pricing is not None:
        return price_selection(selection)
    if selection.room.id in session.pricing_errors and session.nights > 0:
        return estimate_selection(selection, session.nights)
    return replace(selection, adjusted_total_cents=None)


def _revalidate_coupon(session: CheckoutSession, subtotal: int, ctx: _Context) -> CheckoutSession:
    applied = session.coupon
    if applied is None or not needs_revalidation(applied, subtotal, session.guest.email):
        return session

    code = applied.coupon.code
    if ctx.coupons is None:
        return replace(
            session,
            coupon=None,
            notices=session.notices + (f"Coupon {code} was removed because your booking changed",),
        )

    try:
        refreshed = evaluate_coupon(
            ctx.coupons,
            CouponRequest(
                code=code,
                subtotal_cents=subtotal,
                room_ids=tuple(s.room.id for s in session.rooms),
                nights=session.nights,
                check_in=session.check_in,
                check_out=session.check_out,
                customer_email=session.guest.email or None,
                booking_id=session.booking_id,
            ),
            today=ctx.today,
        )
    except CouponInvalid as exc:
        return replace(
            session,
            coupon=None,
            notices=session.notices
            + (f"Coupon {code} was removed: {'; '.join(exc.messages)}",),
        )
    return replace(session, coupon=refreshed)


def _step_index(step: CheckoutStep) -> int:
    return _STEP_ORDER.index(step)


def _recompute(session: CheckoutSession, ctx: _Context) -> CheckoutSession:
    rooms = tuple(_derive_selection(session, s) for s in session.rooms)
    session = replace(session, rooms=rooms)

    subtotal = compute_totals(rooms, session.addons).subtotal_cents
    session = _revalidate_coupon(session, subtotal, ctx)

    discount = session.coupon.discount_cents if session.coupon else 0
    totals = compute_totals(rooms, session.addons, discount)
    session = replace(
        session,
        room_total_cents=totals.room_total_cents,
        addons_total_cents=totals.addons_total_cents,
        discount_cents=totals.discount_cents,
        grand_total_cents=totals.grand_total_cents,
    )

    # A change upstream can invalidate a step already passed.
    if _step_index(session.step) > 0 and room_step_errors(session):
        session = replace(session, step=CheckoutStep.SELECTING_ROOM)
    elif session.step == CheckoutStep.SELECTING_PAYMENT and validate_guest_details(session.guest):
        session = replace(session, step=CheckoutStep.ENTERING_GUEST_DETAILS)
    return session


def _drop_room(session: CheckoutSession, room_id: str, notice: str) -> CheckoutSession:
    return replace(
        session,
        rooms=tuple(s for s in session.rooms if s.room.id != room_id),
        notices=session.notices + (notice,),
    )


def _on_dates_changed(session: CheckoutSession, event: DatesChanged, ctx: _Context) -> CheckoutSession:
    if event.check_out <= event.check_in:
        raise CheckoutValidationError({"dates": "Check-out must be after check-in"})

    session = replace(
        session,
        check_in=event.check_in,
        check_out=event.check_out,
        availability={},
        pricing_errors=frozenset(),
        rooms=tuple(replace(s, pricing=None, adjusted_total_cents=None) for s in session.rooms),
    )
    for selection in session.rooms:
        problem = _stay_problem(selection.room, session.nights)
        if problem:
            session = _drop_room(
                session,
                selection.room.id,
                f"{selection.room.name} was removed: {problem}",
            )
    return session


def _on_room_selected(session: CheckoutSession, event: RoomSelected, ctx: _Context) -> CheckoutSession:
    room = event.room
    if not room.is_active:
        raise RoomNotSelectable(room.id, "room is not available for booking")

    known = session.availability.get(room.id)
    if known is not None:
        problem = availability_problem(known)
        if problem:
            raise RoomNotSelectable(room.id, problem)
    problem = _stay_problem(room, session.nights)
    if problem:
        raise RoomNotSelectable(room.id, problem)

    child_ages = tuple(event.child_ages)
    _validate_guests(room, event.adults, child_ages)

    existing = session.selection_for(room.id)
    if existing is not None:
        updated = replace(existing, room=room, adults=event.adults, child_ages=child_ages)
        rooms = tuple(updated if s.room.id == room.id else s for s in session.rooms)
    else:
        rooms = session.rooms + (RoomSelection(room=room, adults=event.adults, child_ages=child_ages),)
    return replace(session, rooms=rooms)


def _on_room_deselected(session: CheckoutSession, event: RoomDeselected, ctx: _Context) -> CheckoutSession:
    return replace(
        session,
        rooms=tuple(s for s in session.rooms if s.room.id != event.room_id),
        pricing_errors=session.pricing_errors - {event.room_id},
    )


def _on_guests_changed(session: CheckoutSession, event: GuestsChanged, ctx: _Context) -> CheckoutSession:
    existing = session.selection_for(event.room_id)
    if existing is None:
        raise CheckoutValidationError({"room": f"Room {event.room_id} is not selected"})
    child_ages = tuple(event.child_ages)
    _validate_guests(existing.room, event.adults, child_ages)
    updated = replace(existing, adults=event.adults, child_ages=child_ages)
    return replace(
        session,
        rooms=tuple(updated if s.room.id == event.room_id else s for s in session.rooms),
    )


def _pricing_matches_dates(session: CheckoutSession, pricing: StayPricing) -> bool:
    if pricing.night_count != session.nights:
        return False
    return not pricing.nights or pricing.nights[0].date == session.check_in


def _on_pricing_loaded(session: CheckoutSession, event: PricingLoaded, ctx: _Context) -> CheckoutSession:
    existing = session.selection_for(event.room_id)
    # Late responses for a deselected room or for previous dates are ignored.
    if existing is None or not _pricing_matches_dates(session, event.pricing):
        return session
    updated = replace(existing, pricing=event.pricing)
    return replace(
        session,
        rooms=tuple(updated if s.room.id == event.room_id else s for s in session.rooms),
        pricing_errors=session.pricing_errors - {event.room_id},
    )


def _on_pricing_failed(session: CheckoutSession, event: PricingFailed, ctx: _Context) -> CheckoutSession:
    existing = session.selection_for(event.room_id)
    if existing is None:
        return session
    updated = replace(existing, pricing=None)
    return replace(
        session,
        rooms=tuple(updated if s.room.id == event.room_id else s for s in session.rooms),
        pricing_errors=session.pricing_errors | {event.room_id},
    )


def _on_availability_updated(
    session: CheckoutSession, event: AvailabilityUpdated, ctx: _Context
) -> CheckoutSession:
    availability = dict(session.availability)
    availability[event.room_id] = event.availability
    session = replace(session, availability=availability)

    existing = session.selection_for(event.room_id)
    problem = availability_problem(event.availability)
    if existing is not None and problem:
        session = _drop_room(session, event.room_id, f"{existing.room.name} was removed: {problem}")
    return session


def _on_addon_set(session: CheckoutSession, event: AddonSet, ctx: _Context) -> CheckoutSession:
    addon = event.addon
    if event.quantity <= 0:
        return _on_addon_removed(session, AddonRemoved(addon.id), ctx)
    if event.quantity > addon.max_quantity:
        raise CheckoutValidationError(
            {"quantity": f"{addon.name} allows at most {addon.max_quantity}"}
        )
    selection = AddonSelection(addon=addon, quantity=event.quantity)
    if any(a.addon.id == addon.id for a in session.addons):
        addons = tuple(selection if a.addon.id == addon.id else a for a in session.addons)
    else:
        addons = session.addons + (selection,)
    return replace(session, addons=addons)


def _on_addon_removed(session: CheckoutSession, event: AddonRemoved, ctx: _Context) -> CheckoutSession:
    return replace(session, addons=tuple(a for a in session.addons if a.addon.id != event.addon_id))


def _on_coupon_applied(session: CheckoutSession, event: CouponApplied, ctx: _Context) -> CheckoutSession:
    if ctx.coupons is None:
        raise CheckoutValidationError({"coupon": "Coupons cannot be validated right now"})
    rooms = tuple(_derive_selection(session, s) for s in session.rooms)
    subtotal = compute_totals(rooms, session.addons).subtotal_cents
    applied = evaluate_coupon(
        ctx.coupons,
        CouponRequest(
            code=event.code,
            subtotal_cents=subtotal,
            room_ids=tuple(s.room.id for s in rooms),
            nights=session.nights,
            check_in=session.check_in,
            check_out=session.check_out,
            customer_email=session.guest.email or None,
            booking_id=session.booking_id,
        ),
        today=ctx.today,
    )
    return replace(session, coupon=applied)


def _on_coupon_removed(session: CheckoutSession, event: CouponRemoved, ctx: _Context) -> CheckoutSession:
    return replace(session, coupon=None)


def _on_guest_details_changed(
    session: CheckoutSession, event: GuestDetailsChanged, ctx: _Context
) -> CheckoutSession:
    guest = session.guest
    changes = {
        name: value
        for name, value in (
            ("name", event.name),
            ("email", event.email),
            ("phone", event.phone),
            ("special_requests", event.special_requests),
        )
        if value is not None
    }
    return replace(session, guest=replace(guest, **changes))


def _on_step_forward(session: CheckoutSession, event: StepForward, ctx: _Context) -> CheckoutSession:
    step = session.step
    if step == CheckoutStep.SELECTING_PAYMENT:
        raise CheckoutValidationError({"step": "selecting_payment is the last step"})
    if step == CheckoutStep.SELECTING_ROOM:
        _raise_room_step(room_step_errors(session))
    elif step == CheckoutStep.ENTERING_GUEST_DETAILS:
        errors = validate_guest_details(session.guest)
        if errors:
            raise CheckoutValidationError(errors)
    return replace(session, step=_STEP_ORDER[_step_index(step) + 1])


def _on_step_back(session: CheckoutSession, event: StepBack, ctx: _Context) -> CheckoutSession:
    index = _step_index(session.step)
    if index == 0:
        return session
    return replace(session, step=_STEP_ORDER[index - 1])


_HANDLERS: dict[type, Callable[[CheckoutSession, object, _Context], CheckoutSession]] = {
    DatesChanged: _on_dates_changed,
    RoomSelected: _on_room_selected,
    RoomDeselected: _on_room_deselected,
    GuestsChanged: _on_guests_changed,
    PricingLoaded: _on_pricing_loaded,
    PricingFailed: _on_pricing_failed,
    AvailabilityUpdated: _on_availability_updated,
    AddonSet: _on_addon_set,
    AddonRemoved: _on_addon_removed,
    CouponApplied: _on_coupon_applied,
    CouponRemoved: _on_coupon_removed,
    GuestDetailsChanged: _on_guest_details_changed,
    StepForward: _on_step_forward,
    StepBack: _on_step_back,
}


def apply(
    session: CheckoutSession,
    event: CheckoutEvent,
    *,
    coupons: CouponStore | None = None,
    today: date | None = None,
) -> CheckoutSession:
    """Apply one event and return the new session with totals recomputed.

    Args:
        session: Current session (never mutated).
        event: One of the checkout events defined in this module.
        coupons: Coupon store used by CouponApplied and to re-evaluate an
            applied coupon whose subtotal or customer email changed. Without
            it a stale coupon is dropped with a notice.
        today: Date used for coupon validity windows (defaults to today).

    Returns:
        New CheckoutSession.

    Raises:
        CheckoutValidationError: Gated step progression or invalid input.
        RoomNotSelectable: Room fails known availability or stay rules.
        CouponInvalid: CouponApplied with a code that does not apply.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown checkout event: {type(event).__name__}")
    ctx = _Context(coupons=coupons, today=today)
    session = handler(session, event, ctx)
    return _recompute(session, ctx)


def apply_all(
    session: CheckoutSession,
    events: list[CheckoutEvent],
    *,
    coupons: CouponStore | None = None,
    today: date | None = None,
) -> CheckoutSession:
    for event in events:
        session = apply(session, event, coupons=coupons, today=today)
    return session
