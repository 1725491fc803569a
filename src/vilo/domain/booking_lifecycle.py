"""Booking lifecycle - creation, payment, verification, abandonment, retry.

Status graph:

    draft -> pending
    pending -> paid | payment_failed | cart_abandoned
    payment_failed -> pending (retry) | paid (late verification)
    cart_abandoned -> pending (retry) | paid | payment_failed (verification)
    paid: terminal

Every transition goes through BookingStore.transition(), a compare-and-set
on the current status, so concurrent webhook deliveries and browser
callbacks cannot double-apply a side effect.
"""

from __future__ import annotations

import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Iterable

from vilo.domain.addons import freeze_addon
from vilo.domain.checkout import assert_payable
from vilo.domain.coupons import CouponRequest, evaluate_coupon
from vilo.domain.models import (
    Booking,
    BookingLineItem,
    BookingStatus,
    CheckoutSession,
    PaymentMethod,
    PricingMode,
)
from vilo.domain.ports import BookingStore, CouponStore, PaymentGateway, VerificationResult
from vilo.domain.totals import stay_nights, total_guests
from vilo.infra.settings import EftConfig, EngineSettings
from vilo.infra.time import utc_now, utc_today
from vilo.observability.correlation import get_correlation_id
from vilo.observability.logging import get_logger
from vilo.observability.redaction import safe_log_context
from vilo.tasks.client import TasksClient

logger = get_logger(__name__)

REFERENCE_PREFIX = "VILO-"
# No I, O, 0 or 1: references are read out over the phone
REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERENCE_LENGTH = 4
MAX_REFERENCE_ATTEMPTS = 5
_ATTEMPT_SUFFIX = re.compile(r"-R\d+$")

VERIFICATION_ERROR = "verification_error"

_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.DRAFT: frozenset({BookingStatus.PENDING}),
    BookingStatus.PENDING: frozenset(
        {BookingStatus.PAID, BookingStatus.PAYMENT_FAILED, BookingStatus.CART_ABANDONED}
    ),
    BookingStatus.PAYMENT_FAILED: frozenset({BookingStatus.PENDING, BookingStatus.PAID}),
    BookingStatus.CART_ABANDONED: frozenset(
        {BookingStatus.PENDING, BookingStatus.PAID, BookingStatus.PAYMENT_FAILED}
    ),
    BookingStatus.PAID: frozenset(),
}

RETRYABLE_STATUSES = frozenset({BookingStatus.PAYMENT_FAILED, BookingStatus.CART_ABANDONED})


class BookingNotFoundError(Exception):
    """Booking does not exist."""


class InvalidTransitionError(Exception):
    """Requested status change is not allowed from the current status."""

    def __init__(self, from_status: BookingStatus, to_status: BookingStatus, detail: str = ""):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot move booking from {from_status.value} to {to_status.value}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DuplicateReferenceError(Exception):
    """Raised by a BookingStore when the booking reference is already taken."""


def generate_booking_reference() -> str:
    """Return a reference like VILO-7KQX."""
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))
    return f"{REFERENCE_PREFIX}{suffix}"


def validate_transition(from_status: BookingStatus, to_status: BookingStatus) -> None:
    """Raise InvalidTransitionError unless from_status -> to_status is allowed."""
    if to_status not in _ALLOWED_TRANSITIONS.get(from_status, frozenset()):
        raise InvalidTransitionError(from_status, to_status)


def sources_for(to_status: BookingStatus) -> frozenset[BookingStatus]:
    """Every status that may move to to_status."""
    return frozenset(s for s, targets in _ALLOWED_TRANSITIONS.items() if to_status in targets)


def attempt_reference(booking_reference: str, attempt: int) -> str:
    if attempt == 0:
        return booking_reference
    return f"{booking_reference}-R{attempt}"


def payment_reference_for(booking: Booking) -> str:
    """Provider reference for the booking's current payment attempt.

    Gateways reject a reused reference, so retries carry an attempt suffix.
    """
    return attempt_reference(booking.reference, booking.retry_count)


def booking_reference_of(provider_reference: str) -> str:
    """Strip the attempt suffix: VILO-7KQX-R2 -> VILO-7KQX."""
    return _ATTEMPT_SUFFIX.sub("", provider_reference)


def issued_payment_references(booking: Booking) -> tuple[str, ...]:
    """Paystack references this booking has handed to the gateway, oldest first.

    Empty for EFT bookings and for bookings that never started an online
    payment. A verified success on any of these settles the booking.
    """
    if booking.payment_method != PaymentMethod.PAYSTACK or not booking.payment_reference:
        return ()
    references = []
    for attempt in range(booking.retry_count + 1):
        references.append(attempt_reference(booking.reference, attempt))
        if references[-1] == booking.payment_reference:
            return tuple(references)
    return ()


@dataclass(frozen=True)
class EftInstructions:
    account_holder: str
    bank_name: str
    account_number: str
    branch_code: str
    account_type: str
    reference: str
    amount_cents: int
    currency: str


@dataclass(frozen=True)
class PaymentInitiation:
    booking_id: str
    booking_reference: str
    method: PaymentMethod
    amount_cents: int
    currency: str
    provider_reference: str | None = None
    authorization_url: str | None = None
    access_code: str | None = None
    eft: EftInstructions | None = None


@dataclass(frozen=True)
class VerificationOutcome:
    booking_id: str
    status: BookingStatus
    already_processed: bool = False
    failure_reason: str | None = None


def _freeze_line_items(session: CheckoutSession) -> tuple[BookingLineItem, ...]:
    items = []
    for selection in session.rooms:
        pricing = selection.pricing
        # assert_payable guarantees every selection is priced
        assert pricing is not None and selection.adjusted_total_cents is not None
        items.append(
            BookingLineItem(
                room_id=selection.room.id,
                room_name=selection.room.name,
                pricing_mode=PricingMode.parse(selection.room.pricing_mode),
                adults=selection.adults,
                child_ages=selection.child_ages,
                nightly_rates=pricing.nights,
                subtotal_cents=pricing.subtotal_cents,
                adjusted_total_cents=selection.adjusted_total_cents,
            )
        )
    return tuple(items)


def _freeze_addon_lines(session: CheckoutSession):
    nights = stay_nights(session.rooms)
    guests = total_guests(session.rooms)
    return tuple(freeze_addon(a, nights=nights, total_guests=guests) for a in session.addons)


def frozen_fields(session: CheckoutSession) -> dict[str, Any]:
    """Booking columns frozen from a payable session."""
    return {
        "line_items": _freeze_line_items(session),
        "addon_lines": _freeze_addon_lines(session),
        "subtotal_cents": session.subtotal_cents,
        "discount_cents": session.discount_cents,
        "total_cents": session.grand_total_cents,
        "coupon_id": session.coupon.coupon.id if session.coupon else None,
        "coupon_code": session.coupon.coupon.code if session.coupon else None,
    }


class BookingLifecycleOrchestrator:
    """Drives a booking from creation through payment to a final status."""

    def __init__(
        self,
        store: BookingStore,
        gateway: PaymentGateway,
        *,
        coupons: CouponStore | None = None,
        tasks_client: TasksClient | None = None,
        settings: EngineSettings | None = None,
        eft: EftConfig | None = None,
        reference_factory: Callable[[], str] = generate_booking_reference,
        today: Callable[[], date] = utc_today,
    ):
        self._store = store
        self._gateway = gateway
        self._coupons = coupons
        self._tasks = tasks_client
        self._settings = settings or EngineSettings()
        self._eft = eft or EftConfig()
        self._new_reference = reference_factory
        self._today = today

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def _require(self, booking_id: str) -> Booking:
        booking = self._store.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking not found: {booking_id}")
        return booking

    def _transition(
        self,
        booking_id: str,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        *,
        reason: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        sources = frozenset(from_statuses)
        for source in sources:
            validate_transition(source, to_status)
        return self._store.transition(
            booking_id,
            from_statuses=sources,
            to_status=to_status,
            reason=reason,
            fields=fields,
        )

    # ── Creation ─────────────────────────────────────────

    def create_booking(
        self, session: CheckoutSession, payment_method: PaymentMethod | str
    ) -> Booking:
        """Freeze a payable checkout session into a pending booking.

        Args:
            session: Session at selecting_payment with consistent totals.
            payment_method: Method the guest picked.

        Returns:
            The pending Booking (id and reference are final).

        Raises:
            CheckoutValidationError: If the session is not payable.
            CouponInvalid: If the applied coupon no longer applies (usage
                limits can be reached after it was applied).
            DuplicateReferenceError: If no free reference was found.
        """
        assert_payable(session)
        method = PaymentMethod(payment_method)
        # assert_payable checked both dates
        assert session.check_in is not None and session.check_out is not None

        if session.coupon is not None and self._coupons is not None:
            evaluate_coupon(
                self._coupons,
                CouponRequest(
                    code=session.coupon.coupon.code,
                    subtotal_cents=session.subtotal_cents,
                    room_ids=tuple(s.room.id for s in session.rooms),
                    nights=session.nights,
                    check_in=session.check_in,
                    check_out=session.check_out,
                    customer_email=session.guest.email,
                    booking_id=session.booking_id,
                ),
                today=self._today(),
            )

        frozen = frozen_fields(session)
        booking_id = str(uuid.uuid4())
        booking = None
        for attempt in range(MAX_REFERENCE_ATTEMPTS):
            booking = Booking(
                id=booking_id,
                reference=self._new_reference(),
                guest=session.guest,
                check_in=session.check_in,
                check_out=session.check_out,
                currency=session.currency,
                status=BookingStatus.DRAFT,
                payment_method=method,
                created_at=utc_now(),
                **frozen,
            )
            try:
                self._store.create(booking)
                break
            except DuplicateReferenceError:
                if attempt == MAX_REFERENCE_ATTEMPTS - 1:
                    raise
                logger.warning(
                    "booking_reference_collision",
                    extra={"extra_fields": safe_log_context(booking_reference=booking.reference)},
                )
        assert booking is not None

        self._transition(
            booking.id, [BookingStatus.DRAFT], BookingStatus.PENDING, reason="created"
        )

        if session.coupon is not None and self._coupons is not None:
            self._coupons.record_usage(
                coupon_id=session.coupon.coupon.id,
                booking_id=booking.id,
                customer_email=session.guest.email.strip().lower(),
                discount_cents=session.discount_cents,
                original_cents=session.subtotal_cents,
                final_cents=session.grand_total_cents,
            )

        logger.info(
            "booking_created",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking.id,
                    booking_reference=booking.reference,
                    total_cents=booking.total_cents,
                    payment_method=method.value,
                    rooms=len(booking.line_items),
                )
            },
        )
        return self._require(booking.id)

    # ── Payment ──────────────────────────────────────────

    def initiate_payment(
        self, booking_id: str, method: PaymentMethod | str | None = None
    ) -> PaymentInitiation:
        """Start payment for a pending booking.

        Paystack: charges through the gateway and stores the provider
        reference. EFT: no online step; returns bank transfer instructions and
        the booking stays pending until the transfer is reconciled.

        Raises:
            BookingNotFoundError: If the booking does not exist.
            InvalidTransitionError: If the booking is not pending.
        """
        booking = self._require(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidTransitionError(
                booking.status, BookingStatus.PAID, "payment can only start from pending"
            )
        method = PaymentMethod(method or booking.payment_method or PaymentMethod.PAYSTACK)

        if method == PaymentMethod.EFT:
            return self._initiate_eft(booking)

        provider_reference = payment_reference_for(booking)
        try:
            charge = self._gateway.charge(
                amount_cents=booking.total_cents,
                currency=booking.currency,
                reference=provider_reference,
                email=booking.guest.email,
                metadata={
                    "booking_id": booking.id,
                    "booking_reference": booking.reference,
                    "attempt": booking.retry_count,
                },
            )
        except Exception:
            logger.exception(
                "payment_initiation_failed",
                extra={"extra_fields": safe_log_context(booking_id=booking.id)},
            )
            self._transition(
                booking.id,
                [BookingStatus.PENDING],
                BookingStatus.PAYMENT_FAILED,
                reason="initiation_error",
                fields={"failure_reason": "initiation_error"},
            )
            raise

        self._store.update_payment(
            booking.id,
            payment_method=PaymentMethod.PAYSTACK.value,
            payment_reference=charge.provider_reference,
        )
        logger.info(
            "payment_initiated",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking.id,
                    provider_reference=charge.provider_reference,
                    amount_cents=booking.total_cents,
                )
            },
        )
        return PaymentInitiation(
            booking_id=booking.id,
            booking_reference=booking.reference,
            method=PaymentMethod.PAYSTACK,
            amount_cents=booking.total_cents,
            currency=booking.currency,
            provider_reference=charge.provider_reference,
            authorization_url=charge.authorization_url,
            access_code=charge.access_code,
        )

    def _initiate_eft(self, booking: Booking) -> PaymentInitiation:
        reference = f"{self._eft.reference_prefix}{booking.reference}"
        self._store.update_payment(
            booking.id,
            payment_method=PaymentMethod.EFT.value,
            payment_reference=reference,
        )
        logger.info(
            "eft_instructions_issued",
            extra={"extra_fields": safe_log_context(booking_id=booking.id)},
        )
        return PaymentInitiation(
            booking_id=booking.id,
            booking_reference=booking.reference,
            method=PaymentMethod.EFT,
            amount_cents=booking.total_cents,
            currency=booking.currency,
            provider_reference=reference,
            eft=EftInstructions(
                account_holder=self._eft.account_holder,
                bank_name=self._eft.bank_name,
                account_number=self._eft.account_number,
                branch_code=self._eft.branch_code,
                account_type=self._eft.account_type,
                reference=reference,
                amount_cents=booking.total_cents,
                currency=booking.currency,
            ),
        )

    def _failure_reason(
        self, booking: Booking, provider_reference: str, result: VerificationResult
    ) -> str | None:
        if result.provider_reference and result.provider_reference != provider_reference:
            return "reference_mismatch"
        if not result.success:
            return result.failure_reason or "payment_declined"
        if result.currency and result.currency.upper() != booking.currency.upper():
            return "currency_mismatch"
        if result.amount_cents is None:
            return "amount_mismatch"
        tolerance = self._settings.payment_amount_tolerance_cents
        if abs(result.amount_cents - booking.total_cents) > tolerance:
            return "amount_mismatch"
        return None

    def verify_payment(self, booking_id: str, provider_reference: str) -> VerificationOutcome:
        """Confirm a payment server-side and settle the booking status.

        Only references the booking itself issued are checked with the
        gateway; anything else is rejected without a status change. A success
        on an earlier attempt's reference still pays the booking, while a
        failure on it leaves the current attempt alone.

        Idempotent: a booking that is already paid returns
        already_processed=True without calling the gateway. Any unexpected
        error on the current attempt ends in payment_failed with reason
        "verification_error", so a verify attempt never leaves the booking
        pending.

        Raises:
            BookingNotFoundError: If the booking does not exist.
        """
        booking = self._require(booking_id)
        if booking.status == BookingStatus.PAID:
            return VerificationOutcome(booking.id, BookingStatus.PAID, already_processed=True)
        if booking.status == BookingStatus.DRAFT:
            raise InvalidTransitionError(booking.status, BookingStatus.PAID)

        if provider_reference not in issued_payment_references(booking):
            logger.warning(
                "payment_reference_rejected",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.id, provider_reference=provider_reference
                    )
                },
            )
            return VerificationOutcome(
                booking.id, booking.status, failure_reason="reference_mismatch"
            )

        try:
            result = self._gateway.verify(provider_reference)
            reason = self._failure_reason(booking, provider_reference, result)
        except Exception:
            logger.exception(
                "payment_verification_error",
                extra={"extra_fields": safe_log_context(booking_id=booking.id)},
            )
            reason = VERIFICATION_ERROR

        if reason is None:
            changed = self._transition(
                booking.id,
                sources_for(BookingStatus.PAID),
                BookingStatus.PAID,
                reason="payment_verified",
                fields={"payment_reference": provider_reference, "failure_reason": None},
            )
            if not changed:
                return self._settled_elsewhere(booking.id)
            logger.info(
                "payment_verified",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.id,
                        booking_reference=booking.reference,
                        provider_reference=provider_reference,
                        amount_cents=booking.total_cents,
                    )
                },
            )
            return VerificationOutcome(booking.id, BookingStatus.PAID)

        if provider_reference != booking.payment_reference:
            # Earlier attempt that did not go through; the current one decides
            logger.info(
                "stale_attempt_not_settled",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.id, provider_reference=provider_reference, reason=reason
                    )
                },
            )
            return VerificationOutcome(booking.id, booking.status, failure_reason=reason)

        changed = self._transition(
            booking.id,
            [BookingStatus.PENDING, BookingStatus.CART_ABANDONED],
            BookingStatus.PAYMENT_FAILED,
            reason=reason,
            fields={"failure_reason": reason},
        )
        if not changed:
            current = self._require(booking.id)
            if current.status == BookingStatus.PAID:
                return VerificationOutcome(current.id, BookingStatus.PAID, already_processed=True)
        logger.warning(
            "payment_verification_failed",
            extra={"extra_fields": safe_log_context(booking_id=booking.id, reason=reason)},
        )
        return VerificationOutcome(booking.id, BookingStatus.PAYMENT_FAILED, failure_reason=reason)

    def _settled_elsewhere(self, booking_id: str) -> VerificationOutcome:
        current = self._require(booking_id)
        if current.status == BookingStatus.PAID:
            return VerificationOutcome(current.id, BookingStatus.PAID, already_processed=True)
        # Status moved somewhere that cannot become paid (e.g. a concurrent retry)
        logger.warning(
            "payment_verification_conflict",
            extra={
                "extra_fields": safe_log_context(booking_id=booking_id, status=current.status.value)
            },
        )
        return VerificationOutcome(
            current.id, current.status, failure_reason=current.failure_reason
        )

    def verify_by_reference(self, provider_reference: str) -> VerificationOutcome:
        """verify_payment for callers that only know the provider reference.

        A reference from an earlier attempt no longer matches the stored
        payment reference, so the booking is also looked up by its own
        reference with the attempt suffix stripped.
        """
        booking = self._store.find_by_payment_reference(provider_reference)
        if booking is None:
            booking = self._store.find_by_reference(booking_reference_of(provider_reference))
        if booking is None:
            raise BookingNotFoundError(f"No booking for payment reference {provider_reference}")
        return self.verify_payment(booking.id, provider_reference)

    def mark_payment_failed(self, booking_id: str, reason: str) -> bool:
        """Record a client-reported payment failure. No-op unless pending."""
        self._require(booking_id)
        changed = self._transition(
            booking_id,
            [BookingStatus.PENDING],
            BookingStatus.PAYMENT_FAILED,
            reason=reason,
            fields={"failure_reason": reason},
        )
        if changed:
            logger.info(
                "payment_marked_failed",
                extra={"extra_fields": safe_log_context(booking_id=booking_id, reason=reason)},
            )
        return changed

    # ── Abandonment ──────────────────────────────────────

    def abandon(self, booking_id: str) -> bool:
        """Move a pending booking to cart_abandoned. No-op in any other status."""
        self._require(booking_id)
        changed = self._transition(
            booking_id,
            [BookingStatus.PENDING],
            BookingStatus.CART_ABANDONED,
            reason="abandoned",
        )
        if changed:
            logger.info(
                "booking_abandoned",
                extra={"extra_fields": safe_log_context(booking_id=booking_id)},
            )
        return changed

    def dispatch_abandon(self, booking_id: str, *, attempt: int = 0) -> None:
        """Fire-and-forget abandon, for page unload and widget close.

        Never raises and never waits for the abandon call to complete.
        """
        if self._tasks is None:
            logger.warning(
                "abandon_dispatch_skipped",
                extra={"extra_fields": safe_log_context(booking_id=booking_id)},
            )
            return
        try:
            self._tasks.dispatch_http(
                task_id=f"abandon:{booking_id}:{attempt}",
                url_path=f"/bookings/{booking_id}/abandon",
                payload={"booking_id": booking_id},
                correlation_id=get_correlation_id() or None,
            )
        except Exception:
            logger.exception(
                "abandon_dispatch_failed",
                extra={"extra_fields": safe_log_context(booking_id=booking_id)},
            )

    # ── Retry ────────────────────────────────────────────

    def resume(self, booking_id: str, *, repriced: CheckoutSession | None = None) -> Booking:
        """Put a failed or abandoned booking back to pending for another attempt.

        Keeps the booking id and reference and increments retry_count. The
        last issued payment reference is kept so a late success on it still
        settles the booking. When repriced is given (a payable session rebuilt
        against current rates), its totals and line items replace the frozen
        ones.

        Raises:
            BookingNotFoundError: If the booking does not exist.
            InvalidTransitionError: If the booking is not retryable or the
                retry limit is reached.
        """
        booking = self._require(booking_id)
        if booking.status not in RETRYABLE_STATUSES:
            raise InvalidTransitionError(booking.status, BookingStatus.PENDING)
        if booking.retry_count >= self._settings.max_retry_attempts:
            raise InvalidTransitionError(
                booking.status, BookingStatus.PENDING, "retry limit reached"
            )

        fields: dict[str, Any] = {
            "retry_count": booking.retry_count + 1,
            "failure_reason": None,
        }
        if repriced is not None:
            assert_payable(repriced)
            fields.update(frozen_fields(repriced))

        changed = self._transition(
            booking.id,
            RETRYABLE_STATUSES,
            BookingStatus.PENDING,
            reason="retry",
            fields=fields,
        )
        if not changed:
            current = self._require(booking.id)
            raise InvalidTransitionError(current.status, BookingStatus.PENDING)

        logger.info(
            "booking_resumed",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking.id, retry_count=booking.retry_count + 1
                )
            },
        )
        return self._require(booking.id)
