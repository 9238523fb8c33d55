"""Booking aggregate — the slice of a booking the payments core writes to.

The booking module owns bookings. Payments only reads the tenant, the
landlord and the price, and only writes ``status`` and ``payment_status``
(plus the cancellation stamp that goes with a refund).

Payment outcome → (status, payment_status):
    processing      → (unchanged, processing)
    requires_action → no change
    completed       → (APPROVED, paid)
    failed          → (unchanged, failed)
    canceled        → (REFUNDED if PENDING/APPROVED, canceled)
    refunded        → (REFUNDED, refunded)
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String

from payments.booking.events import BookingPaymentOutcomeApplied, BookingRecorded
from payments.domain import payments
from payments.errors import InvalidTransition
from payments.payment.payment import ACTIVE_STATES, PaymentState

CANCELLED_BY_USER = "Payment cancelled by user"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class BookingStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REFUNDED = "REFUNDED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BookingPaymentStatus(Enum):
    UNPAID = "unpaid"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"


def is_consistent(status: str, payment_status: str) -> bool:
    """Whether a (status, payment_status) pair may be stored."""
    if status == BookingStatus.APPROVED.value:
        return payment_status == BookingPaymentStatus.PAID.value
    if status == BookingStatus.REFUNDED.value:
        return payment_status in (BookingPaymentStatus.REFUNDED.value, BookingPaymentStatus.CANCELED.value)
    return True


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@payments.aggregate
class Booking:
    """A rental booking, as seen by the payments core."""

    tenant_id = Identifier(required=True)
    landlord_id = Identifier(required=True)
    total_price = Float(required=True)

    status = String(choices=BookingStatus, default=BookingStatus.PENDING.value)
    payment_status = String(choices=BookingPaymentStatus, default=BookingPaymentStatus.UNPAID.value)

    cancelled_at = DateTime()
    cancellation_reason = String(max_length=500)

    # The payment that last opened a sheet; writing it serializes sheet creation per booking
    active_payment_id = Identifier()

    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def approved_booking_must_be_paid(self):
        if self.status == BookingStatus.APPROVED.value and self.payment_status != BookingPaymentStatus.PAID.value:
            raise ValidationError({"status": ["An approved booking must be paid"]})

    @invariant.post
    def refunded_booking_must_be_refunded_or_canceled(self):
        if self.status == BookingStatus.REFUNDED.value and not is_consistent(self.status, self.payment_status):
            raise ValidationError({"status": ["A refunded booking must have a refunded or canceled payment"]})

    @invariant.post
    def total_price_must_be_positive(self):
        if self.total_price is not None and self.total_price <= 0:
            raise ValidationError({"total_price": ["Total price must be positive"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def record(cls, booking_id, tenant_id, landlord_id, total_price, status=None, payment_status=None):
        """Register a booking created by the booking module."""
        now = datetime.now(UTC)
        booking = cls(
            id=booking_id,
            tenant_id=tenant_id,
            landlord_id=landlord_id,
            total_price=total_price,
            status=status or BookingStatus.PENDING.value,
            payment_status=payment_status or BookingPaymentStatus.UNPAID.value,
            created_at=now,
            updated_at=now,
        )
        booking.raise_(
            BookingRecorded(
                booking_id=str(booking.id),
                tenant_id=str(tenant_id),
                landlord_id=str(landlord_id),
                total_price=total_price,
                status=booking.status,
                recorded_at=now,
            )
        )
        return booking

    def refresh_details(self, tenant_id, landlord_id, total_price, status=None):
        """Update the details the booking module owns.

        ``status`` is only touched when given; payment_status never is.
        """
        with atomic_change(self):
            self.tenant_id = tenant_id
            self.landlord_id = landlord_id
            self.total_price = total_price
            if status:
                self.status = status
            self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Payment outcome
    # -------------------------------------------------------------------
    @property
    def is_paid(self) -> bool:
        return self.payment_status == BookingPaymentStatus.PAID.value

    def reserve_for_payment(self, payment_id) -> None:
        """Record the payment a new sheet opened.

        Saved in the same unit of work as the payment, so two sheets opened
        concurrently for one booking conflict on the booking's version.
        """
        with atomic_change(self):
            self.active_payment_id = payment_id
            self.updated_at = datetime.now(UTC)

    def target_for(self, outcome: PaymentState, reason: str | None = None):
        """The (status, payment_status, cancellation_reason) an outcome leads to, or None."""
        if outcome == PaymentState.PROCESSING:
            return self.status, BookingPaymentStatus.PROCESSING.value, None
        if outcome == PaymentState.COMPLETED:
            return BookingStatus.APPROVED.value, BookingPaymentStatus.PAID.value, None
        if outcome == PaymentState.FAILED:
            return self.status, BookingPaymentStatus.FAILED.value, None
        if outcome == PaymentState.REFUNDED:
            return BookingStatus.REFUNDED.value, BookingPaymentStatus.REFUNDED.value, reason
        if outcome == PaymentState.CANCELED:
            if self.status in (BookingStatus.PENDING.value, BookingStatus.APPROVED.value):
                return BookingStatus.REFUNDED.value, BookingPaymentStatus.CANCELED.value, reason or CANCELLED_BY_USER
            return self.status, BookingPaymentStatus.CANCELED.value, None
        return None

    def apply_payment_outcome(self, outcome: PaymentState, reason: str | None = None, at=None) -> bool:
        """Move status and payment_status together. Returns whether anything changed.

        Applying the same outcome twice is a no-op. An outcome that would
        leave the booking inconsistent (for example ``failed`` on an
        APPROVED booking) raises ``InvalidTransition``.
        """
        target = self.target_for(outcome, reason)
        if target is None:
            return False

        status, payment_status, cancellation_reason = target
        if (status, payment_status) == (self.status, self.payment_status):
            return False
        if not is_consistent(status, payment_status):
            raise InvalidTransition(
                f"Booking {self.status}/{self.payment_status} cannot take payment outcome {outcome.value}",
                booking_id=str(self.id),
            )

        now = at or datetime.now(UTC)
        previous_status, previous_payment_status = self.status, self.payment_status
        with atomic_change(self):
            self.status = status
            self.payment_status = payment_status
            self.updated_at = now
            if outcome not in ACTIVE_STATES:
                self.active_payment_id = None
            if status == BookingStatus.REFUNDED.value and previous_status != BookingStatus.REFUNDED.value:
                self.cancelled_at = now
                self.cancellation_reason = cancellation_reason

        self.raise_(
            BookingPaymentOutcomeApplied(
                booking_id=str(self.id),
                payment_outcome=outcome.value,
                previous_status=previous_status,
                previous_payment_status=previous_payment_status,
                status=status,
                payment_status=payment_status,
                applied_at=now,
            )
        )
        return True
