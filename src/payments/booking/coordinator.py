"""Applies payment outcomes to the owning booking.

Called after the ledger has accepted a transition. The booking is a
secondary write: a missing booking, or an outcome the booking cannot
take, is logged and skipped rather than undoing a transition the gateway
has already made.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from payments.booking.booking import Booking
from payments.errors import InvalidTransition
from payments.payment.payment import PaymentState

logger = structlog.get_logger(__name__)


def apply_outcome(booking_id, outcome: PaymentState, reason: str | None = None) -> Booking | None:
    """Mirror ``outcome`` onto the booking. Returns the booking, or None if it is unknown."""
    repo = current_domain.repository_for(Booking)
    try:
        booking = repo.get(booking_id)
    except ObjectNotFoundError:
        logger.error("Booking not found for payment outcome", booking_id=str(booking_id), outcome=outcome.value)
        return None

    previous_status, previous_payment_status = booking.status, booking.payment_status
    try:
        changed = booking.apply_payment_outcome(outcome, reason=reason)
    except InvalidTransition as exc:
        logger.warning(
            "Payment outcome conflicts with booking state",
            booking_id=str(booking_id),
            outcome=outcome.value,
            status=previous_status,
            payment_status=previous_payment_status,
            error=str(exc),
        )
        return booking

    if changed:
        repo.add(booking)
        logger.info(
            "Booking payment outcome applied",
            booking_id=str(booking_id),
            outcome=outcome.value,
            previous_status=previous_status,
            previous_payment_status=previous_payment_status,
            status=booking.status,
            payment_status=booking.payment_status,
        )
    return booking
