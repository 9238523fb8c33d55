"""Reconciliation sweep — catches up on webhooks that never arrived.

Active payments that have not moved for a while are checked against the
gateway's record and, where the gateway has moved on, advanced through the
same path a webhook would take. Bookings whose status fields drifted from
their latest settled payment are repaired afterwards.

Run periodically with ``python src/manage.py reconcile``.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier
from protean.utils.globals import current_domain

from payments.booking.booking import Booking
from payments.booking.coordinator import apply_outcome
from payments.config import load_settings
from payments.domain import payments
from payments.errors import GatewayRejected, GatewayUnavailable
from payments.gateway import get_gateway
from payments.gateway.port import (
    PAYMENT_CANCELED,
    PAYMENT_FAILED,
    PAYMENT_PROCESSING,
    PAYMENT_REQUIRES_ACTION,
    PAYMENT_SUCCEEDED,
    ChargeStatus,
)
from payments.payment.payment import Payment, PaymentState, TransitionSource
from payments.payment.webhook import ProcessGatewayEvent, WebhookOutcome

logger = structlog.get_logger(__name__)

BOOKING_REPAIR_LOOKBACK = timedelta(days=1)

_REMOTE_STATUS_EVENTS = {
    "succeeded": PAYMENT_SUCCEEDED,
    "processing": PAYMENT_PROCESSING,
    "requires_action": PAYMENT_REQUIRES_ACTION,
    "canceled": PAYMENT_CANCELED,
}


def event_type_for(charge: ChargeStatus) -> str | None:
    """The webhook event a remote charge status corresponds to, if any."""
    if charge.status == "requires_payment_method" and charge.failure_reason:
        return PAYMENT_FAILED
    return _REMOTE_STATUS_EVENTS.get(charge.status)


@dataclass
class ReconciliationReport:
    checked: int = 0
    advanced: int = 0
    unchanged: int = 0
    errors: int = 0
    bookings_checked: int = 0
    bookings_repaired: int = 0


@payments.command(part_of="Booking")
class ReconcileBooking:
    """Re-derive a booking's status fields from its latest settled payment."""

    booking_id = Identifier(required=True)


@payments.command_handler(part_of=Booking)
class ReconcileBookingHandler:
    @handle(ReconcileBooking)
    def reconcile_booking(self, command):
        ledger = current_domain.repository_for(Payment)
        # An attempt still in flight owns the booking fields.
        if ledger.find_active_for_booking(command.booking_id) is not None:
            return False
        payment = ledger.latest_settled_for_booking(command.booking_id)
        if payment is None:
            return False

        try:
            booking = current_domain.repository_for(Booking).get(command.booking_id)
        except ObjectNotFoundError:
            logger.error("Booking not found for reconciliation", booking_id=str(command.booking_id))
            return False
        before = (booking.status, booking.payment_status)
        booking = apply_outcome(command.booking_id, PaymentState(payment.state))
        repaired = booking is not None and (booking.status, booking.payment_status) != before
        if repaired:
            logger.warning(
                "Booking drift repaired",
                booking_id=str(command.booking_id),
                payment_id=str(payment.id),
                previous=list(before),
                status=booking.status,
                payment_status=booking.payment_status,
            )
        return repaired


def reconcile_payments(as_of: datetime | None = None, stale_after: timedelta | None = None, limit: int = 100):
    """Advance stale active payments from the gateway, then repair drifted bookings."""
    settings = load_settings()
    now = as_of or datetime.now(UTC)
    cutoff = now - (stale_after if stale_after is not None else settings.reconcile_stale_after)

    report = ReconciliationReport()
    ledger = current_domain.repository_for(Payment)
    gateway = get_gateway()

    for payment in ledger.stale_active(cutoff, limit=limit):
        report.checked += 1
        if not payment.charge_ref:
            report.unchanged += 1
            continue

        try:
            charge = gateway.retrieve_charge(payment.charge_ref)
        except (GatewayUnavailable, GatewayRejected) as exc:
            logger.warning("Reconciliation lookup failed", payment_id=str(payment.id), error=str(exc))
            report.errors += 1
            continue

        event_type = event_type_for(charge)
        if event_type is None:
            report.unchanged += 1
            continue

        outcome = current_domain.process(
            ProcessGatewayEvent(
                event_type=event_type,
                charge_ref=payment.charge_ref,
                failure_reason=charge.failure_reason,
                source=TransitionSource.RECONCILE.value,
            ),
            asynchronous=False,
        )
        if outcome == WebhookOutcome.APPLIED:
            report.advanced += 1
        else:
            report.unchanged += 1

    recent = ledger.settled_since(now - BOOKING_REPAIR_LOOKBACK, limit=limit)
    booking_ids = {str(payment.booking_id) for payment in recent}
    for booking_id in sorted(booking_ids):
        report.bookings_checked += 1
        if current_domain.process(ReconcileBooking(booking_id=booking_id), asynchronous=False):
            report.bookings_repaired += 1

    logger.info("Reconciliation sweep finished", **vars(report))
    return report
