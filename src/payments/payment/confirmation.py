"""Synchronous payment confirmation — command and handler.

Called by the mobile client once the payment sheet reports success. The
gateway is asked for the charge's real status; the webhook for the same
charge may arrive before or after, and whichever comes second is a no-op.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from payments.booking.coordinator import apply_outcome
from payments.domain import payments
from payments.errors import (
    AuthorizationError,
    ConflictError,
    GatewayRejected,
    InvalidRequest,
    InvalidTransition,
    NotFoundError,
)
from payments.gateway import get_gateway
from payments.payment.payment import Payment, PaymentState, TransitionSource, valid_sources

logger = structlog.get_logger(__name__)

_SECRET_MARKER = "_secret_"


def charge_ref_from(client_secret_or_ref: str) -> str:
    """Accept either an intent id or its client secret (``pi_123_secret_abc``)."""
    return client_secret_or_ref.split(_SECRET_MARKER, 1)[0]


def payment_summary(payment: Payment) -> dict:
    return {
        "payment_id": str(payment.id),
        "booking_id": str(payment.booking_id),
        "status": payment.state,
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_intent_id": payment.charge_ref,
        "completed_at": payment.completed_at,
        "refunded_at": payment.refunded_at,
        "created_at": payment.created_at,
    }


@payments.command(part_of="Payment")
class ConfirmPayment:
    """Confirm a payment after the client completed the payment sheet."""

    charge_ref = String(required=True, max_length=255)
    user_id = Identifier(required=True)
    booking_id = Identifier()


@payments.command_handler(part_of=Payment)
class ConfirmPaymentHandler:
    @handle(ConfirmPayment)
    def confirm_payment(self, command):
        charge_ref = charge_ref_from(command.charge_ref)
        if not charge_ref:
            raise InvalidRequest("Payment intent is required")

        ledger = current_domain.repository_for(Payment)
        payment = ledger.find_by_charge_ref(charge_ref)
        if payment is None:
            raise NotFoundError("Payment not found", charge_ref=charge_ref)
        if not payment.belongs_to(command.user_id):
            raise AuthorizationError("Unauthorized access to payment", payment_id=str(payment.id))
        if command.booking_id and str(command.booking_id) != str(payment.booking_id):
            raise InvalidRequest("Payment does not belong to this booking", payment_id=str(payment.id))

        if payment.current_state in (PaymentState.COMPLETED, PaymentState.REFUNDED):
            logger.info("Payment already confirmed", payment_id=str(payment.id), state=payment.state)
            if payment.current_state == PaymentState.COMPLETED:
                apply_outcome(payment.booking_id, PaymentState.COMPLETED)
            return payment_summary(payment)

        charge = get_gateway().retrieve_charge(charge_ref)
        if not charge.succeeded:
            logger.info(
                "Payment confirmation rejected",
                payment_id=str(payment.id),
                remote_status=charge.status,
            )
            raise GatewayRejected("Payment not successful", remote_status=charge.status)

        try:
            payment = ledger.transition(
                payment.id,
                from_states=valid_sources(PaymentState.COMPLETED),
                to_state=PaymentState.COMPLETED,
                source=TransitionSource.CONFIRM,
            )
        except InvalidTransition as exc:
            # A concurrent webhook may have completed it first.
            payment = ledger.get_payment(payment.id)
            if payment.current_state in (PaymentState.COMPLETED, PaymentState.REFUNDED):
                return payment_summary(payment)
            raise ConflictError(f"Cannot confirm a payment that is {payment.state}", payment_id=str(payment.id)) from exc

        apply_outcome(payment.booking_id, PaymentState.COMPLETED)
        return payment_summary(payment)
