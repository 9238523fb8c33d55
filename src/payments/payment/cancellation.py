"""Payment cancellation — command and handler.

The payer abandons a payment that has not settled yet. The charge intent
is canceled at the gateway, the payment moves to CANCELED and a PENDING or
APPROVED booking is released.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from payments.booking.booking import CANCELLED_BY_USER, BookingStatus
from payments.booking.coordinator import apply_outcome
from payments.domain import payments
from payments.errors import AuthorizationError, ConflictError, InvalidTransition, NotFoundError
from payments.gateway import get_gateway
from payments.payment.confirmation import charge_ref_from
from payments.payment.payment import ACTIVE_STATES, Payment, PaymentState, TransitionSource

logger = structlog.get_logger(__name__)


@payments.command(part_of="Payment")
class CancelPayment:
    """Cancel an unsettled payment on behalf of the payer."""

    charge_ref = String(required=True, max_length=255)
    user_id = Identifier(required=True)


@payments.command_handler(part_of=Payment)
class CancelPaymentHandler:
    @handle(CancelPayment)
    def cancel_payment(self, command):
        charge_ref = charge_ref_from(command.charge_ref)
        ledger = current_domain.repository_for(Payment)
        payment = ledger.find_by_charge_ref(charge_ref)
        if payment is None:
            raise NotFoundError("Payment not found", charge_ref=charge_ref)
        if not payment.belongs_to(command.user_id):
            raise AuthorizationError("Unauthorized access to payment", payment_id=str(payment.id))
        if not payment.is_active:
            raise ConflictError(f"Cannot cancel a payment that is {payment.state}", payment_id=str(payment.id))

        get_gateway().cancel_charge_intent(charge_ref)

        try:
            payment = ledger.transition(
                payment.id,
                from_states=ACTIVE_STATES,
                to_state=PaymentState.CANCELED,
                source=TransitionSource.CANCEL,
                reason=CANCELLED_BY_USER,
            )
        except InvalidTransition as exc:
            raise ConflictError("Payment changed state while cancelling", payment_id=str(payment.id)) from exc

        booking = apply_outcome(payment.booking_id, PaymentState.CANCELED, reason=CANCELLED_BY_USER)
        booking_cancelled = booking is not None and booking.status == BookingStatus.REFUNDED.value

        logger.info("Payment cancelled by user", payment_id=str(payment.id), booking_cancelled=booking_cancelled)
        return {
            "message": "Payment cancelled successfully",
            "payment_id": str(payment.id),
            "status": payment.state,
            "booking_cancelled": booking_cancelled,
        }
