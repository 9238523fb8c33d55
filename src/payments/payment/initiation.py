"""Payment sheet creation — command and handler.

Opens a PENDING payment for a booking and creates the gateway charge
intent the mobile client completes. The gateway customer is created once
per user and reused for later bookings.
"""

from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from payments.booking.booking import Booking
from payments.config import load_settings
from payments.domain import payments
from payments.errors import AlreadyInProgress, AlreadyProcessed, AuthorizationError, NotFoundError
from payments.gateway import get_gateway
from payments.payment.payment import Payment, to_minor_units

logger = structlog.get_logger(__name__)


@payments.command(part_of="Payment")
class CreatePaymentSheet:
    """Create a charge intent for the tenant to pay a booking."""

    booking_id = Identifier(required=True)
    user_id = Identifier(required=True)
    email = String(max_length=255)
    name = String(max_length=255)


@payments.command_handler(part_of=Payment)
class PaymentSheetHandler:
    @handle(CreatePaymentSheet)
    def create_payment_sheet(self, command):
        try:
            booking = current_domain.repository_for(Booking).get(command.booking_id)
        except ObjectNotFoundError as exc:
            raise NotFoundError("Booking not found", booking_id=str(command.booking_id)) from exc

        if str(booking.tenant_id) != str(command.user_id):
            raise AuthorizationError("Unauthorized access to booking", booking_id=str(booking.id))
        if booking.is_paid:
            raise AlreadyProcessed("Booking already paid", booking_id=str(booking.id))

        settings = load_settings()
        gateway = get_gateway()
        ledger = current_domain.repository_for(Payment)

        # Checked again by create_pending, but before any gateway call is made.
        active = ledger.find_active_for_booking(booking.id)
        if active is not None:
            raise AlreadyInProgress(
                "A payment is already in progress for this booking",
                booking_id=str(booking.id),
                payment_id=str(active.id),
            )

        customer_ref = ledger.customer_ref_for_user(command.user_id)
        if customer_ref is None:
            customer_ref = gateway.create_customer(command.user_id, email=command.email, name=command.name)
            logger.info("Gateway customer created", user_id=str(command.user_id), customer_ref=customer_ref)

        payment_id = str(uuid4())
        amount = to_minor_units(booking.total_price)
        intent = gateway.create_charge_intent(
            amount=amount,
            currency=settings.currency,
            customer_ref=customer_ref,
            metadata={"paymentId": payment_id, "bookingId": str(booking.id), "userId": str(command.user_id)},
            idempotency_key=f"payment-sheet-{payment_id}",
        )

        payment = ledger.create_pending(
            booking.id,
            command.user_id,
            amount,
            settings.currency,
            payment_id=payment_id,
            charge_ref=intent.intent_id,
            customer_ref=customer_ref,
        )
        # A concurrent sheet for this booking fails at commit and is retried
        # against the committed payment, where the active check rejects it.
        booking.reserve_for_payment(payment.id)
        current_domain.repository_for(Booking).add(booking)

        ephemeral_key = gateway.create_ephemeral_key(customer_ref)

        return {
            "payment_id": str(payment.id),
            "client_secret": intent.client_secret,
            "ephemeral_key": ephemeral_key,
            "customer_id": customer_ref,
            "publishable_key": gateway.publishable_key,
            "amount": amount,
            "currency": payment.currency,
        }
