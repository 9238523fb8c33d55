"""Refund workflow — commands and handler.

A tenant's refund request is either executed straight away (inside the
automatic window) or parked as a RefundRequest for the landlord. The
landlord's approval executes the same refund path.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, Text
from protean.utils.globals import current_domain

from payments.booking.booking import Booking
from payments.booking.coordinator import apply_outcome
from payments.config import load_settings
from payments.domain import payments
from payments.errors import (
    AlreadyProcessed,
    DuplicateRefundRequest,
    InvalidRequest,
    InvalidTransition,
    NotFoundError,
)
from payments.gateway import get_gateway
from payments.payment.payment import Payment, PaymentState, TransitionSource
from payments.refund.policy import RefundDecision, RefundPolicy
from payments.refund.refund_request import RefundRequest, RefundRequestStatus

logger = structlog.get_logger(__name__)

GATEWAY_REFUND_REASON = "requested_by_customer"
ALREADY_REFUNDED_NOTE = "Payment already refunded"


@payments.command(part_of="RefundRequest")
class RequestRefund:
    """Ask for a full refund of a booking's completed payment."""

    booking_id = Identifier(required=True)
    user_id = Identifier(required=True)
    reason = Text()
    as_of = DateTime()  # Evaluation time, defaults to now


@payments.command(part_of="RefundRequest")
class DecideRefundRequest:
    """Landlord approves or rejects a pending refund request."""

    refund_request_id = Identifier(required=True)
    landlord_id = Identifier(required=True)
    approve = Boolean(required=True)
    notes = Text()


def execute_refund(payment: Payment, source: TransitionSource, metadata: dict, reason: str | None = None, at=None):
    """Refund ``payment`` at the gateway, then record it in the ledger and on the booking.

    The gateway treats a second refund of the same charge as a success, so
    a retry after a lost response converges on the same ledger state.
    """
    gateway = get_gateway()
    result = gateway.create_refund(
        payment.charge_ref,
        reason=GATEWAY_REFUND_REASON,
        metadata={"paymentId": str(payment.id), "bookingId": str(payment.booking_id), **metadata},
    )
    logger.info(
        "Gateway refund issued",
        payment_id=str(payment.id),
        refund_id=result.refund_id,
        already_refunded=result.already_refunded,
    )

    ledger = current_domain.repository_for(Payment)
    try:
        ledger.transition(
            payment.id,
            from_states=[PaymentState.COMPLETED],
            to_state=PaymentState.REFUNDED,
            source=source,
            reason=reason,
            at=at,
        )
    except InvalidTransition as exc:
        raise AlreadyProcessed("Payment has already been refunded", payment_id=str(payment.id)) from exc

    apply_outcome(payment.booking_id, PaymentState.REFUNDED, reason=reason)
    return result


@payments.command_handler(part_of=RefundRequest)
class RefundWorkflowHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        settings = load_settings()
        now = command.as_of or datetime.now(UTC)

        try:
            booking = current_domain.repository_for(Booking).get(command.booking_id)
        except ObjectNotFoundError as exc:
            raise NotFoundError("Booking not found", booking_id=str(command.booking_id)) from exc

        ledger = current_domain.repository_for(Payment)
        payment = ledger.find_completed_for_booking(booking.id)
        if payment is None:
            raise NotFoundError("No completed payment found for this booking", booking_id=str(booking.id))

        policy = RefundPolicy.from_settings(settings.refund_policy)
        decision = policy.decide(payment.completed_at, now, command.user_id, payment)
        logger.info(
            "Refund policy decided",
            payment_id=str(payment.id),
            booking_id=str(booking.id),
            decision=decision.value,
        )

        if decision == RefundDecision.AUTO_REFUND:
            result = execute_refund(
                payment,
                source=TransitionSource.REFUND,
                metadata={"userId": str(command.user_id), "refundType": "auto"},
                reason=command.reason,
                at=now,
            )
            return {
                "auto_refund": True,
                "status": PaymentState.REFUNDED.value,
                "message": "Refund processed successfully",
                "refund_id": result.refund_id,
                "amount": payment.amount,
                "currency": payment.currency,
            }

        request_repo = current_domain.repository_for(RefundRequest)
        if request_repo.find_pending_for_lease(booking.id) is not None:
            raise DuplicateRefundRequest("A refund request is already pending for this lease", booking_id=str(booking.id))

        refund_request = RefundRequest.open(
            lease_id=booking.id,
            payment_id=payment.id,
            requested_by=command.user_id,
            landlord_id=booking.landlord_id,
            amount=payment.amount,
            currency=payment.currency,
            reason=command.reason,
            requested_at=now,
        )
        # The hold on the payment serialises concurrent requests for the same lease.
        ledger.hold_for_refund_request(payment.id, refund_request.id)
        request_repo.add(refund_request)

        logger.info(
            "Refund request created",
            refund_request_id=str(refund_request.id),
            booking_id=str(booking.id),
            landlord_id=str(booking.landlord_id),
        )
        return {
            "auto_refund": False,
            "status": RefundRequestStatus.PENDING.value,
            "message": "Refund request submitted and awaiting landlord approval",
            "refund_request_id": str(refund_request.id),
            "amount": payment.amount,
            "currency": payment.currency,
        }

    @handle(DecideRefundRequest)
    def decide_refund_request(self, command):
        request_repo = current_domain.repository_for(RefundRequest)
        try:
            refund_request = request_repo.get(command.refund_request_id)
        except ObjectNotFoundError as exc:
            raise NotFoundError("Refund request not found", refund_request_id=str(command.refund_request_id)) from exc

        RefundPolicy.ensure_can_decide(refund_request, command.landlord_id)

        ledger = current_domain.repository_for(Payment)

        if not command.approve:
            refund_request.reject(note=command.notes)
            ledger.release_refund_request(refund_request.payment_id, refund_request.id)
            request_repo.add(refund_request)
            logger.info("Refund request rejected", refund_request_id=str(refund_request.id))
            return {
                "status": RefundRequestStatus.REJECTED.value,
                "message": "Refund request rejected",
            }

        payment = ledger.get_payment(refund_request.payment_id)
        if payment.current_state == PaymentState.REFUNDED:
            # Refunded outside this request (dashboard or webhook); close it without a second refund
            refund_request.approve(note=command.notes or ALREADY_REFUNDED_NOTE)
            request_repo.add(refund_request)
            logger.info(
                "Refund request closed, payment already refunded",
                refund_request_id=str(refund_request.id),
                payment_id=str(payment.id),
            )
            return {
                "status": RefundRequestStatus.APPROVED.value,
                "message": "Payment was already refunded",
                "refund_id": None,
            }
        if payment.current_state != PaymentState.COMPLETED:
            raise InvalidRequest(f"Payment is {payment.state} and cannot be refunded", payment_id=str(payment.id))

        result = execute_refund(
            payment,
            source=TransitionSource.REFUND,
            metadata={"refundRequestId": str(refund_request.id), "refundType": "approved"},
            reason=refund_request.reason,
        )
        refund_request.approve(gateway_refund_id=result.refund_id, note=command.notes)
        request_repo.add(refund_request)

        logger.info(
            "Refund request approved",
            refund_request_id=str(refund_request.id),
            payment_id=str(payment.id),
            refund_id=result.refund_id,
        )
        return {
            "status": RefundRequestStatus.APPROVED.value,
            "message": "Refund approved and processed",
            "refund_id": result.refund_id,
        }
