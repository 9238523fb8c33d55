"""Gateway webhook processing — command and handler.

Webhooks arrive at least once and in any order. Each one is mapped to a
target payment state and applied through the ledger's compare-and-set; a
delivery that no longer fits the current state is acknowledged and
logged, never retried.
"""

import structlog
from protean import handle
from protean.fields import String
from protean.utils.globals import current_domain

from payments.booking.coordinator import apply_outcome
from payments.domain import payments
from payments.errors import InvalidTransition
from payments.gateway.port import (
    CHARGE_REFUNDED,
    PAYMENT_CANCELED,
    PAYMENT_FAILED,
    PAYMENT_PROCESSING,
    PAYMENT_REQUIRES_ACTION,
    PAYMENT_SUCCEEDED,
)
from payments.payment.payment import Payment, PaymentState, TransitionSource, valid_sources
from payments.utils.logging import payment_context

logger = structlog.get_logger(__name__)

EVENT_TARGETS = {
    PAYMENT_SUCCEEDED: PaymentState.COMPLETED,
    PAYMENT_PROCESSING: PaymentState.PROCESSING,
    PAYMENT_FAILED: PaymentState.FAILED,
    PAYMENT_CANCELED: PaymentState.CANCELED,
    PAYMENT_REQUIRES_ACTION: PaymentState.REQUIRES_ACTION,
    CHARGE_REFUNDED: PaymentState.REFUNDED,
}


class WebhookOutcome:
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    OUT_OF_ORDER = "out_of_order"
    UNTRACKED = "untracked"
    IGNORED = "ignored"


@payments.command(part_of="Payment")
class ProcessGatewayEvent:
    """Apply a verified gateway notification to the payment ledger."""

    event_id = String(max_length=255)
    event_type = String(required=True, max_length=100)
    charge_ref = String(max_length=255)
    failure_reason = String(max_length=500)
    source = String(max_length=20, default=TransitionSource.WEBHOOK.value)


@payments.command_handler(part_of=Payment)
class GatewayEventHandler:
    @handle(ProcessGatewayEvent)
    def process_gateway_event(self, command):
        log = logger.bind(event_id=command.event_id, event_type=command.event_type, charge_ref=command.charge_ref)

        target = EVENT_TARGETS.get(command.event_type)
        if target is None or not command.charge_ref:
            log.info("Gateway event ignored")
            return WebhookOutcome.IGNORED

        ledger = current_domain.repository_for(Payment)
        payment = ledger.find_by_charge_ref(command.charge_ref)
        if payment is None:
            log.info("Gateway event for untracked charge")
            return WebhookOutcome.UNTRACKED

        with payment_context(payment_id=payment.id, booking_id=payment.booking_id):
            return self._apply(ledger, payment, target, command, log)

    def _apply(self, ledger, payment, target, command, log):
        source = TransitionSource(command.source)
        reason = command.failure_reason if target == PaymentState.FAILED else None
        try:
            payment = ledger.transition(
                payment.id,
                from_states=valid_sources(target),
                to_state=target,
                source=source,
                reason=reason,
            )
        except InvalidTransition as exc:
            if exc.current_state == target.value:
                log.info("Duplicate gateway event", state=exc.current_state)
                return WebhookOutcome.DUPLICATE
            log.warning("Out-of-order gateway event", state=exc.current_state, target_state=target.value)
            return WebhookOutcome.OUT_OF_ORDER

        if target != PaymentState.REQUIRES_ACTION:
            apply_outcome(payment.booking_id, target, reason=reason)

        log.info("Gateway event applied", state=payment.state)
        return WebhookOutcome.APPLIED
