"""Payment aggregate (CQRS) — the ledger record of one charge attempt.

A Payment is opened when a payment sheet is created for a booking and is
moved along by the gateway: synchronously through confirm/cancel, and
asynchronously through webhooks and the reconciliation sweep. Every
transition appends a ``PaymentTransition`` entity and raises an event.

State Machine (7 states):
    PENDING → PROCESSING | REQUIRES_ACTION | COMPLETED | FAILED | CANCELED
    PROCESSING → REQUIRES_ACTION | COMPLETED | FAILED | CANCELED
    REQUIRES_ACTION → PROCESSING | COMPLETED | FAILED | CANCELED
    COMPLETED → REFUNDED
    FAILED, CANCELED, REFUNDED → (terminal)
"""

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from payments.domain import payments
from payments.errors import ConflictError, DuplicateRefundRequest, InvalidTransition
from payments.payment.events import (
    PaymentActionRequired,
    PaymentCanceled,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PaymentProcessing,
    PaymentRefunded,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentState(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


class TransitionSource(Enum):
    CREATE = "create"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    WEBHOOK = "webhook"
    REFUND = "refund"
    RECONCILE = "reconcile"


ACTIVE_STATES = frozenset({PaymentState.PENDING, PaymentState.PROCESSING, PaymentState.REQUIRES_ACTION})
TERMINAL_STATES = frozenset({PaymentState.FAILED, PaymentState.CANCELED, PaymentState.REFUNDED})


# ---------------------------------------------------------------------------
# State Machine
# ---------------------------------------------------------------------------
_VALID_TRANSITIONS = {
    PaymentState.PENDING: {
        PaymentState.PROCESSING,
        PaymentState.REQUIRES_ACTION,
        PaymentState.COMPLETED,
        PaymentState.FAILED,
        PaymentState.CANCELED,
    },
    PaymentState.PROCESSING: {
        PaymentState.REQUIRES_ACTION,
        PaymentState.COMPLETED,
        PaymentState.FAILED,
        PaymentState.CANCELED,
    },
    PaymentState.REQUIRES_ACTION: {
        PaymentState.PROCESSING,
        PaymentState.COMPLETED,
        PaymentState.FAILED,
        PaymentState.CANCELED,
    },
    PaymentState.COMPLETED: {PaymentState.REFUNDED},
    PaymentState.FAILED: set(),  # Terminal
    PaymentState.CANCELED: set(),  # Terminal
    PaymentState.REFUNDED: set(),  # Terminal
}


def valid_sources(target: PaymentState) -> frozenset[PaymentState]:
    """States from which ``target`` may be reached."""
    return frozenset(state for state, targets in _VALID_TRANSITIONS.items() if target in targets)


def to_minor_units(amount) -> int:
    """Convert a major-unit price (``120.50``) into integer minor units (``12050``)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@payments.entity(part_of="Payment")
class PaymentTransition:
    """One step in a payment's audit trail."""

    from_state = String(max_length=20)
    to_state = String(max_length=20, required=True)
    source = String(choices=TransitionSource, required=True)
    reason = String(max_length=500)
    occurred_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@payments.aggregate
class Payment:
    """The ledger record of a single charge attempt against a booking."""

    booking_id = Identifier(required=True)
    user_id = Identifier(required=True)

    # Amount in integer minor units (sen for MYR)
    amount = Integer(required=True)
    currency = String(max_length=3, required=True)

    # Gateway references
    charge_ref = String(max_length=255)
    customer_ref = String(max_length=255)

    state = String(choices=PaymentState, default=PaymentState.PENDING.value)
    failure_reason = String(max_length=500)

    # At most one open refund request per payment
    open_refund_request_id = Identifier()

    transitions = HasMany(PaymentTransition)

    completed_at = DateTime()
    refunded_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def amount_must_be_positive(self):
        if self.amount is not None and self.amount <= 0:
            raise ValidationError({"amount": ["Payment amount must be positive"]})

    @invariant.post
    def completed_payment_has_completion_time(self):
        if self.state in (PaymentState.COMPLETED.value, PaymentState.REFUNDED.value) and self.completed_at is None:
            raise ValidationError({"completed_at": ["A completed payment must record when it completed"]})

    @invariant.post
    def refunded_payment_has_refund_time(self):
        if self.state == PaymentState.REFUNDED.value and self.refunded_at is None:
            raise ValidationError({"refunded_at": ["A refunded payment must record when it was refunded"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        booking_id,
        user_id,
        amount,
        currency,
        payment_id=None,
        charge_ref=None,
        customer_ref=None,
        created_at=None,
    ):
        """Open a new payment in PENDING state."""
        now = created_at or datetime.now(UTC)

        kwargs = {}
        if payment_id:
            kwargs["id"] = payment_id

        payment = cls(
            booking_id=booking_id,
            user_id=user_id,
            amount=amount,
            currency=currency.lower(),
            charge_ref=charge_ref,
            customer_ref=customer_ref,
            state=PaymentState.PENDING.value,
            created_at=now,
            updated_at=now,
            **kwargs,
        )
        payment.add_transitions(
            PaymentTransition(
                from_state=None,
                to_state=PaymentState.PENDING.value,
                source=TransitionSource.CREATE.value,
                occurred_at=now,
            )
        )

        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                booking_id=str(booking_id),
                user_id=str(user_id),
                amount=amount,
                currency=payment.currency,
                charge_ref=charge_ref,
                initiated_at=now,
            )
        )

        return payment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_state(self) -> PaymentState:
        return PaymentState(self.state)

    @property
    def is_active(self) -> bool:
        return self.current_state in ACTIVE_STATES

    def belongs_to(self, user_id) -> bool:
        return str(self.user_id) == str(user_id)

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def can_transition(self, target: PaymentState, from_states=None) -> bool:
        current = self.current_state
        if from_states is not None and current not in from_states:
            return False
        return target in _VALID_TRANSITIONS.get(current, set())

    def transition_to(self, target: PaymentState, source: TransitionSource, from_states=None, reason=None, at=None):
        """Move to ``target`` if the current state allows it, recording the step.

        ``from_states`` narrows the allowed origins further. Raises
        ``InvalidTransition`` and leaves the payment untouched otherwise.
        """
        current = self.current_state
        if not self.can_transition(target, from_states):
            raise InvalidTransition(current_state=current.value, target_state=target.value, payment_id=str(self.id))

        now = at or datetime.now(UTC)
        with atomic_change(self):
            self.state = target.value
            self.updated_at = now
            if target == PaymentState.COMPLETED:
                self.completed_at = now
            elif target == PaymentState.REFUNDED:
                self.refunded_at = now
                self.open_refund_request_id = None
            elif target == PaymentState.FAILED:
                self.failure_reason = reason

        self.add_transitions(
            PaymentTransition(
                from_state=current.value,
                to_state=target.value,
                source=source.value,
                reason=reason,
                occurred_at=now,
            )
        )
        self.raise_(self._transition_event(current, target, source, reason, now))

    def _transition_event(self, current, target, source, reason, now):
        common = {
            "payment_id": str(self.id),
            "booking_id": str(self.booking_id),
            "charge_ref": self.charge_ref,
            "from_state": current.value,
            "source": source.value,
        }
        if target == PaymentState.COMPLETED:
            return PaymentCompleted(
                user_id=str(self.user_id), amount=self.amount, currency=self.currency, completed_at=now, **common
            )
        if target == PaymentState.REFUNDED:
            return PaymentRefunded(
                user_id=str(self.user_id), amount=self.amount, currency=self.currency, refunded_at=now, **common
            )
        if target == PaymentState.FAILED:
            return PaymentFailed(reason=reason, occurred_at=now, **common)
        if target == PaymentState.CANCELED:
            return PaymentCanceled(reason=reason, occurred_at=now, **common)
        if target == PaymentState.PROCESSING:
            return PaymentProcessing(occurred_at=now, **common)
        return PaymentActionRequired(occurred_at=now, **common)

    # -------------------------------------------------------------------
    # Refund request hold
    # -------------------------------------------------------------------
    def hold_for_refund_request(self, refund_request_id):
        """Mark a refund request as open against this payment."""
        if self.current_state != PaymentState.COMPLETED:
            raise ConflictError(f"Cannot request a refund for a payment that is {self.state}")
        if self.open_refund_request_id:
            raise DuplicateRefundRequest("A refund request is already pending for this lease")
        self.open_refund_request_id = refund_request_id
        self.updated_at = datetime.now(UTC)

    def release_refund_request(self, refund_request_id):
        if str(self.open_refund_request_id or "") == str(refund_request_id):
            self.open_refund_request_id = None
            self.updated_at = datetime.now(UTC)
