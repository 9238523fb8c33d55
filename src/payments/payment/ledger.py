"""Payment ledger — the repository that owns Payment persistence.

Every state change goes through ``transition``, which re-reads the record,
checks the allowed origins and saves with the aggregate's version. A
concurrent writer that saved first makes the version check fail and the
loser sees ``InvalidTransition``, carrying the state the winner stored,
instead of overwriting the winner.
"""

from datetime import datetime

import structlog
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError

from payments.domain import payments
from payments.errors import AlreadyInProgress, ConflictError, InvalidTransition, NotFoundError
from payments.payment.payment import (
    ACTIVE_STATES,
    Payment,
    PaymentState,
    TransitionSource,
)

logger = structlog.get_logger(__name__)

_ACTIVE_VALUES = [state.value for state in ACTIVE_STATES]
_SETTLED_VALUES = [state.value for state in PaymentState if state not in ACTIVE_STATES]


@payments.repository(part_of=Payment)
class PaymentLedger:
    """Repository for the Payment aggregate, with the ledger's compare-and-set."""

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def get_payment(self, payment_id) -> Payment:
        try:
            return self.get(payment_id)
        except ObjectNotFoundError as exc:
            raise NotFoundError("Payment not found", payment_id=str(payment_id)) from exc

    def find_by_charge_ref(self, charge_ref: str) -> Payment | None:
        if not charge_ref:
            return None
        return self._dao.query.filter(charge_ref=charge_ref).all().first

    def find_active_for_booking(self, booking_id) -> Payment | None:
        return (
            self._dao.query.filter(booking_id=str(booking_id), state__in=_ACTIVE_VALUES)
            .order_by("-created_at")
            .all()
            .first
        )

    def find_completed_for_booking(self, booking_id) -> Payment | None:
        return (
            self._dao.query.filter(booking_id=str(booking_id), state=PaymentState.COMPLETED.value)
            .order_by("-created_at")
            .all()
            .first
        )

    def latest_settled_for_booking(self, booking_id) -> Payment | None:
        """The most recently settled payment, which the booking fields must mirror."""
        return (
            self._dao.query.filter(booking_id=str(booking_id), state__in=_SETTLED_VALUES)
            .order_by("-updated_at")
            .all()
            .first
        )

    def customer_ref_for_user(self, user_id) -> str | None:
        """The gateway customer already created for this user, if any."""
        records = self._dao.query.filter(user_id=str(user_id)).order_by("-created_at").all().items
        for record in records:
            if record.customer_ref:
                return record.customer_ref
        return None

    def history_for_user(self, user_id, page: int = 1, limit: int = 10, state: str | None = None):
        """Newest-first page of a user's payments. Returns ``(items, total)``."""
        filters = {"user_id": str(user_id)}
        if state:
            filters["state"] = state
        results = (
            self._dao.query.filter(**filters)
            .order_by("-created_at")
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return results.items, results.total

    def stale_active(self, cutoff: datetime, limit: int = 100) -> list[Payment]:
        """Active payments not updated since ``cutoff``, oldest first."""
        return (
            self._dao.query.filter(state__in=_ACTIVE_VALUES, updated_at__lte=cutoff)
            .order_by("updated_at")
            .limit(limit)
            .all()
            .items
        )

    def settled_since(self, since: datetime, limit: int = 100) -> list[Payment]:
        """Payments that reached a settled state since ``since``."""
        return (
            self._dao.query.filter(state__in=_SETTLED_VALUES, updated_at__gte=since)
            .order_by("-updated_at")
            .limit(limit)
            .all()
            .items
        )

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def create_pending(
        self,
        booking_id,
        user_id,
        amount: int,
        currency: str,
        payment_id=None,
        charge_ref: str | None = None,
        customer_ref: str | None = None,
    ) -> Payment:
        """Open a PENDING payment. At most one active payment exists per booking."""
        active = self.find_active_for_booking(booking_id)
        if active is not None:
            raise AlreadyInProgress(
                "A payment is already in progress for this booking",
                booking_id=str(booking_id),
                payment_id=str(active.id),
            )
        if charge_ref and self.find_by_charge_ref(charge_ref) is not None:
            raise ConflictError("Charge reference is already recorded", charge_ref=charge_ref)

        payment = Payment.create(
            booking_id=booking_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            payment_id=payment_id,
            charge_ref=charge_ref,
            customer_ref=customer_ref,
        )
        self.add(payment)

        logger.info(
            "Payment record created",
            payment_id=str(payment.id),
            booking_id=str(booking_id),
            amount=amount,
            currency=payment.currency,
            charge_ref=charge_ref,
        )
        return payment

    def transition(
        self,
        payment_id,
        from_states,
        to_state: PaymentState,
        source: TransitionSource,
        reason: str | None = None,
        at: datetime | None = None,
    ) -> Payment:
        """Compare-and-set a payment's state.

        Succeeds only if the stored state is one of ``from_states`` and the
        move is allowed by the state machine. Raises ``InvalidTransition``
        otherwise, including when a concurrent writer saved first.
        """
        payment = self.get_payment(payment_id)
        from_state = payment.state

        payment.transition_to(to_state, source, from_states=from_states, reason=reason, at=at)

        try:
            self.add(payment)
        except ExpectedVersionError as exc:
            # Report the state the winner stored, not the one this caller read
            stored_state = self.get_payment(payment_id).state
            logger.info(
                "Payment transition lost a concurrent update",
                payment_id=str(payment_id),
                read_state=from_state,
                stored_state=stored_state,
                to_state=to_state.value,
            )
            raise InvalidTransition(
                current_state=stored_state,
                target_state=to_state.value,
                payment_id=str(payment_id),
            ) from exc

        logger.info(
            "Payment transitioned",
            payment_id=str(payment_id),
            booking_id=str(payment.booking_id),
            from_state=from_state,
            to_state=to_state.value,
            source=source.value,
        )
        return payment

    def hold_for_refund_request(self, payment_id, refund_request_id) -> Payment:
        payment = self.get_payment(payment_id)
        payment.hold_for_refund_request(refund_request_id)
        try:
            self.add(payment)
        except ExpectedVersionError as exc:
            raise ConflictError("Payment was updated concurrently, please retry") from exc
        return payment

    def release_refund_request(self, payment_id, refund_request_id) -> Payment:
        payment = self.get_payment(payment_id)
        payment.release_refund_request(refund_request_id)
        self.add(payment)
        return payment
