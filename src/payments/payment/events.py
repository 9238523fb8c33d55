"""Domain events for the Payment aggregate.

Events are immutable facts raised on every ledger transition. Together with
the ``PaymentTransition`` entities they form the audit trail of a payment.
"""

from protean.fields import DateTime, Identifier, Integer, String

from payments.domain import payments


@payments.event(part_of="Payment")
class PaymentInitiated:
    """A payment record was opened for a booking."""

    __version__ = 1

    payment_id = Identifier(required=True)
    booking_id = Identifier(required=True)
    user_id = Identifier(required=True)
    amount = Integer(required=True)
    currency = String(required=True)
    charge_ref = String()
    initiated_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentProcessing:
    """The gateway is processing the charge."""

    __version__ = 1

    payment_id = Identifier(required=True)
    booking_id = Identifier(required=True)
    charge_ref = String()
    from_state = String(required=True)
    source = String(required=True)
    occurred_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentActionRequired:
    """The payer must complete an extra step (for example 3-D Secure)."""

    __version__ = 1

    payment_id = Identifier(required=True)
    booking_id = Identifier(required=True)
    charge_ref = String()
    from_state = String(required=True)
    source = String(required=True)
    occurred_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentCompleted:
    """The charge succeeded."""

    __version__ = 1

    payment_id = Identifier(required=True)
    booking_id = Identifier(required=True)
    user_id = Identifier(required=True)
    amount = Integer(required=True)
    currency = String(required=True)
    charge_ref = String()
    from_state = String(required=True)
    source = String(required=True)
    completed_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentFailed:
    """The charge failed at the gateway."""

    __version__ = 1

    payment_id = Identifier(required=True)
    booking_id = Identifier(required=True)
    charge_ref = String()
    from_state = String(required=True)
    source = String(required=True)
    reason = String()
    occurred_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentCanceled:
    """The charge was canceled before it settled."""

    __version__ = 1

    payment_id = Identifier(required=True)
    booking_id = Identifier(required=True)
    charge_ref = String()
    from_state = String(required=True)
    source = String(required=True)
    reason = String()
    occurred_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentRefunded:
    """A completed charge was refunded in full."""

    __version__ = 1

    payment_id = Identifier(required=True)
    booking_id = Identifier(required=True)
    user_id = Identifier(required=True)
    amount = Integer(required=True)
    currency = String(required=True)
    charge_ref = String()
    from_state = String(required=True)
    source = String(required=True)
    refunded_at = DateTime(required=True)
