"""Domain events for the RefundRequest aggregate."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from payments.domain import payments


@payments.event(part_of="RefundRequest")
class RefundRequested:
    """A tenant asked for a refund that needs landlord approval."""

    __version__ = 1

    refund_request_id = Identifier(required=True)
    lease_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    requested_by = Identifier(required=True)
    landlord_id = Identifier(required=True)
    amount = Integer(required=True)
    currency = String(required=True)
    reason = Text()
    requested_at = DateTime(required=True)


@payments.event(part_of="RefundRequest")
class RefundRequestApproved:
    """The landlord approved the refund and the gateway refunded the charge."""

    __version__ = 1

    refund_request_id = Identifier(required=True)
    lease_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    landlord_id = Identifier(required=True)
    gateway_refund_id = String()
    landlord_note = Text()
    approved_at = DateTime(required=True)


@payments.event(part_of="RefundRequest")
class RefundRequestRejected:
    """The landlord rejected the refund request."""

    __version__ = 1

    refund_request_id = Identifier(required=True)
    lease_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    landlord_id = Identifier(required=True)
    landlord_note = Text()
    rejected_at = DateTime(required=True)
