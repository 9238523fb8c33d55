"""Domain events for the Booking slice."""

from protean.fields import DateTime, Float, Identifier, String

from payments.domain import payments


@payments.event(part_of="Booking")
class BookingRecorded:
    """A booking was registered (or refreshed) by the booking module."""

    __version__ = 1

    booking_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    landlord_id = Identifier(required=True)
    total_price = Float(required=True)
    status = String(required=True)
    recorded_at = DateTime(required=True)


@payments.event(part_of="Booking")
class BookingPaymentOutcomeApplied:
    """A payment outcome changed the booking's status fields."""

    __version__ = 1

    booking_id = Identifier(required=True)
    payment_outcome = String(required=True)
    previous_status = String(required=True)
    previous_payment_status = String(required=True)
    status = String(required=True)
    payment_status = String(required=True)
    applied_at = DateTime(required=True)
