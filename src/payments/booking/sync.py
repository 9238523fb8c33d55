"""Booking registration — command and handler.

The booking module pushes the fields payments needs (tenant, landlord,
price) whenever a booking is created or changed.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from payments.booking.booking import Booking, BookingStatus
from payments.domain import payments


@payments.command(part_of="Booking")
class RecordBooking:
    """Register a booking, or refresh the details of a known one."""

    booking_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    landlord_id = Identifier(required=True)
    total_price = Float(required=True)
    status = String(choices=BookingStatus)


@payments.command_handler(part_of=Booking)
class BookingSyncHandler:
    @handle(RecordBooking)
    def record_booking(self, command):
        repo = current_domain.repository_for(Booking)
        try:
            booking = repo.get(command.booking_id)
        except ObjectNotFoundError:
            booking = Booking.record(
                booking_id=command.booking_id,
                tenant_id=command.tenant_id,
                landlord_id=command.landlord_id,
                total_price=command.total_price,
                status=command.status,
            )
        else:
            booking.refresh_details(
                tenant_id=command.tenant_id,
                landlord_id=command.landlord_id,
                total_price=command.total_price,
                status=command.status,
            )

        repo.add(booking)
        return str(booking.id)
