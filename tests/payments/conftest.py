import pytest
from protean.integrations.pytest import DomainFixture

TENANT_ID = "tenant-001"
LANDLORD_ID = "landlord-001"
BOOKING_PRICE = 120.50


@pytest.fixture(scope="session")
def payments_bed():
    from payments.domain import payments

    bed = DomainFixture(payments)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(payments_bed):
    with payments_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def gateway():
    """A fresh FakeGateway for every test."""
    from payments.gateway import install_gateway, reset_gateway
    from payments.gateway.fake_adapter import FakeGateway

    fake = FakeGateway(webhook_secret="whsec_test")
    install_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture()
def record_booking():
    """Register a booking with the payments core and return its id."""
    from payments.booking.sync import RecordBooking
    from protean import current_domain

    def _record(booking_id="bk-001", tenant_id=TENANT_ID, landlord_id=LANDLORD_ID, total_price=BOOKING_PRICE, status=None):
        return current_domain.process(
            RecordBooking(
                booking_id=booking_id,
                tenant_id=tenant_id,
                landlord_id=landlord_id,
                total_price=total_price,
                status=status,
            ),
            asynchronous=False,
        )

    return _record


@pytest.fixture()
def booking_id(record_booking):
    return record_booking()


@pytest.fixture()
def open_payment():
    """Create a payment sheet for a booking and return the response dict."""
    from payments.payment.initiation import CreatePaymentSheet
    from protean import current_domain

    def _open(booking_id, user_id=TENANT_ID):
        return current_domain.process(
            CreatePaymentSheet(booking_id=booking_id, user_id=user_id, email="tenant@example.com", name="Tina Tenant"),
            asynchronous=False,
        )

    return _open


@pytest.fixture()
def complete_payment(gateway, open_payment):
    """Open a payment for a booking, succeed it at the gateway and confirm it."""
    from payments.payment.confirmation import ConfirmPayment
    from payments.payment.payment import Payment
    from protean import current_domain

    def _complete(booking_id, user_id=TENANT_ID):
        sheet = open_payment(booking_id, user_id=user_id)
        payment = current_domain.repository_for(Payment).get(sheet["payment_id"])
        gateway.set_charge_status(payment.charge_ref, "succeeded")
        current_domain.process(ConfirmPayment(charge_ref=payment.charge_ref, user_id=user_id), asynchronous=False)
        return current_domain.repository_for(Payment).get(sheet["payment_id"])

    return _complete
