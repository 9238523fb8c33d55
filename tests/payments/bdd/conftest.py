"""Shared BDD fixtures and step definitions for the Payments domain."""

from datetime import timedelta
from uuid import uuid4

import pytest
from payments.booking.booking import Booking
from payments.errors import PaymentError
from payments.payment.cancellation import CancelPayment
from payments.payment.confirmation import ConfirmPayment
from payments.payment.payment import Payment
from payments.payment.webhook import ProcessGatewayEvent
from payments.refund.refund_request import RefundRequest
from payments.refund.workflow import DecideRefundRequest, RequestRefund
from protean import current_domain
from pytest_bdd import given, parsers, then, when

TENANT = "tenant-001"
LANDLORD = "landlord-001"


@pytest.fixture()
def error():
    """Container for a captured payment error."""
    return {"exc": None}


def _reload(payment):
    return current_domain.repository_for(Payment).get(payment.id)


def _request_refund(payment, hours):
    return current_domain.process(
        RequestRefund(
            booking_id=str(payment.booking_id),
            user_id=TENANT,
            reason="Trip cancelled",
            as_of=payment.completed_at + timedelta(hours=hours),
        ),
        asynchronous=False,
    )


def _decide(refund_result, approve):
    return current_domain.process(
        DecideRefundRequest(
            refund_request_id=refund_result["refund_request_id"],
            landlord_id=LANDLORD,
            approve=approve,
        ),
        asynchronous=False,
    )


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a paid booking", target_fixture="payment")
def _paid_booking(booking_id, complete_payment):
    return complete_payment(booking_id)


@given("an open payment sheet", target_fixture="payment")
def _open_sheet(booking_id, open_payment):
    sheet = open_payment(booking_id)
    return current_domain.repository_for(Payment).get(sheet["payment_id"])


@given("the gateway charge has succeeded")
def _charge_succeeded(payment, gateway):
    gateway.set_charge_status(payment.charge_ref, "succeeded")


@given(parsers.cfparse("the tenant requested a refund {hours:d} hours after paying"), target_fixture="refund_result")
def _refund_requested(payment, hours):
    return _request_refund(payment, hours)


@given("the landlord rejected the refund request")
def _landlord_rejected(refund_result):
    _decide(refund_result, approve=False)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse("the tenant requests a refund {hours:d} hours after paying"), target_fixture="refund_result")
def _request_refund_step(payment, hours, error):
    try:
        return _request_refund(payment, hours)
    except PaymentError as exc:
        error["exc"] = exc
        return None


@when("the landlord approves the refund request")
def _landlord_approves(refund_result):
    _decide(refund_result, approve=True)


@when("the landlord rejects the refund request")
def _landlord_rejects(refund_result):
    _decide(refund_result, approve=False)


@when(parsers.cfparse('the gateway reports "{event_type}"'))
def _gateway_reports(payment, event_type):
    current_domain.process(
        ProcessGatewayEvent(
            event_id=f"evt_{uuid4().hex[:12]}",
            event_type=event_type,
            charge_ref=payment.charge_ref,
            failure_reason="Card declined",
        ),
        asynchronous=False,
    )


@when("the tenant confirms the payment")
def _tenant_confirms(payment):
    current_domain.process(ConfirmPayment(charge_ref=payment.charge_ref, user_id=TENANT), asynchronous=False)


@when("the tenant cancels the payment")
def _tenant_cancels(payment):
    current_domain.process(CancelPayment(charge_ref=payment.charge_ref, user_id=TENANT), asynchronous=False)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the payment state is "{state}"'))
def _payment_state(payment, state):
    assert _reload(payment).state == state


@then(parsers.cfparse("the payment has {count:d} transitions"))
def _transition_count(payment, count):
    assert len(_reload(payment).transitions) == count


@then(parsers.cfparse('the booking is "{status}" with payment status "{payment_status}"'))
def _booking_state(payment, status, payment_status):
    booking = current_domain.repository_for(Booking).get(payment.booking_id)
    assert (booking.status, booking.payment_status) == (status, payment_status)


@then("the refund is automatic")
def _refund_automatic(refund_result):
    assert refund_result["auto_refund"] is True
    assert refund_result["refund_id"]


@then("a refund request is pending")
def _refund_pending(refund_result):
    assert refund_result["auto_refund"] is False
    request = current_domain.repository_for(RefundRequest).get(refund_result["refund_request_id"])
    assert request.status == "PENDING"


@then(parsers.cfparse('the refund request is "{status}"'))
def _refund_request_status(refund_result, status):
    request = current_domain.repository_for(RefundRequest).get(refund_result["refund_request_id"])
    assert request.status == status


@then("no refund was sent to the gateway")
def _no_gateway_refund(gateway):
    assert gateway.calls_to("create_refund") == []


@then(parsers.cfparse('the refund fails with "{code}"'))
def _refund_fails(error, code):
    assert error["exc"] is not None, "Expected a payment error but none was raised"
    assert error["exc"].code == code
