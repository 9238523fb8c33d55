"""Application tests for synchronous payment confirmation."""

import pytest
from payments.booking.booking import Booking
from payments.errors import AuthorizationError, GatewayRejected, GatewayUnavailable, InvalidRequest, NotFoundError
from payments.gateway.port import PAYMENT_SUCCEEDED
from payments.payment.confirmation import ConfirmPayment, charge_ref_from
from payments.payment.payment import Payment, PaymentState
from payments.payment.webhook import ProcessGatewayEvent, WebhookOutcome
from protean import current_domain


@pytest.fixture()
def pending(booking_id, open_payment):
    sheet = open_payment(booking_id)
    return current_domain.repository_for(Payment).get(sheet["payment_id"]), sheet


def _confirm(charge_ref, user_id="tenant-001", booking_id=None):
    return current_domain.process(
        ConfirmPayment(charge_ref=charge_ref, user_id=user_id, booking_id=booking_id),
        asynchronous=False,
    )


class TestConfirmPayment:
    def test_succeeded_charge_completes_payment_and_booking(self, pending, gateway, booking_id):
        payment, _ = pending
        gateway.set_charge_status(payment.charge_ref, "succeeded")

        summary = _confirm(payment.charge_ref)

        assert summary["status"] == PaymentState.COMPLETED.value
        assert summary["payment_intent_id"] == payment.charge_ref
        stored = current_domain.repository_for(Payment).get(payment.id)
        assert stored.state == PaymentState.COMPLETED.value
        booking = current_domain.repository_for(Booking).get(booking_id)
        assert booking.status == "APPROVED"
        assert booking.payment_status == "paid"

    def test_accepts_client_secret(self, pending, gateway):
        payment, sheet = pending
        gateway.set_charge_status(payment.charge_ref, "succeeded")
        summary = _confirm(sheet["client_secret"])
        assert summary["payment_id"] == str(payment.id)

    def test_unsucceeded_charge_is_rejected(self, pending, gateway):
        payment, _ = pending
        gateway.set_charge_status(payment.charge_ref, "requires_payment_method")
        with pytest.raises(GatewayRejected):
            _confirm(payment.charge_ref)
        assert current_domain.repository_for(Payment).get(payment.id).state == PaymentState.PENDING.value

    def test_gateway_outage_changes_nothing(self, pending, gateway):
        payment, _ = pending
        gateway.configure(available=False)
        with pytest.raises(GatewayUnavailable):
            _confirm(payment.charge_ref)
        assert current_domain.repository_for(Payment).get(payment.id).state == PaymentState.PENDING.value


class TestConfirmGuards:
    def test_unknown_charge(self):
        with pytest.raises(NotFoundError):
            _confirm("pi_unknown")

    def test_only_payer_may_confirm(self, pending):
        payment, _ = pending
        with pytest.raises(AuthorizationError):
            _confirm(payment.charge_ref, user_id="someone-else")

    def test_booking_mismatch(self, pending):
        payment, _ = pending
        with pytest.raises(InvalidRequest):
            _confirm(payment.charge_ref, booking_id="bk-other")


class TestConfirmIdempotency:
    def test_second_confirm_returns_same_summary(self, pending, gateway):
        payment, _ = pending
        gateway.set_charge_status(payment.charge_ref, "succeeded")
        first = _confirm(payment.charge_ref)
        second = _confirm(payment.charge_ref)

        assert first == second
        stored = current_domain.repository_for(Payment).get(payment.id)
        assert [t.to_state for t in stored.transitions].count(PaymentState.COMPLETED.value) == 1
        assert len(gateway.calls_to("retrieve_charge")) == 1

    def test_webhook_then_confirm_completes_once(self, pending, gateway, booking_id):
        payment, _ = pending
        gateway.set_charge_status(payment.charge_ref, "succeeded")

        outcome = current_domain.process(
            ProcessGatewayEvent(event_id="evt_1", event_type=PAYMENT_SUCCEEDED, charge_ref=payment.charge_ref),
            asynchronous=False,
        )
        assert outcome == WebhookOutcome.APPLIED

        summary = _confirm(payment.charge_ref)
        assert summary["status"] == PaymentState.COMPLETED.value

        stored = current_domain.repository_for(Payment).get(payment.id)
        assert [t.to_state for t in stored.transitions].count(PaymentState.COMPLETED.value) == 1

    def test_confirm_then_webhook_is_duplicate(self, pending, gateway):
        payment, _ = pending
        gateway.set_charge_status(payment.charge_ref, "succeeded")
        _confirm(payment.charge_ref)

        outcome = current_domain.process(
            ProcessGatewayEvent(event_id="evt_1", event_type=PAYMENT_SUCCEEDED, charge_ref=payment.charge_ref),
            asynchronous=False,
        )
        assert outcome == WebhookOutcome.DUPLICATE


class TestChargeRefFrom:
    @pytest.mark.parametrize(
        "value, expected",
        [("pi_123", "pi_123"), ("pi_123_secret_abc", "pi_123"), ("", "")],
    )
    def test_strips_secret_suffix(self, value, expected):
        assert charge_ref_from(value) == expected
