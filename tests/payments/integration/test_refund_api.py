"""Integration tests for the refund endpoints via TestClient."""

import pytest
from payments.payment.payment import Payment
from protean import current_domain


@pytest.fixture()
def paid_booking(client, api_booking, api_sheet, tenant_headers, gateway):
    payment = current_domain.repository_for(Payment).get(api_sheet["paymentId"])
    gateway.set_charge_status(payment.charge_ref, "succeeded")
    response = client.post(
        "/payments/confirm",
        json={"paymentIntentId": api_sheet["clientSecret"]},
        headers=tenant_headers,
    )
    assert response.status_code == 200
    return api_booking


@pytest.fixture()
def manual_refunds(monkeypatch):
    """Every refund needs landlord approval."""
    monkeypatch.setenv("REFUND_AUTO_WINDOW_HOURS", "0")


@pytest.fixture()
def pending_request(client, paid_booking, tenant_headers, manual_refunds):
    response = client.post(
        "/payments/refund",
        json={"bookingId": paid_booking, "reason": "Host cancelled"},
        headers=tenant_headers,
    )
    assert response.status_code == 200
    return response.json()["refundRequestId"]


class TestRequestRefund:
    def test_recent_payment_is_refunded_immediately(self, client, paid_booking, tenant_headers):
        response = client.post(
            "/payments/refund",
            json={"bookingId": paid_booking, "reason": "Plans changed"},
            headers=tenant_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["autoRefund"] is True
        assert data["status"] == "refunded"
        assert data["amount"] == 25000
        assert data["refundId"].startswith("re_fake_")

        booking = client.get(f"/bookings/{paid_booking}").json()
        assert (booking["status"], booking["paymentStatus"]) == ("REFUNDED", "refunded")

    def test_outside_auto_window_needs_approval(self, client, paid_booking, tenant_headers, manual_refunds, gateway):
        response = client.post("/payments/refund", json={"bookingId": paid_booking}, headers=tenant_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["autoRefund"] is False
        assert data["status"] == "PENDING"
        assert data["refundRequestId"]
        assert gateway.calls_to("create_refund") == []

    def test_duplicate_request_is_conflict(self, client, paid_booking, pending_request, tenant_headers):
        response = client.post("/payments/refund", json={"bookingId": paid_booking}, headers=tenant_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "duplicate_refund_request"

    def test_only_payer_may_request(self, client, paid_booking, landlord_headers):
        response = client.post("/payments/refund", json={"bookingId": paid_booking}, headers=landlord_headers)
        assert response.status_code == 403

    def test_unpaid_booking_is_404(self, client, api_booking, tenant_headers):
        response = client.post("/payments/refund", json={"bookingId": api_booking}, headers=tenant_headers)
        assert response.status_code == 404

    def test_gateway_rejection_is_400(self, client, paid_booking, tenant_headers, gateway):
        gateway.configure(should_succeed=False, failure_reason="Charge disputed")
        response = client.post("/payments/refund", json={"bookingId": paid_booking}, headers=tenant_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "gateway_rejected", "detail": "Charge disputed"}


class TestProcessRefundRequest:
    def test_landlord_approves(self, client, paid_booking, pending_request, landlord_headers):
        response = client.post(
            f"/payments/refund-request/{pending_request}/process",
            json={"approve": True, "notes": "Sorry to see you go"},
            headers=landlord_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "APPROVED"
        assert data["refundId"].startswith("re_fake_")

        booking = client.get(f"/bookings/{paid_booking}").json()
        assert booking["paymentStatus"] == "refunded"

    def test_landlord_rejects(self, client, paid_booking, pending_request, landlord_headers, gateway):
        response = client.post(
            f"/payments/refund-request/{pending_request}/process",
            json={"approve": False},
            headers=landlord_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"
        assert gateway.calls_to("create_refund") == []

        booking = client.get(f"/bookings/{paid_booking}").json()
        assert booking["paymentStatus"] == "paid"

    def test_second_decision_is_conflict(self, client, pending_request, landlord_headers):
        url = f"/payments/refund-request/{pending_request}/process"
        client.post(url, json={"approve": False}, headers=landlord_headers)
        response = client.post(url, json={"approve": True}, headers=landlord_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "already_processed"

    def test_tenant_cannot_decide(self, client, pending_request, tenant_headers):
        response = client.post(
            f"/payments/refund-request/{pending_request}/process",
            json={"approve": True},
            headers=tenant_headers,
        )
        assert response.status_code == 403

    def test_approve_must_be_boolean(self, client, pending_request, landlord_headers):
        response = client.post(
            f"/payments/refund-request/{pending_request}/process",
            json={"approve": "maybe"},
            headers=landlord_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_unknown_request_is_404(self, client, landlord_headers):
        response = client.post(
            "/payments/refund-request/rr-missing/process",
            json={"approve": True},
            headers=landlord_headers,
        )
        assert response.status_code == 404


class TestListRefundRequests:
    def test_landlord_view(self, client, pending_request, landlord_headers):
        response = client.get("/payments/refund-requests?role=landlord", headers=landlord_headers)
        assert response.status_code == 200
        (request,) = response.json()["refundRequests"]
        assert request["id"] == pending_request
        assert request["leaseId"] == "bk-api-001"
        assert request["requestedBy"] == "tenant-001"
        assert request["reason"] == "Host cancelled"
        assert request["status"] == "PENDING"

    def test_tenant_view(self, client, pending_request, tenant_headers):
        data = client.get("/payments/refund-requests?role=tenant", headers=tenant_headers).json()
        assert [r["id"] for r in data["refundRequests"]] == [pending_request]

    def test_status_filter(self, client, pending_request, landlord_headers):
        data = client.get("/payments/refund-requests?status=APPROVED", headers=landlord_headers).json()
        assert data["refundRequests"] == []

    def test_unknown_role_is_400(self, client, tenant_headers):
        response = client.get("/payments/refund-requests?role=admin", headers=tenant_headers)
        assert response.status_code == 400
