"""Integration tests for Payment API endpoints via TestClient."""

from payments.payment.payment import Payment
from protean import current_domain


def _succeed(gateway, sheet):
    payment = current_domain.repository_for(Payment).get(sheet["paymentId"])
    gateway.set_charge_status(payment.charge_ref, "succeeded")
    return payment.charge_ref


class TestAuthentication:
    def test_missing_user_is_401(self, client, api_booking):
        response = client.post("/payments/payment-sheet", json={"bookingId": api_booking})
        assert response.status_code == 401

    def test_blank_user_is_401(self, client):
        response = client.get("/payments/history", headers={"X-User-Id": "  "})
        assert response.status_code == 401


class TestPaymentSheetEndpoint:
    def test_creates_sheet(self, client, api_booking, tenant_headers, gateway):
        response = client.post(
            "/payments/payment-sheet",
            json={"bookingId": api_booking},
            headers={**tenant_headers, "X-User-Email": "tenant@example.com"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["amount"] == 25000
        assert data["currency"] == "myr"
        assert data["publishableKey"] == gateway.publishable_key
        assert data["clientSecret"].startswith("pi_fake_")
        assert data["ephemeralKey"].startswith("ek_fake_")
        assert data["customerId"].startswith("cus_fake_")
        (call,) = gateway.calls_to("create_customer")
        assert call["email"] == "tenant@example.com"

    def test_accepts_snake_case(self, client, api_booking, tenant_headers):
        response = client.post("/payments/payment-sheet", json={"booking_id": api_booking}, headers=tenant_headers)
        assert response.status_code == 201

    def test_missing_booking_id_is_400(self, client, tenant_headers):
        response = client.post("/payments/payment-sheet", json={}, headers=tenant_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_unknown_booking_is_404(self, client, tenant_headers):
        response = client.post("/payments/payment-sheet", json={"bookingId": "bk-nope"}, headers=tenant_headers)
        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "detail": "Booking not found"}

    def test_other_user_is_403(self, client, api_booking, landlord_headers):
        response = client.post("/payments/payment-sheet", json={"bookingId": api_booking}, headers=landlord_headers)
        assert response.status_code == 403

    def test_second_sheet_is_conflict(self, client, api_sheet, api_booking, tenant_headers):
        response = client.post("/payments/payment-sheet", json={"bookingId": api_booking}, headers=tenant_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "already_in_progress"

    def test_gateway_outage_is_503(self, client, api_booking, tenant_headers, gateway):
        gateway.configure(available=False)
        response = client.post("/payments/payment-sheet", json={"bookingId": api_booking}, headers=tenant_headers)
        assert response.status_code == 503
        assert response.json()["error"] == "gateway_unavailable"


class TestConfirmEndpoint:
    def test_confirms_payment(self, client, api_sheet, tenant_headers, gateway):
        _succeed(gateway, api_sheet)
        response = client.post(
            "/payments/confirm",
            json={"paymentIntentId": api_sheet["clientSecret"]},
            headers=tenant_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["paymentId"] == api_sheet["paymentId"]
        assert data["completedAt"] is not None

        booking = client.get("/bookings/bk-api-001").json()
        assert booking["status"] == "APPROVED"
        assert booking["paymentStatus"] == "paid"

    def test_unsuccessful_charge_is_400(self, client, api_sheet, tenant_headers):
        response = client.post(
            "/payments/confirm",
            json={"paymentIntentId": api_sheet["clientSecret"]},
            headers=tenant_headers,
        )
        assert response.status_code == 400
        assert response.json() == {"error": "gateway_rejected", "detail": "Payment not successful"}


class TestCancelEndpoint:
    def test_cancels_payment(self, client, api_sheet, tenant_headers):
        response = client.post(
            "/payments/cancel",
            json={"paymentIntentId": api_sheet["clientSecret"]},
            headers=tenant_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "canceled"
        assert data["bookingCancelled"] is True

    def test_cancel_completed_is_conflict(self, client, api_sheet, tenant_headers, gateway):
        _succeed(gateway, api_sheet)
        client.post("/payments/confirm", json={"paymentIntentId": api_sheet["clientSecret"]}, headers=tenant_headers)
        response = client.post(
            "/payments/cancel",
            json={"paymentIntentId": api_sheet["clientSecret"]},
            headers=tenant_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "conflict"


class TestHistoryEndpoint:
    def test_lists_own_payments(self, client, api_sheet, tenant_headers):
        response = client.get("/payments/history", headers=tenant_headers)
        assert response.status_code == 200
        data = response.json()
        assert [p["paymentId"] for p in data["payments"]] == [api_sheet["paymentId"]]
        assert data["pagination"] == {"page": 1, "limit": 10, "total": 1, "totalPages": 1}

    def test_other_users_see_nothing(self, client, api_sheet, landlord_headers):
        data = client.get("/payments/history", headers=landlord_headers).json()
        assert data["payments"] == []
        assert data["pagination"]["total"] == 0

    def test_filters_by_status(self, client, api_sheet, tenant_headers):
        data = client.get("/payments/history?status=completed", headers=tenant_headers).json()
        assert data["payments"] == []

    def test_rejects_bad_paging(self, client, tenant_headers):
        assert client.get("/payments/history?limit=500", headers=tenant_headers).status_code == 400
        assert client.get("/payments/history?page=0", headers=tenant_headers).status_code == 400

    def test_rejects_unknown_status(self, client, tenant_headers):
        response = client.get("/payments/history?status=bogus", headers=tenant_headers)
        assert response.status_code == 400


class TestPaymentDetailEndpoint:
    def test_returns_transitions(self, client, api_sheet, tenant_headers, gateway):
        _succeed(gateway, api_sheet)
        client.post("/payments/confirm", json={"paymentIntentId": api_sheet["clientSecret"]}, headers=tenant_headers)

        response = client.get(f"/payments/{api_sheet['paymentId']}", headers=tenant_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert [t["toState"] for t in data["transitions"]] == ["pending", "completed"]
        assert data["transitions"][1]["source"] == "confirm"

    def test_other_user_is_403(self, client, api_sheet, landlord_headers):
        response = client.get(f"/payments/{api_sheet['paymentId']}", headers=landlord_headers)
        assert response.status_code == 403

    def test_unknown_payment_is_404(self, client, tenant_headers):
        response = client.get("/payments/does-not-exist", headers=tenant_headers)
        assert response.status_code == 404
