import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from payments.api.errors import register_payment_exception_handlers
from payments.api.middleware import register_request_context
from payments.api.routes import booking_router, payment_router, webhook_router


@pytest.fixture()
def client():
    app = FastAPI()
    register_payment_exception_handlers(app)
    register_request_context(app)
    app.include_router(payment_router)
    app.include_router(webhook_router)
    app.include_router(booking_router)
    return TestClient(app)


@pytest.fixture()
def tenant_headers():
    return {"X-User-Id": "tenant-001"}


@pytest.fixture()
def landlord_headers():
    return {"X-User-Id": "landlord-001"}


@pytest.fixture()
def api_booking(client):
    response = client.put(
        "/bookings/bk-api-001",
        json={"tenantId": "tenant-001", "landlordId": "landlord-001", "totalPrice": 250.0},
    )
    assert response.status_code == 200
    return response.json()["bookingId"]


@pytest.fixture()
def api_sheet(client, api_booking, tenant_headers):
    response = client.post("/payments/payment-sheet", json={"bookingId": api_booking}, headers=tenant_headers)
    assert response.status_code == 201
    return response.json()
