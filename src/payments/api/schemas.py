"""Pydantic request/response schemas for the Payments API.

These are external contracts (anti-corruption layer), separate from
internal Protean commands. The mobile client speaks camelCase; both
camelCase and snake_case are accepted on input, responses use camelCase.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Payment Request Schemas
# ---------------------------------------------------------------------------
class PaymentSheetRequest(CamelModel):
    booking_id: str = Field(min_length=1)

    model_config = ConfigDict(json_schema_extra={"examples": [{"bookingId": "bk-001"}]})


class PaymentIntentRequest(CamelModel):
    """Accepts the intent id or its client secret."""

    payment_intent_id: str = Field(min_length=1)
    booking_id: str | None = None


class RefundRequestBody(CamelModel):
    booking_id: str = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=2000)


class RefundDecisionBody(CamelModel):
    approve: StrictBool
    notes: str | None = Field(default=None, max_length=2000)


class RecordBookingRequest(CamelModel):
    tenant_id: str = Field(min_length=1)
    landlord_id: str = Field(min_length=1)
    total_price: float = Field(gt=0)
    status: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class PaymentSheetResponse(CamelModel):
    payment_id: str
    client_secret: str
    ephemeral_key: str
    customer_id: str
    publishable_key: str | None = None
    amount: int
    currency: str


class PaymentResponse(CamelModel):
    payment_id: str
    booking_id: str
    status: str
    amount: int
    currency: str
    payment_intent_id: str | None = None
    completed_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime | None = None


class PaymentTransitionResponse(CamelModel):
    from_state: str | None = None
    to_state: str
    source: str
    reason: str | None = None
    occurred_at: datetime


class PaymentDetailResponse(PaymentResponse):
    failure_reason: str | None = None
    transitions: list[PaymentTransitionResponse] = []


class PaginationResponse(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PaymentHistoryResponse(CamelModel):
    payments: list[PaymentResponse]
    pagination: PaginationResponse


class CancelPaymentResponse(CamelModel):
    message: str
    payment_id: str
    status: str
    booking_cancelled: bool


class RefundResponse(CamelModel):
    auto_refund: bool
    status: str
    message: str
    refund_id: str | None = None
    refund_request_id: str | None = None
    amount: int | None = None
    currency: str | None = None


class RefundDecisionResponse(CamelModel):
    status: str
    message: str
    refund_id: str | None = None


class RefundRequestResponse(CamelModel):
    id: str
    lease_id: str
    payment_id: str
    requested_by: str
    landlord_id: str
    amount: int
    currency: str
    reason: str | None = None
    status: str
    landlord_note: str | None = None
    created_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None


class RefundRequestListResponse(CamelModel):
    refund_requests: list[RefundRequestResponse]


class BookingResponse(CamelModel):
    booking_id: str
    tenant_id: str
    landlord_id: str
    total_price: float
    status: str
    payment_status: str


class WebhookAck(BaseModel):
    received: bool = True
