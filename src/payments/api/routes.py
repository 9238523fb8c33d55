"""FastAPI routes for the Payments domain: payments, refunds, webhooks and the booking slice."""

import math

import structlog
from fastapi import APIRouter, Depends, Header, Request
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.utils.globals import current_domain

from payments.api.auth import authenticated_user
from payments.api.schemas import (
    BookingResponse,
    CancelPaymentResponse,
    PaginationResponse,
    PaymentDetailResponse,
    PaymentHistoryResponse,
    PaymentIntentRequest,
    PaymentResponse,
    PaymentSheetRequest,
    PaymentSheetResponse,
    PaymentTransitionResponse,
    RecordBookingRequest,
    RefundDecisionBody,
    RefundDecisionResponse,
    RefundRequestBody,
    RefundRequestListResponse,
    RefundRequestResponse,
    RefundResponse,
    WebhookAck,
)
from payments.booking.booking import Booking
from payments.booking.sync import RecordBooking
from payments.errors import AuthorizationError, InvalidRequest, NotFoundError, PaymentError, SignatureInvalid
from payments.gateway import get_gateway
from payments.payment.cancellation import CancelPayment
from payments.payment.confirmation import ConfirmPayment, payment_summary
from payments.payment.initiation import CreatePaymentSheet
from payments.payment.payment import Payment, PaymentState
from payments.payment.webhook import ProcessGatewayEvent
from payments.refund.refund_request import RefundRequest, RefundRequestStatus
from payments.refund.workflow import DecideRefundRequest, RequestRefund

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100


def _refund_request_response(request: RefundRequest) -> RefundRequestResponse:
    return RefundRequestResponse(
        id=str(request.id),
        lease_id=str(request.lease_id),
        payment_id=str(request.payment_id),
        requested_by=str(request.requested_by),
        landlord_id=str(request.landlord_id),
        amount=request.amount,
        currency=request.currency,
        reason=request.reason,
        status=request.status,
        landlord_note=request.landlord_note,
        created_at=request.created_at,
        approved_at=request.approved_at,
        rejected_at=request.rejected_at,
    )


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/payment-sheet", status_code=201, response_model=PaymentSheetResponse)
async def create_payment_sheet(
    body: PaymentSheetRequest,
    user_id: str = Depends(authenticated_user),
    x_user_email: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
) -> PaymentSheetResponse:
    """Create a payment sheet (charge intent) for a booking."""
    command = CreatePaymentSheet(
        booking_id=body.booking_id,
        user_id=user_id,
        email=x_user_email,
        name=x_user_name,
    )
    result = current_domain.process(command, asynchronous=False)
    return PaymentSheetResponse(**result)


@payment_router.post("/confirm", response_model=PaymentResponse)
async def confirm_payment(body: PaymentIntentRequest, user_id: str = Depends(authenticated_user)) -> PaymentResponse:
    """Confirm a payment after the client completed the payment sheet."""
    command = ConfirmPayment(charge_ref=body.payment_intent_id, user_id=user_id, booking_id=body.booking_id)
    result = current_domain.process(command, asynchronous=False)
    return PaymentResponse(**result)


@payment_router.post("/cancel", response_model=CancelPaymentResponse)
async def cancel_payment(
    body: PaymentIntentRequest,
    user_id: str = Depends(authenticated_user),
) -> CancelPaymentResponse:
    """Cancel an unsettled payment."""
    command = CancelPayment(charge_ref=body.payment_intent_id, user_id=user_id)
    result = current_domain.process(command, asynchronous=False)
    return CancelPaymentResponse(**result)


@payment_router.post("/refund", response_model=RefundResponse)
async def request_refund(body: RefundRequestBody, user_id: str = Depends(authenticated_user)) -> RefundResponse:
    """Request a refund: refunded immediately inside the auto window, otherwise sent to the landlord."""
    command = RequestRefund(booking_id=body.booking_id, user_id=user_id, reason=body.reason)
    result = current_domain.process(command, asynchronous=False)
    return RefundResponse(**result)


@payment_router.post("/refund-request/{refund_request_id}/process", response_model=RefundDecisionResponse)
async def process_refund_request(
    refund_request_id: str,
    body: RefundDecisionBody,
    user_id: str = Depends(authenticated_user),
) -> RefundDecisionResponse:
    """Landlord approves or rejects a pending refund request."""
    command = DecideRefundRequest(
        refund_request_id=refund_request_id,
        landlord_id=user_id,
        approve=body.approve,
        notes=body.notes,
    )
    result = current_domain.process(command, asynchronous=False)
    return RefundDecisionResponse(**result)


@payment_router.get("/refund-requests", response_model=RefundRequestListResponse)
async def list_refund_requests(
    role: str = "landlord",
    status: str | None = None,
    user_id: str = Depends(authenticated_user),
) -> RefundRequestListResponse:
    """Refund requests addressed to the caller (landlord) or raised by them (tenant)."""
    if status and status not in {s.value for s in RefundRequestStatus}:
        raise InvalidRequest(f"Unknown refund request status: {status}")

    repo = current_domain.repository_for(RefundRequest)
    if role == "landlord":
        requests = repo.for_landlord(user_id, status=status)
    elif role == "tenant":
        requests = repo.for_requester(user_id, status=status)
    else:
        raise InvalidRequest("role must be 'landlord' or 'tenant'")

    return RefundRequestListResponse(refund_requests=[_refund_request_response(r) for r in requests])


@payment_router.get("/history", response_model=PaymentHistoryResponse)
async def payment_history(
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    user_id: str = Depends(authenticated_user),
) -> PaymentHistoryResponse:
    """The caller's payments, newest first."""
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidRequest(f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}")
    if status and status not in {s.value for s in PaymentState}:
        raise InvalidRequest(f"Unknown payment status: {status}")

    items, total = current_domain.repository_for(Payment).history_for_user(user_id, page=page, limit=limit, state=status)
    return PaymentHistoryResponse(
        payments=[PaymentResponse(**payment_summary(payment)) for payment in items],
        pagination=PaginationResponse(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@payment_router.get("/{payment_id}", response_model=PaymentDetailResponse)
async def get_payment(payment_id: str, user_id: str = Depends(authenticated_user)) -> PaymentDetailResponse:
    """A single payment with its transition history."""
    payment = current_domain.repository_for(Payment).get_payment(payment_id)
    if not payment.belongs_to(user_id):
        raise AuthorizationError("Unauthorized access to payment", payment_id=payment_id)

    transitions = sorted(payment.transitions, key=lambda t: t.occurred_at)
    return PaymentDetailResponse(
        **payment_summary(payment),
        failure_reason=payment.failure_reason,
        transitions=[
            PaymentTransitionResponse(
                from_state=t.from_state,
                to_state=t.to_state,
                source=t.source,
                reason=t.reason,
                occurred_at=t.occurred_at,
            )
            for t in transitions
        ],
    )


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/gateway", response_model=WebhookAck)
async def gateway_webhook(request: Request, stripe_signature: str = Header(default="")) -> WebhookAck:
    """Receive a gateway notification. Only a bad signature is refused."""
    payload = await request.body()

    try:
        event = get_gateway().verify_webhook_signature(payload, stripe_signature)
    except SignatureInvalid:
        logger.warning("Webhook signature rejected", client=request.client.host if request.client else None)
        raise

    if not event.is_supported:
        logger.info("Webhook event type ignored", event_id=event.event_id, event_type=event.event_type)
        return WebhookAck()

    command = ProcessGatewayEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        charge_ref=event.charge_ref,
        failure_reason=event.failure_reason,
    )
    try:
        current_domain.process(command, asynchronous=False)
    except ExpectedVersionError:
        logger.info("Webhook lost a concurrent update", event_id=event.event_id, charge_ref=event.charge_ref)
    except PaymentError as exc:
        logger.warning(
            "Webhook processing rejected",
            event_id=event.event_id,
            event_type=event.event_type,
            error=exc.code,
            detail=exc.message,
        )

    return WebhookAck()


# ---------------------------------------------------------------------------
# Booking Router (internal)
# ---------------------------------------------------------------------------
booking_router = APIRouter(prefix="/bookings", tags=["bookings"])


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=str(booking.id),
        tenant_id=str(booking.tenant_id),
        landlord_id=str(booking.landlord_id),
        total_price=booking.total_price,
        status=booking.status,
        payment_status=booking.payment_status,
    )


@booking_router.put("/{booking_id}", response_model=BookingResponse)
async def record_booking(booking_id: str, body: RecordBookingRequest) -> BookingResponse:
    """Register or refresh the booking fields payments depends on."""
    command = RecordBooking(
        booking_id=booking_id,
        tenant_id=body.tenant_id,
        landlord_id=body.landlord_id,
        total_price=body.total_price,
        status=body.status,
    )
    current_domain.process(command, asynchronous=False)
    return _booking_response(current_domain.repository_for(Booking).get(booking_id))


@booking_router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str) -> BookingResponse:
    try:
        booking = current_domain.repository_for(Booking).get(booking_id)
    except ObjectNotFoundError as exc:
        raise NotFoundError("Booking not found", booking_id=booking_id) from exc
    return _booking_response(booking)
