"""RefundRequest aggregate (CQRS) — a tenant's request awaiting the landlord.

Only created when a refund falls outside the automatic window. At most one
PENDING request exists per lease; the owning payment records which request
is open, so a second concurrent request fails on that payment's version.

State Machine (3 states):
    PENDING → APPROVED | REJECTED
    APPROVED, REJECTED → (terminal)
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String, Text

from payments.domain import payments
from payments.errors import AlreadyProcessed
from payments.refund.events import RefundRequestApproved, RefundRequested, RefundRequestRejected


class RefundRequestStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@payments.aggregate
class RefundRequest:
    """A refund request that needs the landlord's decision."""

    lease_id: Identifier(required=True)
    payment_id: Identifier(required=True)
    requested_by: Identifier(required=True)
    landlord_id: Identifier(required=True)

    amount: Integer(required=True)
    currency: String(max_length=3, required=True)
    reason: Text()

    status: String(choices=RefundRequestStatus, default=RefundRequestStatus.PENDING.value)
    landlord_note: Text()
    gateway_refund_id: String(max_length=255)

    approved_at: DateTime()
    rejected_at: DateTime()
    created_at: DateTime()
    updated_at: DateTime()

    @classmethod
    def open(cls, lease_id, payment_id, requested_by, landlord_id, amount, currency, reason=None, requested_at=None):
        now = requested_at or datetime.now(UTC)
        request = cls(
            lease_id=lease_id,
            payment_id=payment_id,
            requested_by=requested_by,
            landlord_id=landlord_id,
            amount=amount,
            currency=currency,
            reason=reason,
            status=RefundRequestStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        request.raise_(
            RefundRequested(
                refund_request_id=str(request.id),
                lease_id=str(lease_id),
                payment_id=str(payment_id),
                requested_by=str(requested_by),
                landlord_id=str(landlord_id),
                amount=amount,
                currency=currency,
                reason=reason,
                requested_at=now,
            )
        )
        return request

    @property
    def is_pending(self) -> bool:
        return self.status == RefundRequestStatus.PENDING.value

    def _assert_pending(self):
        if not self.is_pending:
            raise AlreadyProcessed("Refund request already processed", refund_request_id=str(self.id))

    def approve(self, gateway_refund_id=None, note=None, at=None):
        self._assert_pending()
        now = at or datetime.now(UTC)
        self.status = RefundRequestStatus.APPROVED.value
        self.gateway_refund_id = gateway_refund_id
        self.landlord_note = note
        self.approved_at = now
        self.updated_at = now
        self.raise_(
            RefundRequestApproved(
                refund_request_id=str(self.id),
                lease_id=str(self.lease_id),
                payment_id=str(self.payment_id),
                landlord_id=str(self.landlord_id),
                gateway_refund_id=gateway_refund_id,
                landlord_note=note,
                approved_at=now,
            )
        )

    def reject(self, note=None, at=None):
        self._assert_pending()
        now = at or datetime.now(UTC)
        self.status = RefundRequestStatus.REJECTED.value
        self.landlord_note = note
        self.rejected_at = now
        self.updated_at = now
        self.raise_(
            RefundRequestRejected(
                refund_request_id=str(self.id),
                lease_id=str(self.lease_id),
                payment_id=str(self.payment_id),
                landlord_id=str(self.landlord_id),
                landlord_note=note,
                rejected_at=now,
            )
        )


@payments.repository(part_of=RefundRequest)
class RefundRequestRepository:
    def find_pending_for_lease(self, lease_id) -> RefundRequest | None:
        return (
            self._dao.query.filter(lease_id=str(lease_id), status=RefundRequestStatus.PENDING.value).all().first
        )

    def for_landlord(self, landlord_id, status: str | None = None) -> list[RefundRequest]:
        filters = {"landlord_id": str(landlord_id)}
        if status:
            filters["status"] = status
        return self._dao.query.filter(**filters).order_by("-created_at").all().items

    def for_requester(self, user_id, status: str | None = None) -> list[RefundRequest]:
        filters = {"requested_by": str(user_id)}
        if status:
            filters["status"] = status
        return self._dao.query.filter(**filters).order_by("-created_at").all().items
