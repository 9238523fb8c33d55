"""Refund policy: who may refund, and how, given a payment's age.

Pure decision logic with no I/O. Times are compared in UTC; naive
datetimes are taken to be UTC already.

    age <  auto window (4 h)      → AUTO_REFUND
    auto window <= age <= window  → REQUIRES_APPROVAL
    age >  window (7 d)           → RefundWindowExpired
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from payments.config import RefundPolicySettings
from payments.errors import AlreadyProcessed, AuthorizationError, InvalidRequest, RefundWindowExpired


class RefundDecision(Enum):
    AUTO_REFUND = "auto_refund"
    REQUIRES_APPROVAL = "requires_approval"


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


@dataclass(frozen=True)
class RefundPolicy:
    auto_refund_window: timedelta = timedelta(hours=4)
    refund_window: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: RefundPolicySettings) -> "RefundPolicy":
        return cls(auto_refund_window=settings.auto_refund_window, refund_window=settings.refund_window)

    def decide(self, payment_completed_at: datetime | None, now: datetime, requester_id, payment) -> RefundDecision:
        """Decide how a refund request for ``payment`` is handled."""
        if str(requester_id) != str(payment.user_id):
            raise AuthorizationError("Only the payer can request a refund")
        if payment_completed_at is None:
            raise InvalidRequest("Payment has not completed")

        age = as_utc(now) - as_utc(payment_completed_at)
        if age > self.refund_window:
            raise RefundWindowExpired(f"Refund window of {self.refund_window.days} days has expired")
        if age < self.auto_refund_window:
            return RefundDecision.AUTO_REFUND
        return RefundDecision.REQUIRES_APPROVAL

    @staticmethod
    def ensure_can_decide(refund_request, landlord_id) -> None:
        """Only the landlord of a still-pending request may approve or reject it."""
        if str(refund_request.landlord_id) != str(landlord_id):
            raise AuthorizationError("Only the landlord can process this refund request")
        if not refund_request.is_pending:
            raise AlreadyProcessed("Refund request already processed")
