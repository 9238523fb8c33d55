"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and StripeGateway
(production) without changing any domain or application code.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass

from payments.errors import InvalidRequest

# Webhook event types the gateway may deliver, and the charge status a
# remote PaymentIntent can report.
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_PROCESSING = "payment_intent.processing"
PAYMENT_FAILED = "payment_intent.payment_failed"
PAYMENT_CANCELED = "payment_intent.canceled"
PAYMENT_REQUIRES_ACTION = "payment_intent.requires_action"
CHARGE_REFUNDED = "charge.refunded"

SUPPORTED_EVENT_TYPES = frozenset(
    {
        PAYMENT_SUCCEEDED,
        PAYMENT_PROCESSING,
        PAYMENT_FAILED,
        PAYMENT_CANCELED,
        PAYMENT_REQUIRES_ACTION,
        CHARGE_REFUNDED,
    }
)


@dataclass(frozen=True)
class ChargeIntent:
    """A charge intent created at the gateway for the client to complete."""

    intent_id: str
    client_secret: str
    status: str = "requires_payment_method"


@dataclass(frozen=True)
class ChargeStatus:
    """The remote status of a charge intent."""

    intent_id: str
    status: str
    amount: int | None = None
    failure_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund request. ``already_refunded`` marks an idempotent replay."""

    refund_id: str | None
    refunded_amount: int | None = None
    already_refunded: bool = False


@dataclass(frozen=True)
class GatewayEvent:
    """A verified webhook notification."""

    event_id: str | None
    event_type: str
    charge_ref: str | None
    failure_reason: str | None = None

    @property
    def is_supported(self) -> bool:
        return self.event_type in SUPPORTED_EVENT_TYPES


def parse_gateway_event(payload: bytes | str) -> GatewayEvent:
    """Decode a verified webhook body into a ``GatewayEvent``.

    ``charge.refunded`` carries a Charge object, whose ``payment_intent``
    field references the intent; every other supported event carries the
    PaymentIntent itself.
    """
    try:
        data = json.loads(payload)
        event_type = data["type"]
        obj = data["data"]["object"]
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidRequest("Malformed webhook payload") from exc

    if event_type.startswith("charge.") or obj.get("object") == "charge":
        charge_ref = obj.get("payment_intent")
    else:
        charge_ref = obj.get("id")

    failure_reason = None
    last_error = obj.get("last_payment_error") or {}
    if isinstance(last_error, dict):
        failure_reason = last_error.get("message")

    return GatewayEvent(
        event_id=data.get("id"),
        event_type=event_type,
        charge_ref=charge_ref,
        failure_reason=failure_reason,
    )


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    publishable_key: str | None = None

    @abstractmethod
    def create_customer(self, user_id: str, email: str | None = None, name: str | None = None) -> str:
        """Create a customer at the gateway and return its reference."""
        ...

    @abstractmethod
    def create_ephemeral_key(self, customer_ref: str) -> str:
        """Create a short-lived key the mobile client uses to access the customer."""
        ...

    @abstractmethod
    def create_charge_intent(
        self,
        amount: int,
        currency: str,
        customer_ref: str,
        metadata: dict,
        idempotency_key: str,
    ) -> ChargeIntent:
        """Create a charge intent for ``amount`` minor units."""
        ...

    @abstractmethod
    def retrieve_charge(self, charge_ref: str) -> ChargeStatus:
        """Fetch the current remote status of a charge intent."""
        ...

    @abstractmethod
    def create_refund(self, charge_ref: str, reason: str, metadata: dict) -> RefundResult:
        """Refund a completed charge in full. Refunding twice is not an error."""
        ...

    @abstractmethod
    def cancel_charge_intent(self, charge_ref: str) -> None:
        """Cancel an open charge intent. Cancelling a settled intent is a no-op."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify a webhook body and decode it, or raise ``SignatureInvalid``."""
        ...
