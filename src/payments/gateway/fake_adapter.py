"""Configurable fake payment gateway for development and testing.

This adapter simulates a real payment gateway without any external calls.
It keeps charge intents in memory, signs webhook bodies with HMAC-SHA256
the way the real gateway does, and can be configured at runtime to reject
refunds or to be unreachable, making it useful for:
- Automated tests with predictable outcomes
- Development without real gateway credentials
"""

import hashlib
import hmac
from uuid import uuid4

from payments.errors import GatewayRejected, GatewayUnavailable, SignatureInvalid
from payments.gateway.port import (
    ChargeIntent,
    ChargeStatus,
    GatewayEvent,
    PaymentGateway,
    RefundResult,
    parse_gateway_event,
)

_TERMINAL_STATUSES = ("succeeded", "canceled")


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, webhook_secret: str = "whsec_fake", publishable_key: str | None = "pk_test_fake") -> None:
        self.webhook_secret = webhook_secret
        self.publishable_key = publishable_key
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.available: bool = True
        self.intents: dict[str, dict] = {}
        self.refunds: dict[str, str] = {}
        self.calls: list[dict] = []
        self._idempotent_intents: dict[str, str] = {}

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Card declined",
        available: bool = True,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.available = available

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if not self.available:
            raise GatewayUnavailable("Payment service unavailable")

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------
    def set_charge_status(self, charge_ref: str, status: str, failure_reason: str | None = None) -> None:
        """Simulate the client (or the gateway) moving a charge intent along."""
        intent = self.intents[charge_ref]
        intent["status"] = status
        intent["failure_reason"] = failure_reason

    def sign(self, payload: bytes | str) -> str:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # PaymentGateway
    # ------------------------------------------------------------------
    def create_customer(self, user_id: str, email: str | None = None, name: str | None = None) -> str:
        self._record("create_customer", user_id=user_id, email=email, name=name)
        return f"cus_fake_{uuid4().hex[:12]}"

    def create_ephemeral_key(self, customer_ref: str) -> str:
        self._record("create_ephemeral_key", customer_ref=customer_ref)
        return f"ek_fake_{uuid4().hex[:16]}"

    def create_charge_intent(
        self,
        amount: int,
        currency: str,
        customer_ref: str,
        metadata: dict,
        idempotency_key: str,
    ) -> ChargeIntent:
        self._record(
            "create_charge_intent",
            amount=amount,
            currency=currency,
            customer_ref=customer_ref,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

        if idempotency_key in self._idempotent_intents:
            intent_id = self._idempotent_intents[idempotency_key]
        else:
            intent_id = f"pi_fake_{uuid4().hex[:16]}"
            self._idempotent_intents[idempotency_key] = intent_id
            self.intents[intent_id] = {
                "amount": amount,
                "currency": currency,
                "customer": customer_ref,
                "metadata": dict(metadata),
                "status": "requires_payment_method",
                "failure_reason": None,
            }

        return ChargeIntent(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:12]}",
            status=self.intents[intent_id]["status"],
        )

    def retrieve_charge(self, charge_ref: str) -> ChargeStatus:
        self._record("retrieve_charge", charge_ref=charge_ref)
        intent = self.intents.get(charge_ref)
        if intent is None:
            raise GatewayRejected(f"No such payment intent: {charge_ref}")
        return ChargeStatus(
            intent_id=charge_ref,
            status=intent["status"],
            amount=intent["amount"],
            failure_reason=intent["failure_reason"],
        )

    def create_refund(self, charge_ref: str, reason: str, metadata: dict) -> RefundResult:
        self._record("create_refund", charge_ref=charge_ref, reason=reason, metadata=metadata)

        if charge_ref in self.refunds:
            return RefundResult(refund_id=self.refunds[charge_ref], already_refunded=True)
        if not self.should_succeed:
            raise GatewayRejected(self.failure_reason)

        refund_id = f"re_fake_{uuid4().hex[:16]}"
        self.refunds[charge_ref] = refund_id
        amount = self.intents[charge_ref]["amount"] if charge_ref in self.intents else None
        return RefundResult(refund_id=refund_id, refunded_amount=amount)

    def cancel_charge_intent(self, charge_ref: str) -> None:
        self._record("cancel_charge_intent", charge_ref=charge_ref)
        intent = self.intents.get(charge_ref)
        if intent is not None and intent["status"] not in _TERMINAL_STATUSES:
            intent["status"] = "canceled"

    def verify_webhook_signature(self, payload: bytes, signature: str) -> GatewayEvent:
        if not signature or not hmac.compare_digest(self.sign(payload), signature):
            raise SignatureInvalid("Webhook signature verification failed")
        return parse_gateway_event(payload)
