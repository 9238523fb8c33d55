"""Stripe payment gateway adapter.

Uses a per-instance ``stripe.StripeClient`` so credentials never leak into
the SDK's module globals. Network failures are retried by the SDK itself
(``max_network_retries``) and bounded by the requests client timeout; what
still fails is mapped onto the domain's gateway errors.
"""

import stripe
import structlog

from payments.config import GatewaySettings
from payments.errors import GatewayRejected, GatewayUnavailable, SignatureInvalid
from payments.gateway.port import (
    ChargeIntent,
    ChargeStatus,
    GatewayEvent,
    PaymentGateway,
    RefundResult,
    parse_gateway_event,
)

logger = structlog.get_logger(__name__)

_ALREADY_REFUNDED_CODES = ("charge_already_refunded",)
_UNEXPECTED_STATE_CODES = ("payment_intent_unexpected_state",)


def _translate_error(exc: stripe.StripeError, operation: str) -> Exception:
    """Map Stripe SDK errors onto domain gateway errors."""
    if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError, stripe.APIError)):
        logger.error("Gateway unavailable", operation=operation, error=str(exc))
        return GatewayUnavailable("Payment service unavailable, please retry")
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        logger.error("Gateway credentials rejected", operation=operation, error=str(exc))
        return GatewayUnavailable("Payment service is misconfigured")
    if isinstance(exc, stripe.CardError):
        return GatewayRejected(exc.user_message or "Your card was declined")
    logger.warning("Gateway rejected request", operation=operation, code=getattr(exc, "code", None), error=str(exc))
    return GatewayRejected(getattr(exc, "user_message", None) or "Payment gateway rejected the request")


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, settings: GatewaySettings, client: stripe.StripeClient | None = None) -> None:
        self.settings = settings
        self.publishable_key = settings.publishable_key
        self.webhook_secret = settings.webhook_secret
        self._client = client or stripe.StripeClient(
            settings.secret_key,
            http_client=stripe.RequestsClient(timeout=settings.timeout),
            max_network_retries=settings.max_retries,
        )

    def create_customer(self, user_id: str, email: str | None = None, name: str | None = None) -> str:
        params = {"metadata": {"userId": str(user_id)}}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        try:
            customer = self._client.customers.create(params=params)
        except stripe.StripeError as exc:
            raise _translate_error(exc, "create_customer") from exc
        return customer.id

    def create_ephemeral_key(self, customer_ref: str) -> str:
        try:
            key = self._client.ephemeral_keys.create(
                params={"customer": customer_ref},
                options={"stripe_version": self.settings.api_version},
            )
        except stripe.StripeError as exc:
            raise _translate_error(exc, "create_ephemeral_key") from exc
        return key.secret

    def create_charge_intent(
        self,
        amount: int,
        currency: str,
        customer_ref: str,
        metadata: dict,
        idempotency_key: str,
    ) -> ChargeIntent:
        try:
            intent = self._client.payment_intents.create(
                params={
                    "amount": amount,
                    "currency": currency,
                    "customer": customer_ref,
                    "metadata": {key: str(value) for key, value in metadata.items()},
                    "automatic_payment_methods": {"enabled": True},
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as exc:
            raise _translate_error(exc, "create_charge_intent") from exc
        return ChargeIntent(intent_id=intent.id, client_secret=intent.client_secret, status=intent.status)

    def retrieve_charge(self, charge_ref: str) -> ChargeStatus:
        try:
            intent = self._client.payment_intents.retrieve(charge_ref)
        except stripe.StripeError as exc:
            raise _translate_error(exc, "retrieve_charge") from exc

        failure_reason = None
        last_error = getattr(intent, "last_payment_error", None)
        if last_error:
            failure_reason = getattr(last_error, "message", None)
        return ChargeStatus(
            intent_id=intent.id,
            status=intent.status,
            amount=getattr(intent, "amount", None),
            failure_reason=failure_reason,
        )

    def create_refund(self, charge_ref: str, reason: str, metadata: dict) -> RefundResult:
        try:
            refund = self._client.refunds.create(
                params={
                    "payment_intent": charge_ref,
                    "reason": reason,
                    "metadata": {key: str(value) for key, value in metadata.items()},
                },
                options={"idempotency_key": f"refund-{charge_ref}"},
            )
        except stripe.InvalidRequestError as exc:
            if exc.code in _ALREADY_REFUNDED_CODES:
                logger.info("Charge already refunded at gateway", charge_ref=charge_ref)
                return RefundResult(refund_id=None, already_refunded=True)
            raise _translate_error(exc, "create_refund") from exc
        except stripe.StripeError as exc:
            raise _translate_error(exc, "create_refund") from exc
        return RefundResult(refund_id=refund.id, refunded_amount=getattr(refund, "amount", None))

    def cancel_charge_intent(self, charge_ref: str) -> None:
        try:
            self._client.payment_intents.cancel(charge_ref)
        except stripe.InvalidRequestError as exc:
            if exc.code in _UNEXPECTED_STATE_CODES:
                logger.info("Charge intent already settled at gateway", charge_ref=charge_ref)
                return
            raise _translate_error(exc, "cancel_charge_intent") from exc
        except stripe.StripeError as exc:
            raise _translate_error(exc, "cancel_charge_intent") from exc

    def verify_webhook_signature(self, payload: bytes, signature: str) -> GatewayEvent:
        if not self.webhook_secret:
            raise GatewayUnavailable("Webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise SignatureInvalid("Webhook signature verification failed") from exc
        return parse_gateway_event(payload)
