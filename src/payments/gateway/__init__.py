"""Payment gateway factory.

Provides get_gateway() / install_gateway() to swap implementations:
- StripeGateway whenever a secret key is configured
- FakeGateway for development and testing when none is
"""

import structlog

from payments.config import Settings, load_settings
from payments.errors import GatewayUnavailable
from payments.gateway.fake_adapter import FakeGateway
from payments.gateway.port import PaymentGateway
from payments.gateway.stripe_adapter import StripeGateway

logger = structlog.get_logger(__name__)

_current_gateway: PaymentGateway | None = None


def build_gateway(settings: Settings) -> PaymentGateway:
    """Build the gateway adapter the settings call for."""
    if settings.gateway.secret_key:
        logger.info("Using Stripe payment gateway", api_version=settings.gateway.api_version)
        return StripeGateway(settings.gateway)
    if settings.is_production:
        logger.error("Payment gateway secret key is not configured")
        raise GatewayUnavailable("Payment service is not configured")

    logger.info("Using fake payment gateway", environment=settings.environment)
    return FakeGateway(
        webhook_secret=settings.gateway.webhook_secret or "whsec_fake",
        publishable_key=settings.gateway.publishable_key or "pk_test_fake",
    )


def get_gateway() -> PaymentGateway:
    """Return the installed payment gateway, building it on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = build_gateway(load_settings())
    return _current_gateway


def install_gateway(gateway: PaymentGateway) -> None:
    """Install the active payment gateway (at startup, or in tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Forget the installed gateway so the next call rebuilds it."""
    global _current_gateway
    _current_gateway = None
