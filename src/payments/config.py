"""Runtime settings for the Payments domain.

Domain infrastructure (databases, brokers, event store) is configured by
Protean from ``[tool.protean]`` in ``pyproject.toml``. Everything that is
specific to payments (gateway credentials, currency, refund windows and
the reconciliation sweep) is read from environment variables here.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta

DEFAULT_GATEWAY_API_VERSION = "2024-12-18.acacia"


@dataclass(frozen=True)
class GatewaySettings:
    secret_key: str | None = None
    publishable_key: str | None = None
    webhook_secret: str | None = None
    api_version: str = DEFAULT_GATEWAY_API_VERSION
    timeout: float = 10.0
    max_retries: int = 2


@dataclass(frozen=True)
class RefundPolicySettings:
    auto_refund_window_hours: float = 4
    refund_window_days: float = 7

    @property
    def auto_refund_window(self) -> timedelta:
        return timedelta(hours=self.auto_refund_window_hours)

    @property
    def refund_window(self) -> timedelta:
        return timedelta(days=self.refund_window_days)


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    currency: str = "myr"
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    refund_policy: RefundPolicySettings = field(default_factory=RefundPolicySettings)
    reconcile_stale_after_minutes: int = 30

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def reconcile_stale_after(self) -> timedelta:
        return timedelta(minutes=self.reconcile_stale_after_minutes)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from environment variables, falling back to defaults."""
    env = os.environ if environ is None else environ

    gateway = GatewaySettings(
        secret_key=env.get("STRIPE_SECRET_KEY") or None,
        publishable_key=env.get("STRIPE_PUBLISHABLE_KEY") or None,
        webhook_secret=env.get("STRIPE_WEBHOOK_SECRET") or None,
        api_version=env.get("STRIPE_API_VERSION", DEFAULT_GATEWAY_API_VERSION),
        timeout=float(env.get("PAYMENT_GATEWAY_TIMEOUT", 10)),
        max_retries=int(env.get("PAYMENT_GATEWAY_MAX_RETRIES", 2)),
    )
    refund_policy = RefundPolicySettings(
        auto_refund_window_hours=float(env.get("REFUND_AUTO_WINDOW_HOURS", 4)),
        refund_window_days=float(env.get("REFUND_WINDOW_DAYS", 7)),
    )

    return Settings(
        environment=(env.get("PROTEAN_ENV") or "development").lower(),
        currency=env.get("PAYMENT_CURRENCY", "myr").lower(),
        gateway=gateway,
        refund_policy=refund_policy,
        reconcile_stale_after_minutes=int(env.get("RECONCILE_STALE_AFTER_MINUTES", 30)),
    )
