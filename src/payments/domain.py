"""Payments bounded context — Booking Payments and Refund Reconciliation.

Coordinates a booking's payment lifecycle against an external payment
gateway: charge intents, synchronous confirmation, gateway webhooks,
time-windowed refunds with landlord approval, and the booking fields
that mirror the payment outcome.
"""

from protean.domain import Domain

from payments.utils.logging import configure_logging

configure_logging()

payments = Domain(name="payments")
