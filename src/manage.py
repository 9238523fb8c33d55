"""Payments management CLI.

Provides commands to create and drop the database schema, and to run the
reconciliation sweep against the payment gateway.

Usage:
    python src/manage.py setup-db                     # Create all tables
    python src/manage.py drop-db                      # Drop all tables
    python src/manage.py reconcile [--stale-minutes N] [--limit N]
"""

import argparse
import sys
from datetime import timedelta


def setup_database():
    """Create the payments database schema."""
    from payments.domain import payments
    from payments.utils.db import setup_db

    print("Initializing payments domain...")
    payments.init()
    print("Creating payments database schema...")
    setup_db(payments)
    print("Done.")


def drop_database():
    """Drop the payments database schema."""
    from payments.domain import payments
    from payments.utils.db import drop_db

    print("Initializing payments domain...")
    payments.init()
    print("Dropping payments database schema...")
    drop_db(payments)
    print("Done.")


def reconcile(stale_minutes=None, limit=100):
    """Run one reconciliation sweep and print its report."""
    from payments.domain import payments
    from payments.payment.reconciliation import reconcile_payments

    payments.init()
    stale_after = timedelta(minutes=stale_minutes) if stale_minutes is not None else None
    with payments.domain_context():
        report = reconcile_payments(stale_after=stale_after, limit=limit)

    print(
        f"Checked {report.checked} stale payment(s): {report.advanced} advanced, "
        f"{report.unchanged} unchanged, {report.errors} error(s)."
    )
    print(f"Checked {report.bookings_checked} booking(s): {report.bookings_repaired} repaired.")
    return report


def main(argv=None):
    parser = argparse.ArgumentParser(description="Rental payments management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile stale payments with the gateway")
    reconcile_parser.add_argument(
        "--stale-minutes",
        type=int,
        default=None,
        help="Only check payments idle for this long (default: RECONCILE_STALE_AFTER_MINUTES)",
    )
    reconcile_parser.add_argument("--limit", type=int, default=100, help="Maximum payments to check")

    args = parser.parse_args(argv)

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "reconcile":
        report = reconcile(stale_minutes=args.stale_minutes, limit=args.limit)
        return 1 if report.errors else 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
