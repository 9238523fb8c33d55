import os
from pathlib import Path

import pytest

_DIRECTORY_MARKERS = {
    "domain": pytest.mark.domain,
    "application": pytest.mark.application,
    "integration": pytest.mark.integration,
    "bdd": pytest.mark.bdd,
}


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Activate the payments domain before collection.

    Command and repository modules register themselves on import, so the
    domain is initialized once here and its context stays pushed for the
    whole session; ``current_domain`` works everywhere after this.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    # Tests never talk to the real gateway
    os.environ.pop("STRIPE_SECRET_KEY", None)

    from payments.domain import payments

    payments.init()
    payments.domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Mark tests by the layer directory they live in."""
    for item in items:
        parts = Path(item.fspath).parts
        for directory, marker in _DIRECTORY_MARKERS.items():
            if directory in parts:
                item.add_marker(marker)

        # HTTP round-trips are the slowest layer
        if "integration" in parts and not any(m.name == "fast" for m in item.iter_markers()):
            item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session", autouse=True)
def setup_db(request):
    from payments.domain import payments
    from payments.utils.db import drop_db, setup_db

    setup_db(payments)

    yield

    drop_db(payments)


@pytest.fixture(autouse=True)
def run_around_tests():
    """Reset ledger, bookings and refund requests after every test."""
    yield

    from protean import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    current_domain.event_store.store._data_reset()
