import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the config overlay before any cartstream module is imported."""
    os.environ["CARTSTREAM_ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    from cartstream.config import load_settings

    return load_settings(
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cartstream.db'}",
        default_tax_rate=0.13,
        default_shipping=0.0,
        keepalive_seconds=0.05,
        subscriber_buffer=10,
    )


@pytest.fixture
async def cart_domain(settings):
    """A fully wired cart domain on a fresh database, drained on teardown."""
    from cartstream.domain import CartDomain

    domain = CartDomain(settings)
    await domain.init()

    yield domain

    await domain.shutdown()


@pytest.fixture
def pipeline(cart_domain):
    return cart_domain.pipeline
