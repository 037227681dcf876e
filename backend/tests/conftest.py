"""Pytest configuration and shared fixtures.

PHD2 tests run against an in-process scripted server (tests/fixtures/
phd2_fake_server.py), so no guiding software is needed. Pass --real-phd2 to
run the hardware-marked tests against a real PHD2 instance instead.
"""

import os
import sys
from pathlib import Path

import pytest

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from phd2link.clients.phd2_client import PHD2Client  # noqa: E402
from phd2link.core.config import Settings  # noqa: E402
from tests.fixtures.phd2_fake_server import FakePHD2Server  # noqa: E402
from tests.fixtures.polling import wait_until  # noqa: E402


def pytest_addoption(parser):
    """Add command line options for tests against a real PHD2."""
    parser.addoption(
        "--real-phd2",
        action="store_true",
        default=False,
        help="Run tests against a running PHD2 instance (CAUTION: drives real equipment)",
    )
    parser.addoption(
        "--phd2-host",
        action="store",
        default=os.environ.get("PHD2_HOST", "localhost"),
        help="PHD2 host for real PHD2 tests",
    )
    parser.addoption(
        "--phd2-instance",
        action="store",
        type=int,
        default=int(os.environ.get("PHD2_INSTANCE", "1")),
        help="PHD2 instance number for real PHD2 tests",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "real_phd2: test needs a running PHD2 (enable with --real-phd2)")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--real-phd2"):
        return
    skip_real = pytest.mark.skip(reason="needs --real-phd2")
    for item in items:
        if "real_phd2" in item.keywords:
            item.add_marker(skip_real)


@pytest.fixture
def test_settings():
    """Settings with short timeouts so failing tests fail fast."""
    return Settings(
        phd2_connect_timeout=2.0,
        phd2_command_timeout=2.0,
        phd2_disconnect_timeout=1.0,
        phd2_settle_poll_interval=0.05,
    )


@pytest.fixture
async def fake_server():
    """Running scripted PHD2 server."""
    server = FakePHD2Server()
    await server.start()

    yield server

    await server.stop()


@pytest.fixture
async def connected_client(fake_server, test_settings):
    """PHD2Client connected to the fake server, with the greeting processed."""
    client = PHD2Client("127.0.0.1", fake_server.instance, settings=test_settings)
    await client.connect()
    await fake_server.wait_for_client()
    await wait_until(lambda: client.get_status().version is not None)

    yield client

    await client.disconnect()


@pytest.fixture(scope="session")
def phd2_host(request):
    """PHD2 host from command line or environment."""
    return request.config.getoption("--phd2-host")


@pytest.fixture(scope="session")
def phd2_instance(request):
    """PHD2 instance from command line or environment."""
    return request.config.getoption("--phd2-instance")
