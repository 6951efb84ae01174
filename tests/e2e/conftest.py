"""
E2E test fixtures for the ArangoDB SDK.

These tests require a running ArangoDB server, e.g.
    docker run -e ARANGO_NO_AUTH=1 -p 8529:8529 arangodb:3.11
and ARANGO_E2E_TESTS=1. The server is located through the usual
ARANGO_ settings (ARANGO_URLS, ARANGO_PASSWORD, ...).
"""

import os
import socket
import time
from urllib.parse import urlparse

import pytest
import pytest_asyncio

from sdk.arango_sdk import ConnectionSettings, DbClient

E2E_ENABLED = os.environ.get("ARANGO_E2E_TESTS", "0") == "1"


def wait_for_service(host: str, port: int, timeout: int = 60) -> bool:
    """Wait for a service to become available."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(1)
    return False


@pytest.fixture(scope="session")
def settings() -> ConnectionSettings:
    """Settings from the environment, after the first server answers."""
    if not E2E_ENABLED:
        pytest.skip("E2E tests disabled")
    settings = ConnectionSettings()
    url = urlparse(settings.urls[0])
    assert wait_for_service(url.hostname or "localhost", url.port or 8529), "ArangoDB not ready"
    return settings


@pytest_asyncio.fixture
async def client(settings):
    async with DbClient(settings) as client:
        yield client
