"""Pytest configuration shared by the tamaclient test suite."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Make the helpers package importable without installing the tests.
_tests_root = Path(__file__).parent
if str(_tests_root) not in sys.path:
    sys.path.insert(0, str(_tests_root))

from helpers.fake_backend import FakeBackend, signed_in_client  # noqa: E402


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def client(backend: FakeBackend):
    """A client signed in against the fake backend with an instant poll interval."""
    signed_in = await signed_in_client(backend)
    try:
        yield signed_in
    finally:
        await signed_in.close()


@pytest.fixture(autouse=True)
def _clear_tama_env(monkeypatch):
    for name in (
        "TAMA_SERVER_KEY",
        "TAMA_HOST",
        "TAMA_PORT",
        "TAMA_USE_SSL",
        "TAMA_TIMEOUT",
        "TAMA_CARDINAL_URL",
        "TAMA_SESSION_REFRESH_MARGIN",
        "TAMA_REQUIRED_TICK_DELTA",
        "TAMA_MAX_POLL_ROUNDS",
        "TAMA_POLL_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)
