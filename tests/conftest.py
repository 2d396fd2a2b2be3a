"""Pytest configuration and shared fixtures."""

import pytest

from fakes import FakeSyncFactory, FakeTransportFactory, make_public_key


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from cloudbox.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def server_public_key():
    """Valid compressed secp256k1 key standing in for a server."""
    return make_public_key()


@pytest.fixture
def transport_factory():
    """Transport factory whose contexts connect immediately."""
    return FakeTransportFactory(connected=True)


@pytest.fixture
def sync_factory():
    """Sync factory whose sessions authenticate immediately."""
    return FakeSyncFactory(outcome="login")
