import base64
import os

import pytest
from fastapi.testclient import TestClient

from overlay_controller.api import create_app
from overlay_controller.registry import PeerRegistry


def make_pubkey(seed: int = 0) -> str:
    """Return a base64 string shaped like a 32-byte public key."""
    return base64.b64encode(bytes([seed % 256]) * 32).decode("ascii")


@pytest.fixture
def registry():
    return PeerRegistry()


@pytest.fixture
def app(registry):
    return create_app(registry=registry)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def random_pubkey():
    return base64.b64encode(os.urandom(32)).decode("ascii")
