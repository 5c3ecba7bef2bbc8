"""Root test configuration: shared fixtures for all test modules.

IMPORTANT: Environment variables are set BEFORE any backend imports
so that config.py can load Settings without a .env file.
"""

from __future__ import annotations

import os

os.environ.setdefault("JWT_SECRET", "test-jwt-secret-not-for-production")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")  # Test DB 15
os.environ.setdefault("REDIS_BRIDGE_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "testing")

# Now safe to import backend modules
import pytest

from backend.common.config import Settings, get_settings
from backend.websocket.hub import BroadcastHub
from tests.factories import FakeVerifier

# ─── Clear cached settings so test env vars are used ───
get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Settings loaded from the test environment."""
    return get_settings()


@pytest.fixture
def verifier() -> FakeVerifier:
    """Fake verifier knowing three credentials: tok-u1, tok-u2, tok-u3."""
    return FakeVerifier({"tok-u1": "u1", "tok-u2": "u2", "tok-u3": "u3"})


@pytest.fixture
def hub(verifier: FakeVerifier) -> BroadcastHub:
    """A fresh hub per test, backed by the fake verifier."""
    return BroadcastHub(verifier, max_pending_messages=16)
