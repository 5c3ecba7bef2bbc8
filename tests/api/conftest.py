"""API test fixtures: an app per test and an httpx.AsyncClient bound to it."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from backend.common.config import Settings
from backend.main import create_app
from tests.factories import FakeVerifier


@pytest.fixture
def app(test_settings: Settings, verifier: FakeVerifier) -> FastAPI:
    """Fresh application (and hub) per test, backed by the fake verifier."""
    return create_app(settings=test_settings, verifier=verifier)


@pytest.fixture
async def client(app: FastAPI) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
