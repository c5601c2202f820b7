"""Fixtures for exercising the app through its HTTP and WebSocket routes."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from music_dashboard.main import app as dashboard_app
from music_dashboard.routers import auth_router, spotify_router


@pytest.fixture
def app():
    spotify_router.limiter.reset()
    auth_router.limiter.reset()
    yield dashboard_app
    dashboard_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """TestClient with the lifespan running (shared HTTP client, relay wiring)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def fake_gateway():
    gateway = MagicMock()
    gateway.read = AsyncMock(return_value={})
    gateway.mutate = AsyncMock(return_value={})
    return gateway


@pytest.fixture
def bearer():
    return {"Authorization": "Bearer user-token"}
