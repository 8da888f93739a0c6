"""Shared test fixtures."""

import os

# Settings has no default secret; set one before anything imports config.settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-only")
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from src.fw_common.actor import Actor  # noqa: E402
from src.fw_common.enums import Role  # noqa: E402
from src.main import app  # noqa: E402


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def customer() -> Actor:
    return Actor(user_id="cust-1", role=Role.CUSTOMER)


@pytest.fixture
def fundi() -> Actor:
    return Actor(user_id="fundi-1", role=Role.FUNDI)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role=Role.ADMIN)
