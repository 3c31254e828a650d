"""Pytest configuration and shared fixtures."""

import os

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set testing mode BEFORE importing app to use NullPool
os.environ["TESTING"] = "true"

from service_monitor.config import settings

settings.testing = True

from service_monitor.main import app


@pytest_asyncio.fixture
async def client():
    """Async test client. The lifespan does not run, so nothing connects."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
