# tests/conftest.py
import pytest
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

from dropline.core.config import Settings
from dropline.deps import build_services
from dropline.main import app
from factories import YieldingStore

@pytest.fixture
def anyio_backend():
    # keep AnyIO on asyncio for every test
    return "asyncio"

@pytest.fixture
async def services():
    """Fresh in-memory store, bus, live service and coordinator per test."""
    store, bus, live, coordinator = build_services(Settings(use_mongo=False, subscriber_queue_size=64))
    yield store, bus, live, coordinator
    await bus.close()

@pytest.fixture
async def racy_services():
    """Same wiring over a store whose reads yield, to force stale-read interleavings."""
    store, bus, live, coordinator = build_services(Settings(use_mongo=False), store=YieldingStore())
    yield store, bus, live, coordinator
    await bus.close()

@pytest.fixture
async def test_client():
    # a fresh lifespan per test, so every test starts with an empty store
    async with LifespanManager(app):
        transport = ASGITransport(app=app, raise_app_exceptions=True)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
