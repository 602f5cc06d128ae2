"""API-specific test fixtures."""

import pytest
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient

from deal_engine.core.locking import DealLock


@pytest.fixture
def deal_lock(monkeypatch) -> DealLock:
    """Swap the singleton deal lock for one backed by in-memory fakeredis."""
    import deal_engine.core.locking as locking_mod

    lock = DealLock(FakeAsyncRedis(decode_responses=True))
    monkeypatch.setattr(locking_mod, "_deal_lock", lock)
    return lock


@pytest.fixture
def app():
    from deal_engine.main import create_app

    return create_app()


@pytest.fixture
async def client(app, engine, deal_lock):
    """In-process client. The engine fixture points get_session_factory() at the test database."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
