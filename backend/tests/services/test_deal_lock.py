"""Tests for the per-deal Redis lock."""

import pytest
from fakeredis import FakeAsyncRedis

from deal_engine.core.locking import DealLock

pytestmark = pytest.mark.unit


@pytest.fixture
def deal_lock():
    return DealLock(FakeAsyncRedis(decode_responses=True))


async def test_second_owner_cannot_acquire(deal_lock):
    assert await deal_lock.acquire("deal-1", "req-a")
    assert not await deal_lock.acquire("deal-1", "req-b")


async def test_same_owner_reacquires(deal_lock):
    assert await deal_lock.acquire("deal-1", "req-a")
    assert await deal_lock.acquire("deal-1", "req-a")


async def test_release_requires_owner(deal_lock):
    await deal_lock.acquire("deal-1", "req-a")

    assert not await deal_lock.release("deal-1", "req-b")
    assert await deal_lock.release("deal-1", "req-a")
    assert await deal_lock.is_locked("deal-1") is None


async def test_locks_are_per_deal(deal_lock):
    assert await deal_lock.acquire("deal-1", "req-a")
    assert await deal_lock.acquire("deal-2", "req-b")


async def test_is_locked_reports_owner_and_ttl(deal_lock):
    await deal_lock.acquire("deal-1", "req-a", ttl=30)

    info = await deal_lock.is_locked("deal-1")

    assert info["owner"] == "req-a"
    assert 0 < info["expires_in"] <= 30


async def test_context_manager_releases_on_exit(deal_lock):
    async with deal_lock.lock("deal-1", "req-a") as acquired:
        assert acquired
        async with deal_lock.lock("deal-1", "req-b") as contended:
            assert not contended

    assert await deal_lock.is_locked("deal-1") is None


async def test_context_manager_releases_on_error(deal_lock):
    with pytest.raises(RuntimeError):
        async with deal_lock.lock("deal-1", "req-a"):
            raise RuntimeError("boom")

    assert await deal_lock.acquire("deal-1", "req-b")
