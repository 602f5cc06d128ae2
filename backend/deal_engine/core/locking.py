"""Per-deal exclusive locks backed by Redis.

Finalization and lifecycle actions read a deal, decide, then write. Two
writers on the same deal can interleave between the read and the write,
so callers hold this lock for the duration of the operation:

- One owner per deal at a time (SET NX)
- Automatic expiry so a crashed writer never wedges a deal
- Owner-checked release
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis

from deal_engine.db.redis import get_redis


class DealLock:
    """Manages per-deal single-writer locks using Redis."""

    LOCK_PREFIX = "dealengine:lock:deal:"
    DEFAULT_TTL = 60

    def __init__(self, client: redis.Redis | None = None):
        self._client = client

    async def _get_redis(self) -> redis.Redis:
        """Get the injected client or the shared Redis connection."""
        return self._client or get_redis()

    def _lock_key(self, deal_id: str) -> str:
        return f"{self.LOCK_PREFIX}{deal_id}"

    async def acquire(self, deal_id: str, owner: str, ttl: int | None = None) -> bool:
        """Attempt to acquire the lock on a deal.

        Args:
            deal_id: Deal identifier
            owner: Identifier of the lock owner (request id, admin id)
            ttl: Lock time-to-live in seconds

        Returns:
            True if acquired (or already held by this owner), False otherwise
        """
        r = await self._get_redis()
        key = self._lock_key(deal_id)
        ttl = ttl or self.DEFAULT_TTL

        lock_value = f"{owner}|{datetime.now(UTC).isoformat()}"
        if await r.set(key, lock_value, nx=True, ex=ttl):
            return True

        current = await r.get(key)
        if current and current.startswith(f"{owner}|"):
            await r.expire(key, ttl)
            return True

        return False

    async def release(self, deal_id: str, owner: str) -> bool:
        """Release a deal lock. Returns False if not owned by this owner."""
        r = await self._get_redis()
        key = self._lock_key(deal_id)

        current = await r.get(key)
        if current and current.startswith(f"{owner}|"):
            await r.delete(key)
            return True

        return False

    async def is_locked(self, deal_id: str) -> dict | None:
        """Return lock info if the deal is locked, None otherwise."""
        r = await self._get_redis()
        key = self._lock_key(deal_id)

        current = await r.get(key)
        if not current:
            return None

        owner, _, locked_at = current.partition("|")
        return {
            "deal_id": deal_id,
            "owner": owner,
            "locked_at": locked_at or None,
            "expires_in": await r.ttl(key),
        }

    @asynccontextmanager
    async def lock(
        self,
        deal_id: str,
        owner: str,
        ttl: int | None = None,
        wait: bool = False,
        wait_timeout: int = 10,
    ) -> AsyncGenerator[bool, None]:
        """Context manager for deal locking.

        Yields:
            True if the lock was acquired

        Example:
            async with deal_lock.lock(deal_id, request_id) as acquired:
                if acquired:
                    await finalization.finalize_allocations(deal_id)
        """
        acquired = False
        try:
            if wait:
                start = datetime.now(UTC)
                while (datetime.now(UTC) - start).total_seconds() < wait_timeout:
                    acquired = await self.acquire(deal_id, owner, ttl)
                    if acquired:
                        break
                    await asyncio.sleep(0.2)
            else:
                acquired = await self.acquire(deal_id, owner, ttl)

            yield acquired

        finally:
            if acquired:
                await self.release(deal_id, owner)


_deal_lock: DealLock | None = None


def get_deal_lock() -> DealLock:
    """Get the singleton DealLock instance."""
    global _deal_lock
    if _deal_lock is None:
        _deal_lock = DealLock()
    return _deal_lock
