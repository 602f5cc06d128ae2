"""Shared FastAPI dependencies."""

import uuid
from collections.abc import AsyncGenerator

from deal_engine.core.config import get_settings
from deal_engine.core.exceptions import DealLockedError
from deal_engine.core.locking import get_deal_lock


async def require_deal_lock(deal_id: uuid.UUID) -> AsyncGenerator[str, None]:
    """Hold the per-deal writer lock for the duration of the request.

    Raises:
        DealLockedError: Another request holds the lock (HTTP 423)
    """
    settings = get_settings()
    # One owner per request; X-Request-ID is client-controlled
    owner = uuid.uuid4().hex
    deal_lock = get_deal_lock()

    async with deal_lock.lock(
        str(deal_id),
        owner,
        ttl=settings.deal_lock_ttl_seconds,
        wait=settings.deal_lock_wait_seconds > 0,
        wait_timeout=settings.deal_lock_wait_seconds,
    ) as acquired:
        if not acquired:
            raise DealLockedError(deal_id)
        yield owner
