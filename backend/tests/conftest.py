"""Shared test fixtures for all test groups."""

import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from deal_engine.db.base import Base
from deal_engine.db.models import Contribution, ContributionStatus, Deal, KycStatus, Participant

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


def wallet(index: int) -> str:
    """Deterministic, valid 20-byte wallet address."""
    return f"0x{index:040x}"


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """Create a fresh database per test and point the global session factory at it.

    Uses a file-backed SQLite database so concurrent sessions (eligibility
    checks run in parallel) see the same data. Set TEST_DATABASE_URL to run
    against PostgreSQL instead.
    """
    import deal_engine.db.base as db_mod

    url = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'deal_engine_test.db'}")
    engine = create_async_engine(url, **db_mod.engine_options(url))

    import deal_engine.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------


@pytest.fixture
def create_deal(session_factory):
    """Insert a deal. Defaults describe a deal accepting contributions."""

    async def _create(**overrides) -> Deal:
        values = {
            "title": "Test Deal",
            "status": "guaranteed_allocation",
            "hard_cap": Decimal("1000"),
            "min_contribution": Decimal("0"),
            "max_contribution": Decimal("0"),
            "requires_kyc": True,
            "allowed_countries": [],
            "blocked_countries": [],
            "contribution_open_at": NOW - timedelta(days=1),
            "contribution_close_at": NOW + timedelta(days=6),
        }
        values.update(overrides)
        deal = Deal(**values)
        async with session_factory() as session:
            async with session.begin():
                session.add(deal)
        return deal

    return _create


@pytest.fixture
def create_participant(session_factory):
    """Insert a participant. Defaults pass every participant-side check."""
    counter = iter(range(1, 10_000))

    async def _create(**overrides) -> Participant:
        values = {
            "wallet_address": wallet(next(counter)),
            "tier_level": "bronze",
            "kyc_status": KycStatus.APPROVED.value,
            "country": "GB",
        }
        values.update(overrides)
        participant = Participant(**values)
        async with session_factory() as session:
            async with session.begin():
                session.add(participant)
        return participant

    return _create


@pytest.fixture
def add_contribution(session_factory):
    """Insert a contribution; `minutes` offsets created_at from NOW for arrival order."""

    async def _add(
        deal: Deal,
        participant: Participant,
        amount: str | Decimal,
        status: ContributionStatus = ContributionStatus.CONFIRMED,
        minutes: int = 0,
    ) -> Contribution:
        contribution = Contribution(
            id=uuid.uuid4(),
            deal_id=deal.id,
            participant_id=participant.id,
            amount=Decimal(amount),
            status=status.value,
            created_at=NOW + timedelta(minutes=minutes),
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(contribution)
        return contribution

    return _add
