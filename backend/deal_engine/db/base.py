"""Declarative base and the process-wide async engine.

Services never build sessions themselves: they receive the factory from
get_session_factory() (or a test fixture) and open one transaction per
operation.
"""

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from deal_engine.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str, echo: bool = False) -> dict[str, Any]:
    """Per-dialect engine arguments.

    SQLite gets a busy timeout so the concurrent reads of an eligibility
    check wait on a writer instead of failing with "database is locked".
    """
    options: dict[str, Any] = {"echo": echo}
    if make_url(url).get_backend_name() == "sqlite":
        options["connect_args"] = {"timeout": 30}
    else:
        options["pool_pre_ping"] = True
    return options


async def init_db(url: str | None = None) -> None:
    """Create the engine and session factory, then create any missing tables.

    No-op if already initialized.
    """
    global _engine, _session_factory

    if _engine is not None:
        return

    settings = get_settings()
    db_url = url or settings.database_url

    _engine = create_async_engine(db_url, **engine_options(db_url, echo=settings.debug))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    import deal_engine.db.models  # noqa: F401  (registers every table on Base.metadata)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the shared session factory.

    Raises:
        RuntimeError: init_db() has not run
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
