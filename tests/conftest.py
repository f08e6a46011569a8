"""
tests.conftest

Shared fixtures: in-memory aiosqlite engine per test, session factory, a unit of
work factory, and a recorder of executed SQL statements.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from datarepo.db.init_db import init_db
from datarepo.db.session import create_sessionmaker
from datarepo.db.unit_of_work import UnitOfWork
from datarepo.settings import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        database_url="sqlite+aiosqlite:///:memory:",
        lock_timeout_seconds=0.5,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    # StaticPool: every session shares the one in-memory database.
    engine = create_async_engine(settings.database_url, poolclass=StaticPool)
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest.fixture
def new_uow(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> Callable[[], UnitOfWork]:
    # Tests open units of work themselves: contextvars bound in an async fixture
    # belong to a different task than the test body.
    return lambda: UnitOfWork(session_factory, settings=settings)


@pytest.fixture
def statements(engine: AsyncEngine) -> Iterator[list[str]]:
    """SQL text of every statement sent to the driver while the test runs."""

    seen: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany) -> None:
        seen.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", record)
    try:
        yield seen
    finally:
        event.remove(engine.sync_engine, "before_cursor_execute", record)
