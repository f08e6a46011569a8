"""
datarepo.db.session

Async SQLAlchemy engine + session factory helpers.

Responsibilities:
- Create the async engine from settings.
- Create the async sessionmaker with safe defaults.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from datarepo.settings import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    connect_args: dict[str, Any] = {}
    if make_url(settings.database_url).get_backend_name() == "sqlite":
        # sqlite waits on its own busy handler; bound it by the same lock budget.
        connect_args["timeout"] = settings.lock_timeout_seconds

    # pool_pre_ping helps detect stale connections in long-lived processes.
    return create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
        echo=settings.echo_sql,
        connect_args=connect_args,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps loaded entities readable after commit without a
    # reload; autoflush=False makes every write visible only after an explicit flush.
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


# --- Module Notes -----------------------------------------------------------
# Sessions are never handed out directly; `db.unit_of_work.UnitOfWork` owns
# their lifetime and transaction boundary.
