"""
datarepo.db.init_db

DB initialization helpers (dev/test convenience).

Responsibilities:
- Create tables for local development, the demo and tests.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from datarepo.db import models  # noqa: F401  # ensure models are registered on Base.metadata
from datarepo.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    """
    Create tables if they don't exist. Schema evolution is out of scope for this package.
    """

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
