"""
tests.test_smoke

Minimal smoke test: the demo entrypoint boots against a file database and leaves
the expected rows behind.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from datarepo.__main__ import run
from datarepo.db.repositories.members import MemberRepository
from datarepo.db.session import create_engine, create_sessionmaker
from datarepo.db.unit_of_work import UnitOfWork
from datarepo.query.paging import Sort
from datarepo.settings import Settings


@pytest.mark.asyncio
async def test_demo_walkthrough(tmp_path: Path) -> None:
    settings = Settings(env="test", database_url=f"sqlite+aiosqlite:///{tmp_path / 'demo.db'}")

    await run(settings)

    engine = create_engine(settings)
    try:
        async with UnitOfWork(create_sessionmaker(engine), settings=settings) as uow:
            members = await uow.repository(MemberRepository).find_all(Sort.by("username"))
            # Seeded ages 10, 19, 20, 21, 40; the walkthrough bumps everyone >= 20.
            assert [m.age for m in members] == [10, 19, 21, 22, 41]
    finally:
        await engine.dispose()


# --- Module Notes -----------------------------------------------------------
# Repository behavior is covered in detail by tests/test_member_repository.py.
