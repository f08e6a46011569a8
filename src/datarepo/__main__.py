"""
datarepo.__main__

Demo entrypoint: `python -m datarepo`.

Responsibilities:
- Load settings and configure structured logging.
- Create the engine/session factory and the schema.
- Run a short member/team walkthrough (paging, projection, bulk update) inside
  units of work, logging each result as JSON.
"""

from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from datarepo.db.init_db import init_db
from datarepo.db.models import Member, Team
from datarepo.db.repositories.members import MemberRepository
from datarepo.db.repositories.teams import TeamRepository
from datarepo.db.session import create_engine, create_sessionmaker
from datarepo.db.unit_of_work import UnitOfWork
from datarepo.dto import MemberDto, NestedClosedProjection
from datarepo.observability.logging import configure_logging, get_logger
from datarepo.query.paging import Direction, PageRequest, Sort
from datarepo.settings import Settings, get_settings

log = get_logger(__name__)


async def seed(factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
    async with UnitOfWork(factory, settings=settings) as uow:
        teams = uow.repository(TeamRepository)
        members = uow.repository(MemberRepository)
        team_a = await teams.save(Team("teamA"))
        team_b = await teams.save(Team("teamB"))
        for i, age in enumerate((10, 19, 20, 21, 40), start=1):
            await members.save(Member(f"member{i}", age, team_a if i % 2 else team_b))


async def walkthrough(factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
    async with UnitOfWork(factory, settings=settings) as uow:
        members = uow.repository(MemberRepository)

        request = PageRequest.of(0, 3, Sort.by("username", direction=Direction.desc))
        page = await members.find_all_paged(request)
        await members.load_relation(list(page.content), "team")
        dtos = page.map(MemberDto.from_member)
        log.info(
            "demo.page",
            content=[d.model_dump() for d in dtos],
            total_elements=page.total_elements,
            total_pages=page.total_pages,
            has_next=page.has_next,
        )

        projected = await members.find_projections_by_username(
            "member1", projection=NestedClosedProjection
        )
        log.info("demo.projection", rows=[p.model_dump() for p in projected])

        affected = await members.bulk_age_plus(20)
        uow.clear()
        ages = [m.age for m in await members.find_all(Sort.by("username"))]
        log.info("demo.bulk_update", affected=affected, ages=ages)


async def run(settings: Settings) -> None:
    engine = create_engine(settings)
    try:
        await init_db(engine)
        factory = create_sessionmaker(engine)
        await seed(factory, settings)
        await walkthrough(factory, settings)
    finally:
        # Dispose the engine to close pools/FDs gracefully.
        await engine.dispose()


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    log.info("startup", env=settings.env)
    asyncio.run(run(settings))
    log.info("shutdown")


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Point DATAREPO_DATABASE_URL at "sqlite+aiosqlite:///:memory:" for a throwaway run;
# the default file database accumulates rows across runs.
