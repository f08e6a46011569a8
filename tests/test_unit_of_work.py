"""
tests.test_unit_of_work

Transaction boundary, repository caching and log-context binding of `UnitOfWork`.
"""

from __future__ import annotations

import pytest
import structlog

from datarepo.db.models import Member
from datarepo.db.repositories.members import MemberRepository
from datarepo.db.repositories.teams import TeamRepository


@pytest.mark.asyncio
async def test_commit_on_clean_exit(new_uow) -> None:
    async with new_uow() as uow:
        await uow.repository(MemberRepository).save(Member("member1", 10))

    async with new_uow() as uow:
        assert await uow.repository(MemberRepository).count() == 1


@pytest.mark.asyncio
async def test_rollback_on_error(new_uow) -> None:
    with pytest.raises(RuntimeError, match="boom"):
        async with new_uow() as uow:
            await uow.repository(MemberRepository).save(Member("member1", 10))
            raise RuntimeError("boom")

    async with new_uow() as uow:
        assert await uow.repository(MemberRepository).count() == 0


@pytest.mark.asyncio
async def test_checkpoint_commit_survives_later_rollback(new_uow) -> None:
    with pytest.raises(RuntimeError):
        async with new_uow() as uow:
            members = uow.repository(MemberRepository)
            await members.save(Member("kept", 10))
            await uow.commit()
            await members.save(Member("dropped", 10))
            raise RuntimeError("after checkpoint")

    async with new_uow() as uow:
        names = [m.username for m in await uow.repository(MemberRepository).find_all()]
        assert names == ["kept"]


@pytest.mark.asyncio
async def test_repositories_are_cached_per_unit_of_work(new_uow) -> None:
    async with new_uow() as uow:
        members = uow.repository(MemberRepository)

        assert uow.repository(MemberRepository) is members
        assert uow.repository(TeamRepository) is not members
        assert members.session is uow.session


@pytest.mark.asyncio
async def test_session_only_inside_block(new_uow) -> None:
    uow = new_uow()
    with pytest.raises(RuntimeError):
        _ = uow.session

    async with uow:
        assert uow.session is not None

    with pytest.raises(RuntimeError):
        uow.repository(MemberRepository)


@pytest.mark.asyncio
async def test_uow_id_bound_for_log_lines(new_uow) -> None:
    async with new_uow() as uow:
        assert structlog.contextvars.get_contextvars()["uow_id"] == uow.id

        async with new_uow() as inner:
            assert inner.id != uow.id
            assert structlog.contextvars.get_contextvars()["uow_id"] == inner.id

        assert structlog.contextvars.get_contextvars()["uow_id"] == uow.id

    assert "uow_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_expire_all_refreshes_after_bulk_update(new_uow) -> None:
    async with new_uow() as uow:
        members = uow.repository(MemberRepository)
        member = await members.save(Member("member1", 30))
        member_id = member.id

        await members.bulk_age_plus(20)
        uow.expire_all()

        # Reload through the repository; touching expired attributes directly would
        # need implicit IO.
        assert await members.get_by_id(member_id) is member
        assert member.age == 31
