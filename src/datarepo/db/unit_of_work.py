"""
datarepo.db.unit_of_work

Transaction boundary + identity-map owner.

Responsibilities:
- Open one session and one transaction per unit of work.
- Commit on clean exit, roll back on error (and re-raise).
- Hand out repositories bound to that session.
- Expose explicit identity-map invalidation for callers that ran bulk updates.
"""

from __future__ import annotations

from contextlib import ExitStack
from types import TracebackType
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from datarepo.db.repositories.base import Repository
from datarepo.observability.context import bound_unit_of_work
from datarepo.observability.logging import get_logger
from datarepo.settings import Settings

log = get_logger(__name__)

RepoT = TypeVar("RepoT", bound=Repository)


class UnitOfWork:
    """
    Usage::

        async with UnitOfWork(session_factory, settings=settings) as uow:
            members = uow.repository(MemberRepository)
            await members.save(Member("member1", 10))

    The identity map lives exactly as long as this object; nothing is shared across
    units of work.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._session: AsyncSession | None = None
        self._repositories: dict[type[Repository], Repository] = {}
        self._scope = ExitStack()
        self.id: str | None = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("unit of work is not active; use `async with`")
        return self._session

    async def __aenter__(self) -> UnitOfWork:
        self.id = self._scope.enter_context(bound_unit_of_work())
        self._session = self._session_factory()
        log.debug("uow.begin")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        session = self.session
        try:
            if exc_type is None:
                await session.commit()
                log.debug("uow.commit")
            else:
                await session.rollback()
                log.debug("uow.rollback", error=repr(exc))
        finally:
            await session.close()
            self._session = None
            self._repositories.clear()
            self._scope.close()

    def repository(self, repo_cls: type[RepoT]) -> RepoT:
        repo = self._repositories.get(repo_cls)
        if repo is None:
            repo = repo_cls(self.session, settings=self._settings)
            self._repositories[repo_cls] = repo
        return repo  # type: ignore[return-value]

    async def flush(self) -> None:
        await self.session.flush()

    async def commit(self) -> None:
        # Mid-unit checkpoint; the session autobegins a new transaction afterwards.
        await self.session.commit()

    def clear(self) -> None:
        """
        Detach every loaded entity. Required after a modifying query when the caller
        wants to re-read rows it already holds: bulk statements bypass the identity map.
        Pending changes that were not flushed are discarded.
        """

        self.session.expunge_all()
        log.debug("uow.clear")

    def expire_all(self) -> None:
        # Keeps identities; expired rows are repopulated by the next query that returns them.
        self.session.expire_all()


# --- Module Notes -----------------------------------------------------------
# Modifying queries never refresh entities loaded in this unit of work; see
# `query.executor.QueryExecutor.execute_modifying`.
