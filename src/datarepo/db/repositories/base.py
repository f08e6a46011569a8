"""
datarepo.db.repositories.base

Generic repository facade.

Responsibilities:
- CRUD over one mapped entity (`save`, `find_by_id`, `find_all`, `count`, `delete_by_id`, ...).
- Query-by-example and explicit relation loading.
- Turn `derived(...)` / `query(...)` class attributes into bound async methods whose
  descriptors are resolved once, when the repository class is created.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from datarepo.query.descriptor import QueryDescriptor, ResultKind
from datarepo.query.errors import NotFoundError
from datarepo.query.example import example_clause
from datarepo.query.executor import QueryExecutor
from datarepo.query.paging import Page, PageRequest, Sort
from datarepo.query.resolver import (
    named_query,
    resolve_derived,
    resolve_explicit,
    validate_sort,
)
from datarepo.settings import Settings, get_settings

EntityT = TypeVar("EntityT")
IdT = TypeVar("IdT")


class QueryMethod:
    """
    Declarative query attribute. Call it on a repository instance like a method:

        await members.find_by_username_and_age_greater_than("aaa", 19)

    Keyword-only call options: `page_request`, `sort`, `projection`.
    """

    def __init__(
        self,
        *,
        sql: str | None = None,
        returns: ResultKind | None = None,
        projection: type[BaseModel] | None = None,
        fetch: Sequence[str] = (),
        lock: bool = False,
        read_only: bool = False,
        params: Sequence[str] | None = None,
        count_query: str | None = None,
        scalar: bool = False,
        modifying: bool = False,
    ) -> None:
        self.sql = sql
        self.returns = returns
        self.projection = projection
        self.fetch = tuple(fetch)
        self.lock = lock
        self.read_only = read_only
        self.params = params
        self.count_query = count_query
        self.scalar = scalar
        self.modifying = modifying
        self.name = "<unbound>"

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def resolve(self, entity: type[Any]) -> QueryDescriptor:
        sql = self.sql if self.sql is not None else named_query(entity, self.name)
        if sql is None:
            return resolve_derived(
                self.name,
                entity,
                result=self.returns,
                projection=self.projection,
                fetch=self.fetch,
                lock=self.lock,
                read_only=self.read_only,
            )
        return resolve_explicit(
            sql,
            entity,
            subject=f"{entity.__name__}.{self.name}",
            params=self.params,
            count_query=self.count_query,
            result=self.returns or ResultKind.list,
            row_model=self.projection,
            scalar=self.scalar,
            modifying=self.modifying,
            lock=self.lock,
            read_only=self.read_only,
        )

    def __get__(self, instance: Repository[Any, Any] | None, owner: type) -> Any:
        if instance is None:
            return self
        descriptor = owner.__queries__[self.name]

        async def bound(
            *args: Any,
            page_request: PageRequest | None = None,
            sort: Sort | None = None,
            projection: type[BaseModel] | None = None,
        ) -> Any:
            return await instance.executor.execute(
                descriptor, args, page_request=page_request, sort=sort, projection=projection
            )

        bound.__name__ = self.name
        bound.__qualname__ = f"{owner.__name__}.{self.name}"
        return bound


def derived(
    *,
    returns: ResultKind | None = None,
    projection: type[BaseModel] | None = None,
    fetch: Sequence[str] = (),
    lock: bool = False,
    read_only: bool = False,
) -> Any:
    """Query derived from the attribute name (or the entity's named query of that name)."""

    return QueryMethod(
        returns=returns, projection=projection, fetch=fetch, lock=lock, read_only=read_only
    )


def query(
    sql: str,
    *,
    returns: ResultKind = ResultKind.list,
    projection: type[BaseModel] | None = None,
    params: Sequence[str] | None = None,
    count_query: str | None = None,
    scalar: bool = False,
    modifying: bool = False,
    lock: bool = False,
    read_only: bool = False,
) -> Any:
    """Explicit SQL query; `projection` maps result rows by column label."""

    return QueryMethod(
        sql=sql,
        returns=returns,
        projection=projection,
        params=params,
        count_query=count_query,
        scalar=scalar,
        modifying=modifying,
        lock=lock,
        read_only=read_only,
    )


class Repository(Generic[EntityT, IdT]):
    entity: ClassVar[type[Any]]
    __queries__: ClassVar[dict[str, QueryDescriptor]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        queries = dict(cls.__queries__)
        methods = {k: v for k, v in vars(cls).items() if isinstance(v, QueryMethod)}
        entity = getattr(cls, "entity", None)
        if entity is None:
            if methods:
                raise TypeError(f"{cls.__name__} declares queries but no `entity`")
        else:
            # Resolver errors surface here, i.e. at import time of the repository module.
            for name, method in methods.items():
                queries[name] = method.resolve(entity)
            for kind in (ResultKind.list, ResultKind.page, ResultKind.count):
                queries[f"__all_{kind.value.lower()}"] = QueryDescriptor(
                    subject=f"{entity.__name__}.find_all", entity=entity, result=kind
                )
        cls.__queries__ = queries

    def __init__(self, session: AsyncSession, *, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self.executor = QueryExecutor(session, settings=self._settings)
        self._pk = inspect(self.entity).get_property_by_column(
            inspect(self.entity).primary_key[0]
        ).key

    @property
    def session(self) -> AsyncSession:
        return self._session

    def _builtin(self, kind: ResultKind) -> QueryDescriptor:
        return self.__queries__[f"__all_{kind.value.lower()}"]

    # -- CRUD --------------------------------------------------------------------

    async def save(self, entity: EntityT) -> EntityT:
        """
        Insert when the entity has no identifier (the flush assigns one), otherwise
        upsert through `merge`. Returns the instance managed by this session.
        """

        if entity in self._session:
            await self._session.flush()
            return entity
        if inspect(entity).dict.get(self._pk) is None:
            self._session.add(entity)
            await self._session.flush()
            return entity
        merged = await self._session.merge(entity)
        await self._session.flush()
        return merged

    async def save_all(self, entities: Iterable[EntityT]) -> list[EntityT]:
        return [await self.save(e) for e in entities]

    async def find_by_id(self, entity_id: IdT) -> EntityT | None:
        return await self._session.get(self.entity, entity_id)

    async def get_by_id(self, entity_id: IdT) -> EntityT:
        found = await self.find_by_id(entity_id)
        if found is None:
            raise NotFoundError(self.entity.__name__, entity_id)
        return found

    async def exists_by_id(self, entity_id: IdT) -> bool:
        pk = getattr(self.entity, self._pk)
        stmt = select(pk).where(pk == entity_id).limit(1)
        return (await self._session.execute(stmt)).first() is not None

    async def find_all(self, sort: Sort | None = None) -> list[EntityT]:
        return await self.executor.execute(self._builtin(ResultKind.list), (), sort=sort)

    async def find_all_paged(self, page_request: PageRequest) -> Page[EntityT]:
        return await self.executor.execute(
            self._builtin(ResultKind.page), (), page_request=page_request
        )

    async def count(self) -> int:
        return await self.executor.execute(self._builtin(ResultKind.count), ())

    async def delete(self, entity: EntityT) -> None:
        await self._session.delete(entity)
        await self._session.flush()

    async def delete_by_id(self, entity_id: IdT) -> None:
        await self.delete(await self.get_by_id(entity_id))

    # -- query by example / relations ---------------------------------------------

    async def find_all_by_example(
        self, example: EntityT, *, ignore: Collection[str] = (), sort: Sort | None = None
    ) -> list[EntityT]:
        stmt = select(self.entity).where(example_clause(example, ignore))
        for order in validate_sort(self.entity, sort or Sort()):
            column = getattr(self.entity, order.field)
            stmt = stmt.order_by(column.desc() if order.descending else column.asc())
        return list((await self._session.execute(stmt)).scalars().all())

    async def count_by_example(self, example: EntityT, *, ignore: Collection[str] = ()) -> int:
        stmt = select(func.count()).select_from(self.entity).where(example_clause(example, ignore))
        return int((await self._session.execute(stmt)).scalar_one())

    async def load_relation(self, entities: Sequence[EntityT], relation: str) -> None:
        await self.executor.load_relation(self.entity, entities, relation)


# --- Module Notes -----------------------------------------------------------
# Repositories flush but never commit; the transaction belongs to `UnitOfWork`.
