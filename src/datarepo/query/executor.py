"""
datarepo.query.executor

Executes `QueryDescriptor`s against an `AsyncSession`.

Responsibilities:
- Bind call arguments to predicates / placeholders (arity checked before any I/O).
- Build SQLAlchemy statements for derived descriptors; wrap explicit SQL for windows.
- Shape results: single/optional/list/page/slice/count/exists, entities or projections.
- Pessimistic locking with a bounded wait, read-only (detached) fetches, and
  modifying statements that bypass the identity map.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Mapping, Sequence
from typing import Any

from pydantic import BaseModel
from sqlalchemy import (
    ColumnElement,
    Select,
    and_,
    bindparam,
    false,
    func,
    inspect,
    or_,
    select,
    text,
    true,
    update,
)
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.sql.elements import TextClause

from datarepo.observability.logging import get_logger
from datarepo.query.descriptor import (
    Comparator,
    Connector,
    ExplicitQuery,
    Predicate,
    QueryDescriptor,
    ResultKind,
)
from datarepo.query.errors import (
    AmbiguousResultError,
    LockTimeoutError,
    NotFoundError,
    ParameterBindingError,
    UnknownFieldError,
)
from datarepo.query.paging import Page, PageRequest, Slice, Sort
from datarepo.query.projection import (
    ProjectionPlan,
    foreign_key_attr,
    many_to_one,
    plan_projection,
)
from datarepo.query.resolver import validate_sort
from datarepo.settings import Settings

log = get_logger(__name__)

# PostgreSQL SQLSTATE for lock_not_available (raised when lock_timeout expires).
_PG_LOCK_NOT_AVAILABLE = "55P03"


def _is_collection(value: Any) -> bool:
    return isinstance(value, Collection) and not isinstance(value, (str, bytes, Mapping))


def _compare(target: Any, comparator: Comparator, values: Sequence[Any], subject: str):
    if comparator in (Comparator.in_, Comparator.not_in) and not _is_collection(values[0]):
        raise ParameterBindingError(
            subject, f"{comparator.value} expects a collection, got {type(values[0]).__name__}"
        )

    # `== None` renders IS NULL for columns and a foreign-key null check for relations.
    if comparator is Comparator.eq:
        return target == values[0]
    if comparator is Comparator.ne:
        return target != values[0]
    if comparator is Comparator.is_null:
        return target == None  # noqa: E711
    if comparator is Comparator.is_not_null:
        return target != None  # noqa: E711
    if comparator is Comparator.gt:
        return target > values[0]
    if comparator is Comparator.gte:
        return target >= values[0]
    if comparator is Comparator.lt:
        return target < values[0]
    if comparator is Comparator.lte:
        return target <= values[0]
    if comparator is Comparator.like:
        return target.like(values[0])
    if comparator is Comparator.in_:
        return target.in_(list(values[0]))
    if comparator is Comparator.not_in:
        return target.not_in(list(values[0]))
    if comparator is Comparator.between:
        return target.between(values[0], values[1])
    raise AssertionError(f"unhandled comparator {comparator}")


def predicate_clause(
    entity: type[Any], predicate: Predicate, values: Sequence[Any], subject: str
) -> ColumnElement[bool]:
    attr = getattr(entity, predicate.path[0])
    if len(predicate.path) == 1:
        return _compare(attr, predicate.comparator, values, subject)
    target = attr.property.mapper.class_
    # One-hop traversal as EXISTS over the related row; no join multiplies the result.
    return attr.has(
        _compare(getattr(target, predicate.path[1]), predicate.comparator, values, subject)
    )


def where_clause(
    entity: type[Any], predicates: Sequence[Predicate], args: Sequence[Any], subject: str
) -> ColumnElement[bool]:
    """Group predicates into OR-ed runs of AND-ed clauses, consuming args in order."""

    groups: list[list[ColumnElement[bool]]] = [[]]
    position = 0
    for predicate in predicates:
        values = args[position : position + predicate.arity]
        position += predicate.arity
        if predicate.connector is Connector.or_ and groups[-1]:
            groups.append([])
        groups[-1].append(predicate_clause(entity, predicate, values, subject))

    clauses = [and_(*group) for group in groups if group]
    if not clauses:
        return true()
    return clauses[0] if len(clauses) == 1 else or_(*clauses)


def _textual(sql: str, binds: Mapping[str, Any]) -> TextClause:
    stmt = text(sql)
    expanding = [bindparam(name, expanding=True) for name, v in binds.items() if _is_collection(v)]
    return stmt.bindparams(*expanding) if expanding else stmt


def _validate_labels(row_model: type[BaseModel], sort: Sort, subject: str) -> None:
    for order in sort:
        if order.field not in row_model.model_fields:
            raise UnknownFieldError(row_model.__name__, order.field, context=subject)


def _sort_columns(entity: type[Any], sort: Sort, row_model: type[BaseModel] | None) -> list[str]:
    # Row-model queries expose fields as column labels; entity rows keep table column names.
    if row_model is not None:
        return [order.field for order in sort]
    mapper = inspect(entity)
    return [mapper.get_property(order.field).columns[0].name for order in sort]


def _write_lock(entity: type[Any], scope: ColumnElement[bool] | None):
    """No-op `UPDATE ... SET pk = pk` over the rows about to be read."""

    mapper = inspect(entity)
    pk = getattr(entity, mapper.get_property_by_column(mapper.primary_key[0]).key)
    return (
        update(entity)
        .where(scope if scope is not None else false())
        .values({pk: pk})
        .execution_options(synchronize_session=False)
    )


class QueryExecutor:
    def __init__(self, session: AsyncSession, *, settings: Settings) -> None:
        self._session = session
        self._settings = settings

    async def execute(
        self,
        descriptor: QueryDescriptor,
        args: Sequence[Any],
        *,
        page_request: PageRequest | None = None,
        sort: Sort | None = None,
        projection: type[BaseModel] | None = None,
    ) -> Any:
        subject = descriptor.subject
        if len(args) != descriptor.arity:
            raise ParameterBindingError(
                subject, f"expected {descriptor.arity} argument(s), got {len(args)}"
            )
        if descriptor.result.windowed and page_request is None:
            raise ParameterBindingError(subject, f"{descriptor.result.value} needs a page_request")

        order = descriptor.sort
        if page_request is not None:
            order = order.and_(page_request.sort)
        if sort is not None:
            order = order.and_(sort)

        query = descriptor.explicit
        if query is not None and query.modifying:
            return await self.execute_modifying(descriptor, query, args)
        if query is not None:
            row_model = projection or query.row_model
            if row_model is not None:
                # Rows are shaped by the model, so sort keys are its field (= column label) names.
                _validate_labels(row_model, order, subject)
            else:
                validate_sort(descriptor.entity, order, context=subject)
            result = await self._execute_explicit(
                descriptor, query, args, page_request, order, row_model
            )
        else:
            validate_sort(descriptor.entity, order, context=subject)
            plan = descriptor.projection
            if projection is not None:
                plan = plan_projection(descriptor.entity, projection)
            result = await self._execute_derived(descriptor, args, page_request, order, plan)

        log.debug("query.execute", subject=subject, result=descriptor.result.value)
        return result

    # -- derived -----------------------------------------------------------------

    def _select(
        self, descriptor: QueryDescriptor, plan: ProjectionPlan | None, criterion, order: Sort
    ) -> Select[Any]:
        entity = descriptor.entity
        if plan is not None:
            stmt = select(*(getattr(entity, f).label(f) for f in plan.selected))
        else:
            stmt = select(entity)
            for relation in descriptor.fetch:
                stmt = stmt.options(selectinload(getattr(entity, relation)))
        stmt = stmt.where(criterion)
        if descriptor.distinct:
            stmt = stmt.distinct()
        for o in order:
            column = getattr(entity, o.field)
            stmt = stmt.order_by(column.desc() if o.descending else column.asc())
        if descriptor.lock:
            stmt = stmt.with_for_update()
        return stmt

    async def _execute_derived(
        self,
        descriptor: QueryDescriptor,
        args: Sequence[Any],
        page_request: PageRequest | None,
        order: Sort,
        plan: ProjectionPlan | None,
    ) -> Any:
        entity = descriptor.entity
        kind = descriptor.result
        criterion = where_clause(entity, descriptor.predicates, args, descriptor.subject)

        if kind is ResultKind.count:
            return await self._count(descriptor, criterion)
        if kind is ResultKind.exists:
            pk = inspect(entity).primary_key[0]
            stmt = select(pk).select_from(entity).where(criterion).limit(1)
            return (await self._run(stmt, descriptor, scope=criterion)).first() is not None

        stmt = self._select(descriptor, plan, criterion, order)
        if kind in (ResultKind.one, ResultKind.optional):
            # Two rows are enough to prove ambiguity.
            stmt = stmt.limit(min(descriptor.limit or 2, 2))
        elif page_request is not None:
            extra = 1 if kind is ResultKind.slice else 0
            size = page_request.size + extra
            if descriptor.limit is not None:
                # The window only ever covers the first `limit` rows.
                size = min(size, max(descriptor.limit - page_request.offset, 0))
            stmt = stmt.offset(page_request.offset).limit(size)
        elif descriptor.limit is not None:
            stmt = stmt.limit(descriptor.limit)

        rows = await self._fetch(stmt, descriptor, plan, criterion)
        return await self._shape(
            descriptor, rows, page_request, args, lambda: self._count(descriptor, criterion)
        )

    async def _count(self, descriptor: QueryDescriptor, criterion) -> int:
        entity = descriptor.entity
        if descriptor.distinct:
            inner = select(entity).where(criterion).distinct().subquery()
            stmt = select(func.count()).select_from(inner)
        else:
            stmt = select(func.count()).select_from(entity).where(criterion)
        return int((await self._session.execute(stmt)).scalar_one())

    async def _fetch(
        self,
        stmt: Select[Any],
        descriptor: QueryDescriptor,
        plan: ProjectionPlan | None,
        criterion: ColumnElement[bool],
    ) -> list[Any]:
        known = self._identities() if descriptor.read_only else frozenset()
        result = await self._run(stmt, descriptor, scope=criterion)
        if plan is not None:
            return await self.project(plan, list(result.mappings().all()))

        rows = list(result.scalars().all())
        if descriptor.read_only:
            self._detach(rows, descriptor.fetch, known)
        return rows

    def _identities(self) -> frozenset[Any]:
        return frozenset(self._session.identity_map.keys())

    def _detach(
        self, rows: Sequence[Any], relations: Sequence[str], known: frozenset[Any]
    ) -> None:
        """
        Expunge what this fetch loaded. Detached instances are invisible to flush, so
        mutations on them are never persisted. Instances the session already managed
        before the fetch stay managed, together with their pending changes.
        """

        loaded = []
        for row in rows:
            loaded.append(row)
            loaded.extend(row.__dict__.get(relation) for relation in relations)
        for obj in loaded:
            if obj is None or obj not in self._session:
                continue
            if inspect(obj).identity_key not in known:
                self._session.expunge(obj)

    async def project(self, plan: ProjectionPlan, rows: Sequence[Mapping[str, Any]]) -> list[Any]:
        """
        Build projection models from flat rows. Nested relations are resolved with one
        `IN` lookup per relation over the distinct foreign keys of this result set.
        """

        lookups: dict[str, dict[Any, BaseModel]] = {}
        for nested in plan.nested:
            keys = list(
                dict.fromkeys(
                    r[nested.foreign_key] for r in rows if r[nested.foreign_key] is not None
                )
            )
            found: dict[Any, BaseModel] = {}
            if keys:
                target = nested.target
                pk = getattr(target, nested.target_key)
                columns = [pk.label(nested.target_key)] + [
                    getattr(target, f).label(f) for f in nested.fields if f != nested.target_key
                ]
                result = await self._session.execute(select(*columns).where(pk.in_(keys)))
                for related in result.mappings():
                    found[related[nested.target_key]] = nested.model(
                        **{f: related[f] for f in nested.fields}
                    )
            lookups[nested.relation] = found

        out = []
        for row in rows:
            values: dict[str, Any] = {f: row[f] for f in plan.fields}
            for nested in plan.nested:
                values[nested.relation] = lookups[nested.relation].get(row[nested.foreign_key])
            out.append(plan.model(**values))
        return out

    # -- explicit ----------------------------------------------------------------

    async def _execute_explicit(
        self,
        descriptor: QueryDescriptor,
        query: ExplicitQuery,
        args: Sequence[Any],
        page_request: PageRequest | None,
        order: Sort,
        row_model: type[BaseModel] | None,
    ) -> Any:
        binds = dict(zip(query.params, args))
        kind = descriptor.result

        if kind is ResultKind.count:
            return await self._explicit_count(query, binds)
        if kind is ResultKind.exists:
            stmt = _textual(f"SELECT 1 FROM ({query.sql}) AS q LIMIT 1", binds)
            return (await self._run(stmt, descriptor, binds)).first() is not None

        sql = query.sql
        windowed = dict(binds)
        if order or page_request is not None or kind in (ResultKind.one, ResultKind.optional):
            sql = f"SELECT * FROM ({sql}) AS q"
            if order:
                columns = _sort_columns(descriptor.entity, order, row_model)
                sql += " ORDER BY " + ", ".join(
                    f"q.{column} {o.direction.value}" for column, o in zip(columns, order)
                )
            if kind in (ResultKind.one, ResultKind.optional):
                sql += " LIMIT 2"
            elif page_request is not None:
                sql += " LIMIT :_limit OFFSET :_offset"
                extra = 1 if kind is ResultKind.slice else 0
                windowed["_limit"] = page_request.size + extra
                windowed["_offset"] = page_request.offset

        stmt = _textual(sql, binds)
        if query.scalar:
            rows = list((await self._run(stmt, descriptor, windowed)).scalars().all())
        elif row_model is not None:
            result = await self._run(stmt, descriptor, windowed)
            rows = [row_model.model_validate(dict(m)) for m in result.mappings()]
        else:
            known = self._identities() if descriptor.read_only else frozenset()
            orm_stmt = select(descriptor.entity).from_statement(stmt)
            rows = list((await self._run(orm_stmt, descriptor, windowed)).scalars().all())
            if descriptor.read_only:
                self._detach(rows, (), known)

        return await self._shape(
            descriptor, rows, page_request, args, lambda: self._explicit_count(query, binds)
        )

    async def _explicit_count(self, query: ExplicitQuery, binds: Mapping[str, Any]) -> int:
        if query.count_sql is not None:
            count_binds = {k: binds[k] for k in query.count_params}
            stmt = _textual(query.count_sql, count_binds)
        else:
            count_binds = dict(binds)
            stmt = _textual(f"SELECT count(*) FROM ({query.sql}) AS c", count_binds)
        return int((await self._session.execute(stmt, count_binds)).scalar_one())

    async def execute_modifying(
        self, descriptor: QueryDescriptor, query: ExplicitQuery, args: Sequence[Any]
    ) -> int:
        """
        Run a data-modifying statement and return the affected-row count.

        The statement goes straight to the database: entities already loaded in this
        session keep their old attribute values. Callers that need fresh state must
        `UnitOfWork.clear()` (or `expire_all()`) before re-reading.
        """

        binds = dict(zip(query.params, args))
        # Pending changes must reach the database first or the statement would miss them.
        await self._session.flush()
        result = await self._run(_textual(query.sql, binds), descriptor, binds)
        affected = result.rowcount
        log.info("query.modifying", subject=descriptor.subject, affected=affected)
        return affected

    # -- shared ------------------------------------------------------------------

    async def _shape(
        self,
        descriptor: QueryDescriptor,
        rows: list[Any],
        page_request: PageRequest | None,
        args: Sequence[Any],
        count,
    ) -> Any:
        kind = descriptor.result
        if kind in (ResultKind.one, ResultKind.optional):
            if len(rows) > 1:
                raise AmbiguousResultError(descriptor.subject)
            if rows:
                return rows[0]
            if kind is ResultKind.one:
                raise NotFoundError(descriptor.entity.__name__, tuple(args))
            return None
        # `execute` rejects windowed kinds without a page request.
        if page_request is not None and kind is ResultKind.slice:
            return Slice.from_rows(rows, page_request)
        if page_request is not None and kind is ResultKind.page:
            return Page.from_rows(rows, page_request, await count())
        return rows

    async def _run(
        self,
        stmt,
        descriptor: QueryDescriptor,
        params: Mapping[str, Any] | None = None,
        *,
        scope: ColumnElement[bool] | None = None,
    ):
        if not descriptor.lock:
            return await self._session.execute(stmt, params)

        timeout = self._settings.lock_timeout_seconds
        try:
            return await asyncio.wait_for(self._locked(stmt, descriptor, params, scope), timeout)
        except TimeoutError as e:
            raise LockTimeoutError(descriptor.subject, timeout) from e
        except OperationalError as e:
            if _is_lock_failure(e):
                raise LockTimeoutError(descriptor.subject, timeout) from e
            raise

    async def _locked(
        self,
        stmt,
        descriptor: QueryDescriptor,
        params: Mapping[str, Any] | None,
        scope: ColumnElement[bool] | None,
    ):
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            # Server-side bound too, so the lock wait ends even if the client timer is late.
            timeout = self._settings.lock_timeout_seconds
            await self._session.execute(
                text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'")
            )
        elif dialect == "sqlite":
            # sqlite renders no FOR UPDATE and a deferred transaction's SELECT locks nothing.
            # A no-op write takes the database write lock, held until commit or rollback;
            # a competing writer waits on the busy timeout and then fails as locked.
            await self._session.execute(_write_lock(descriptor.entity, scope))
        return await self._session.execute(stmt, params)

    # -- relations ---------------------------------------------------------------

    async def load_relation(self, entity: type[Any], rows: Sequence[Any], relation: str) -> None:
        """
        Explicit deferred load of a many-to-one relation: one `IN` query over the
        distinct foreign keys, then each row's relation is set as already-loaded state.
        """

        mapper = inspect(entity)
        rel = many_to_one(mapper, relation, context=f"{entity.__name__}.load_relation")
        fk, pk = foreign_key_attr(mapper, rel)
        keys = list(dict.fromkeys(getattr(r, fk) for r in rows if getattr(r, fk) is not None))

        targets: dict[Any, Any] = {}
        if keys:
            target = rel.mapper.class_
            stmt = select(target).where(getattr(target, pk).in_(keys))
            for loaded in (await self._session.execute(stmt)).scalars():
                targets[getattr(loaded, pk)] = loaded
        for row in rows:
            set_committed_value(row, relation, targets.get(getattr(row, fk)))


def _is_lock_failure(error: OperationalError) -> bool:
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == _PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(orig).lower()


# --- Module Notes -----------------------------------------------------------
# The executor never commits or rolls back; a failed statement leaves the
# transaction for `UnitOfWork` to roll back.
