"""
datarepo.query.resolver

Descriptor resolution: method names and explicit SQL -> `QueryDescriptor`.

Responsibilities:
- Parse derived method names (`find_by_username_and_age_greater_than`, camelCase accepted)
  into predicates, connectors, comparators, ordering and row limits.
- Validate every referenced field against the entity mapper.
- Parse explicit SQL placeholders (`:name` or `?1`) and check them against declared
  parameters.

Grammar of a derived name (after camelCase -> snake_case)::

    <verb>[_<subject>]_by_<criteria>[_order_by_<orders>]

    verb      find | read | get | query | search | stream | count | exists
    subject   free words; `distinct` and `top<N>` / `first<N>` are significant
    criteria  <path>[_<comparator>] joined by `_and_` / `_or_` (AND binds tighter)
    path      <field> | <relation>__<field>
    orders    (<field>[_asc|_desc])+
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel
from sqlalchemy import inspect
from sqlalchemy.orm import Mapper

from datarepo.query.descriptor import (
    Comparator,
    Connector,
    ExplicitQuery,
    Predicate,
    QueryDescriptor,
    ResultKind,
)
from datarepo.query.errors import ParameterBindingError, RepositoryError, UnknownFieldError
from datarepo.query.paging import UNSORTED, Direction, Order, Sort
from datarepo.query.projection import (
    column_keys,
    many_to_one,
    plan_projection,
    relationship_keys,
)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_DERIVED = re.compile(
    r"^(?P<verb>find|read|get|query|search|stream|count|exists)"
    r"(?:_(?P<subject>.*?))?_by_(?P<criteria>.+)$"
)
_LIMITING = re.compile(r"^(?:top|first)(\d*)$")

# Longest keyword wins; each entry is the snake_case token sequence after a field.
_COMPARATORS: tuple[tuple[tuple[str, ...], Comparator], ...] = tuple(
    sorted(
        (
            (("is", "not", "null"), Comparator.is_not_null),
            (("not", "null"), Comparator.is_not_null),
            (("is", "null"), Comparator.is_null),
            (("null",), Comparator.is_null),
            (("greater", "than", "equal"), Comparator.gte),
            (("greater", "than"), Comparator.gt),
            (("less", "than", "equal"), Comparator.lte),
            (("less", "than"), Comparator.lt),
            (("between",), Comparator.between),
            (("is", "not", "in"), Comparator.not_in),
            (("not", "in"), Comparator.not_in),
            (("is", "in"), Comparator.in_),
            (("in",), Comparator.in_),
            (("is", "like"), Comparator.like),
            (("like",), Comparator.like),
            (("is", "not"), Comparator.ne),
            (("not",), Comparator.ne),
            (("is",), Comparator.eq),
            (("equals",), Comparator.eq),
        ),
        key=lambda entry: -len(entry[0]),
    )
)
_CONNECTORS = {"and": Connector.and_, "or": Connector.or_}
# A bare relation compares by identity (foreign key), so ordering comparators make no sense.
_RELATION_COMPARATORS = frozenset(
    {Comparator.eq, Comparator.ne, Comparator.is_null, Comparator.is_not_null}
)

# String literals are skipped when scanning for placeholders.
_LITERAL = re.compile(r"('(?:[^']|'')*')")
_NAMED = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")
_POSITIONAL = re.compile(r"\?(\d+)")
_BARE_QMARK = re.compile(r"\?(?!\d)")


def to_snake(name: str) -> str:
    if name.islower() or not any(c.isupper() for c in name):
        return name
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _match_field(
    tokens: Sequence[str], start: int, names: frozenset[str]
) -> tuple[str, int] | None:
    # Greedy: field names may themselves contain underscores (`team_id`).
    for end in range(len(tokens), start, -1):
        candidate = "_".join(tokens[start:end])
        if candidate in names:
            return candidate, end
    return None


def _at_boundary(tokens: Sequence[str], pos: int) -> bool:
    return pos == len(tokens) or tokens[pos] in _CONNECTORS


def _match_comparator(tokens: Sequence[str], pos: int) -> tuple[Comparator, int] | None:
    if _at_boundary(tokens, pos):
        return Comparator.eq, pos
    for keyword, comparator in _COMPARATORS:
        end = pos + len(keyword)
        if tuple(tokens[pos:end]) == keyword and _at_boundary(tokens, end):
            return comparator, end
    return None


def _unknown(mapper: Mapper[Any], tokens: Sequence[str], start: int, subject: str):
    stop = start
    while stop < len(tokens) and tokens[stop] not in _CONNECTORS:
        stop += 1
    return UnknownFieldError(
        mapper.class_.__name__, "_".join(tokens[start:stop]) or "<empty>", context=subject
    )


def _parse_path(
    mapper: Mapper[Any], tokens: Sequence[str], pos: int, subject: str
) -> tuple[tuple[str, ...], int]:
    names = column_keys(mapper) | relationship_keys(mapper)
    matched = _match_field(tokens, pos, names)
    if matched is None:
        raise _unknown(mapper, tokens, pos, subject)
    field, pos = matched

    # `relation__field`: the double underscore leaves an empty token behind.
    if field in relationship_keys(mapper) and pos < len(tokens) and tokens[pos] == "":
        rel = many_to_one(mapper, field, context=subject)
        sub = _match_field(tokens, pos + 1, column_keys(rel.mapper))
        if sub is None:
            raise _unknown(rel.mapper, tokens, pos + 1, subject)
        return (field, sub[0]), sub[1]
    return (field,), pos


def parse_criteria(mapper: Mapper[Any], criteria: str, subject: str) -> tuple[Predicate, ...]:
    tokens = criteria.split("_")
    predicates: list[Predicate] = []
    connector = Connector.and_
    pos = 0
    while True:
        path, pos = _parse_path(mapper, tokens, pos, subject)
        matched = _match_comparator(tokens, pos)
        if matched is None:
            raise _unknown(mapper, tokens, pos, subject)
        comparator, pos = matched
        is_relation = len(path) == 1 and path[0] in relationship_keys(mapper)
        if is_relation and comparator not in _RELATION_COMPARATORS:
            raise RepositoryError(
                f"{subject}: relation {path[0]!r} supports only equality and null checks"
            )
        predicates.append(Predicate(path, comparator, connector))
        if pos == len(tokens):
            return tuple(predicates)
        connector = _CONNECTORS[tokens[pos]]
        pos += 1


def parse_orders(mapper: Mapper[Any], orders: str, subject: str) -> Sort:
    tokens = orders.split("_")
    columns = column_keys(mapper)
    parsed: list[Order] = []
    pos = 0
    while pos < len(tokens):
        matched = _match_field(tokens, pos, columns)
        if matched is None:
            raise _unknown(mapper, tokens, pos, subject)
        field, pos = matched
        direction = Direction.asc
        if pos < len(tokens) and tokens[pos] in ("asc", "desc"):
            direction = Direction(tokens[pos].upper())
            pos += 1
        parsed.append(Order(field, direction))
    return Sort(tuple(parsed))


def validate_sort(entity: type[Any], sort: Sort, *, context: str | None = None) -> Sort:
    columns = column_keys(inspect(entity))
    for order in sort:
        if order.field not in columns:
            raise UnknownFieldError(entity.__name__, order.field, context=context)
    return sort


def validate_fetch(entity: type[Any], fetch: Sequence[str], *, context: str) -> tuple[str, ...]:
    mapper = inspect(entity)
    for relation in fetch:
        many_to_one(mapper, relation, context=context)
    return tuple(fetch)


def resolve_derived(
    name: str,
    entity: type[Any],
    *,
    result: ResultKind | None = None,
    projection: type[BaseModel] | None = None,
    fetch: Sequence[str] = (),
    lock: bool = False,
    read_only: bool = False,
) -> QueryDescriptor:
    """
    Resolve a derived method name. `result` is the return-type hint; when omitted it
    follows the verb (`count_` -> COUNT, `exists_` -> EXISTS, otherwise LIST).
    """

    snake = to_snake(name)
    subject = f"{entity.__name__}.{snake}"
    match = _DERIVED.match(snake)
    if match is None:
        raise RepositoryError(f"{subject}: not a derivable query method name")

    mapper = inspect(entity)
    verb = match["verb"]
    criteria, _, orders = match["criteria"].partition("_order_by_")

    limit: int | None = None
    distinct = False
    for word in (match["subject"] or "").split("_"):
        if word == "distinct":
            distinct = True
        elif (limiting := _LIMITING.match(word)) is not None:
            limit = int(limiting.group(1) or 1)

    if result is None:
        result = {"count": ResultKind.count, "exists": ResultKind.exists}.get(
            verb, ResultKind.list
        )
    if limit is not None and result.windowed:
        # A page total would count past the row limit.
        raise RepositoryError(f"{subject}: top/first cannot return a {result.value}")

    return QueryDescriptor(
        subject=subject,
        entity=entity,
        result=result,
        predicates=parse_criteria(mapper, criteria, subject),
        sort=parse_orders(mapper, orders, subject) if orders else UNSORTED,
        limit=limit,
        distinct=distinct,
        projection=plan_projection(entity, projection) if projection is not None else None,
        fetch=validate_fetch(entity, fetch, context=subject),
        lock=lock,
        read_only=read_only,
    )


def _scan_placeholders(sql: str, subject: str) -> tuple[str, list[str], bool]:
    """
    Returns (normalised sql, placeholder names in order of first appearance, positional?).
    """

    named: list[str] = []
    positional: list[int] = []
    parts = _LITERAL.split(sql)
    for i, part in enumerate(parts):
        if i % 2:  # odd parts are the captured literals
            continue
        if _BARE_QMARK.search(part):
            raise ParameterBindingError(subject, "bare '?' placeholders are not supported; use ?1")
        for name in _NAMED.findall(part):
            if name not in named:
                named.append(name)
        for index in _POSITIONAL.findall(part):
            if int(index) not in positional:
                positional.append(int(index))
        parts[i] = _POSITIONAL.sub(lambda m: f":p{m.group(1)}", part)

    if named and positional:
        raise ParameterBindingError(subject, "mixes named and positional placeholders")
    if positional:
        ordered = sorted(positional)
        if ordered != list(range(1, len(ordered) + 1)):
            raise ParameterBindingError(
                subject, f"positional placeholders must be ?1..?n, got {ordered}"
            )
        return "".join(parts), [f"p{i}" for i in ordered], True
    return "".join(parts), named, False


def resolve_explicit(
    sql: str,
    entity: type[Any],
    *,
    subject: str,
    params: Sequence[str] | None = None,
    count_query: str | None = None,
    result: ResultKind = ResultKind.list,
    row_model: type[BaseModel] | None = None,
    scalar: bool = False,
    modifying: bool = False,
    lock: bool = False,
    read_only: bool = False,
) -> QueryDescriptor:
    """
    Explicit SQL bypasses name parsing. Placeholder names must match `params` when it
    is given; otherwise call arguments bind in order of first appearance.
    """

    normalised, names, positional = _scan_placeholders(sql, subject)
    if params is not None:
        if positional:
            raise ParameterBindingError(subject, "declared params need named placeholders")
        if len(params) != len(names) or set(params) != set(names):
            raise ParameterBindingError(
                subject,
                f"declared params {list(params)} do not match placeholders {names}",
            )
        names = list(params)

    count_sql = None
    count_names: list[str] = []
    if count_query is not None:
        count_sql, count_names, _ = _scan_placeholders(count_query, subject)
        if not set(count_names) <= set(names):
            raise ParameterBindingError(
                subject, f"count query placeholders {count_names} not bound by {names}"
            )
    if result.windowed and modifying:
        raise RepositoryError(f"{subject}: modifying queries cannot be paged")

    return QueryDescriptor(
        subject=subject,
        entity=entity,
        result=result,
        lock=lock,
        read_only=read_only,
        explicit=ExplicitQuery(
            sql=normalised,
            params=tuple(names),
            count_sql=count_sql,
            count_params=tuple(n for n in names if n in count_names),
            row_model=row_model,
            scalar=scalar,
            modifying=modifying,
        ),
    )


def named_query(entity: type[Any], name: str) -> str | None:
    queries: dict[str, str] = getattr(entity, "__named_queries__", None) or {}
    return queries.get(to_snake(name))


# --- Module Notes -----------------------------------------------------------
# Everything here is pure and runs at repository class creation; the executor
# never re-parses names or SQL.
