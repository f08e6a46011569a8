"""
datarepo.query.example

Query-by-example: a partially populated, never-persisted example entity -> WHERE clause.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Any

from sqlalchemy import ColumnElement, and_, inspect, true
from sqlalchemy.orm import ColumnProperty, RelationshipDirection

from datarepo.query.errors import UnknownFieldError
from datarepo.query.projection import column_keys, foreign_key_attr, relationship_keys


def _is_default(attr: ColumnProperty[Any], value: Any) -> bool:
    default = attr.columns[0].default
    return default is not None and default.is_scalar and default.arg == value


def _column_clauses(
    instance: Any, ignored: Collection[str], *, prefix: str = "", skip: Collection[str] = ()
) -> list[ColumnElement[bool]]:
    cls = type(instance)
    values = inspect(instance).dict
    clauses = []
    for attr in inspect(cls).column_attrs:
        path = f"{prefix}{attr.key}"
        if path in ignored or attr.key in skip:
            continue
        value = values.get(attr.key)
        # Unset (None) and column-default values carry no matching intent.
        if value is None or _is_default(attr, value):
            continue
        clauses.append(getattr(cls, attr.key) == value)
    return clauses


def _validate_ignored(entity: type[Any], ignore: Collection[str]) -> None:
    mapper = inspect(entity)
    for path in ignore:
        head, _, tail = path.partition(".")
        if head in column_keys(mapper) and not tail:
            continue
        if head in relationship_keys(mapper):
            if not tail or tail in column_keys(mapper.relationships[head].mapper):
                continue
        raise UnknownFieldError(entity.__name__, path, context="example ignore paths")


def example_clause(example: Any, ignore: Collection[str] = ()) -> ColumnElement[bool]:
    """
    Equality on every non-ignored, non-default field of `example`. A related example with an
    identifier matches by foreign key; without one, by its own populated columns.
    Ignore paths are attribute names, dotted for related columns (`"team.name"`).
    """

    entity = type(example)
    mapper = inspect(entity)
    _validate_ignored(entity, ignore)
    values = inspect(example).dict

    clauses: list[ColumnElement[bool]] = []
    covered: set[str] = set()
    for rel in mapper.relationships:
        if rel.direction is not RelationshipDirection.MANYTOONE:
            continue
        fk, pk = foreign_key_attr(mapper, rel)
        related = values.get(rel.key)
        if rel.key in ignore:
            # Ignoring the relation ignores its foreign-key column as well.
            covered.add(fk)
            continue
        if related is None:
            continue
        covered.add(fk)
        related_id = inspect(related).dict.get(pk)
        if related_id is not None:
            clauses.append(getattr(entity, fk) == related_id)
            continue
        nested = _column_clauses(related, ignore, prefix=f"{rel.key}.")
        if nested:
            clauses.append(getattr(entity, rel.key).has(and_(*nested)))

    clauses.extend(_column_clauses(example, ignore, skip=covered))
    return and_(*clauses) if clauses else true()
