"""
datarepo.query.projection

Closed projections declared as pydantic models.

Responsibilities:
- Map a projection model onto an entity: scalar fields -> selected columns,
  relation-named fields typed as another model -> nested projection over the
  related entity, loaded by a secondary keyed lookup.
- Validate every projected field against the entity schema once per
  (entity, model) pair.
"""

from __future__ import annotations

import types
import typing
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import BaseModel
from sqlalchemy import inspect
from sqlalchemy.orm import Mapper, RelationshipDirection, RelationshipProperty

from datarepo.query.errors import UnknownFieldError


@dataclass(frozen=True, slots=True)
class NestedPlan:
    relation: str
    target: type[Any]
    model: type[BaseModel]
    # Attribute key of the local foreign-key column (e.g. "team_id").
    foreign_key: str
    # Attribute key of the target's primary key (e.g. "id").
    target_key: str
    fields: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ProjectionPlan:
    model: type[BaseModel]
    fields: tuple[str, ...]
    nested: tuple[NestedPlan, ...] = ()

    @property
    def selected(self) -> tuple[str, ...]:
        # Columns the primary fetch must return: flat fields plus each nested foreign key.
        extra = tuple(n.foreign_key for n in self.nested if n.foreign_key not in self.fields)
        return self.fields + extra


def column_keys(mapper: Mapper[Any]) -> frozenset[str]:
    return frozenset(attr.key for attr in mapper.column_attrs)


def relationship_keys(mapper: Mapper[Any]) -> frozenset[str]:
    return frozenset(rel.key for rel in mapper.relationships)


def many_to_one(mapper: Mapper[Any], key: str, *, context: str) -> RelationshipProperty[Any]:
    rel = mapper.relationships.get(key)
    if rel is None or rel.direction is not RelationshipDirection.MANYTOONE:
        raise UnknownFieldError(mapper.class_.__name__, key, context=context)
    return rel


def foreign_key_attr(mapper: Mapper[Any], rel: RelationshipProperty[Any]) -> tuple[str, str]:
    """(local fk attribute key, remote pk attribute key) for a single-column many-to-one."""

    (local_col, remote_col), *rest = rel.local_remote_pairs or [(None, None)]
    if local_col is None or rest:
        raise UnknownFieldError(
            mapper.class_.__name__, rel.key, context="composite or unmapped foreign key"
        )
    local = mapper.get_property_by_column(local_col).key
    remote = rel.mapper.get_property_by_column(remote_col).key
    return local, remote


def _nested_model(annotation: Any) -> type[BaseModel] | None:
    # Accept `Model`, `Model | None` and `Optional[Model]`.
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        models = [
            a for a in typing.get_args(annotation)
            if isinstance(a, type) and issubclass(a, BaseModel)
        ]
        if len(models) == 1:
            return models[0]
    return None


@lru_cache(maxsize=256)
def plan_projection(entity: type[Any], model: type[BaseModel]) -> ProjectionPlan:
    mapper = inspect(entity)
    columns = column_keys(mapper)
    context = model.__name__

    flat: list[str] = []
    nested: list[NestedPlan] = []
    for name, info in model.model_fields.items():
        sub = _nested_model(info.annotation)
        if sub is not None:
            rel = many_to_one(mapper, name, context=context)
            fk, pk = foreign_key_attr(mapper, rel)
            target_columns = column_keys(rel.mapper)
            for sub_name in sub.model_fields:
                if sub_name not in target_columns:
                    raise UnknownFieldError(
                        rel.mapper.class_.__name__, sub_name, context=f"{context}.{name}"
                    )
            nested.append(
                NestedPlan(
                    relation=name,
                    target=rel.mapper.class_,
                    model=sub,
                    foreign_key=fk,
                    target_key=pk,
                    fields=tuple(sub.model_fields),
                )
            )
        elif name in columns:
            flat.append(name)
        else:
            raise UnknownFieldError(entity.__name__, name, context=context)

    return ProjectionPlan(model=model, fields=tuple(flat), nested=tuple(nested))


# --- Module Notes -----------------------------------------------------------
# Only many-to-one relations can be nested: the lookup is keyed by the local
# foreign key, so each related row is fetched once per result set.
