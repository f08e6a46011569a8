"""
datarepo.query.descriptor

Structured, immutable representation of a repository query.

Responsibilities:
- Define the predicate/connector/comparator vocabulary.
- Define `QueryDescriptor`, the single input the executor understands.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from datarepo.query.paging import UNSORTED, Sort

if TYPE_CHECKING:
    from pydantic import BaseModel

    from datarepo.query.projection import ProjectionPlan


class Comparator(enum.StrEnum):
    eq = "EQ"
    ne = "NE"
    gt = "GT"
    gte = "GTE"
    lt = "LT"
    lte = "LTE"
    like = "LIKE"
    in_ = "IN"
    not_in = "NOT_IN"
    is_null = "IS_NULL"
    is_not_null = "IS_NOT_NULL"
    between = "BETWEEN"

    @property
    def arity(self) -> int:
        # Number of call arguments the comparator consumes, in declaration order.
        if self in (Comparator.is_null, Comparator.is_not_null):
            return 0
        if self is Comparator.between:
            return 2
        return 1


class Connector(enum.StrEnum):
    and_ = "AND"
    or_ = "OR"


class ResultKind(enum.StrEnum):
    one = "ONE"
    optional = "OPTIONAL"
    list = "LIST"
    page = "PAGE"
    slice = "SLICE"
    count = "COUNT"
    exists = "EXISTS"

    @property
    def windowed(self) -> bool:
        return self in (ResultKind.page, ResultKind.slice)


@dataclass(frozen=True, slots=True)
class Predicate:
    # ("age",) for a direct column, ("team", "name") for a one-hop traversal.
    path: tuple[str, ...]
    comparator: Comparator = Comparator.eq
    # Connector joining this predicate to the previous one (ignored for the first).
    connector: Connector = Connector.and_

    @property
    def arity(self) -> int:
        return self.comparator.arity

    @property
    def dotted(self) -> str:
        return ".".join(self.path)


@dataclass(frozen=True, slots=True)
class ExplicitQuery:
    # SQL normalised to `:name` placeholders; positional `?n` becomes `:pn`.
    sql: str
    params: tuple[str, ...]
    count_sql: str | None = None
    count_params: tuple[str, ...] = ()
    row_model: type[BaseModel] | None = None
    scalar: bool = False
    modifying: bool = False


@dataclass(frozen=True, slots=True)
class QueryDescriptor:
    subject: str
    entity: type[Any]
    result: ResultKind = ResultKind.list
    predicates: tuple[Predicate, ...] = ()
    sort: Sort = UNSORTED
    limit: int | None = None
    distinct: bool = False
    projection: ProjectionPlan | None = None
    fetch: tuple[str, ...] = ()
    lock: bool = False
    read_only: bool = False
    explicit: ExplicitQuery | None = None

    @property
    def arity(self) -> int:
        if self.explicit is not None:
            return len(self.explicit.params)
        return sum(p.arity for p in self.predicates)

    @property
    def modifying(self) -> bool:
        return self.explicit is not None and self.explicit.modifying


# --- Module Notes -----------------------------------------------------------
# Descriptors are built once per repository method and shared by every call;
# anything call-specific (arguments, page requests) travels separately.
