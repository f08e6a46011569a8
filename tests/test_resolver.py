"""
tests.test_resolver

Method-name and explicit-SQL resolution. Pure: only the mappers are consulted.

Responsibilities:
- Derived names -> predicates, comparators, connectors, ordering, limits.
- Field validation failures at repository class creation.
- Placeholder scanning for explicit SQL.
"""

from __future__ import annotations

import pytest

from datarepo.db.models import Member
from datarepo.db.repositories.base import Repository, derived, query
from datarepo.db.repositories.members import MemberRepository
from datarepo.dto import NestedClosedProjection, UsernameOnly
from datarepo.query.descriptor import Comparator, Connector, Predicate, ResultKind
from datarepo.query.errors import ParameterBindingError, RepositoryError, UnknownFieldError
from datarepo.query.paging import Direction, Order, Sort
from datarepo.query.projection import plan_projection
from datarepo.query.resolver import (
    resolve_derived,
    resolve_explicit,
    to_snake,
    validate_sort,
)


def test_and_criteria_in_declaration_order() -> None:
    d = resolve_derived("find_by_username_and_age_greater_than", Member)

    assert d.predicates == (
        Predicate(("username",), Comparator.eq, Connector.and_),
        Predicate(("age",), Comparator.gt, Connector.and_),
    )
    assert d.result is ResultKind.list
    assert d.arity == 2


def test_camel_case_is_equivalent() -> None:
    assert to_snake("findByUsernameAndAgeGreaterThan") == "find_by_username_and_age_greater_than"
    camel = resolve_derived("findByUsernameAndAgeGreaterThan", Member)
    snake = resolve_derived("find_by_username_and_age_greater_than", Member)

    assert camel.predicates == snake.predicates


def test_or_connector() -> None:
    d = resolve_derived("find_by_username_or_age_less_than_equal", Member)

    assert [p.connector for p in d.predicates] == [Connector.and_, Connector.or_]
    assert d.predicates[1].comparator is Comparator.lte


@pytest.mark.parametrize(
    ("name", "comparator", "arity"),
    [
        ("find_by_team_id_is_null", Comparator.is_null, 0),
        ("find_by_team_id_is_not_null", Comparator.is_not_null, 0),
        ("find_by_age_between", Comparator.between, 2),
        ("find_by_username_in", Comparator.in_, 1),
        ("find_by_username_not_in", Comparator.not_in, 1),
        ("find_by_username_like", Comparator.like, 1),
        ("find_by_age_greater_than_equal", Comparator.gte, 1),
        ("find_by_username_not", Comparator.ne, 1),
    ],
)
def test_comparator_keywords(name: str, comparator: Comparator, arity: int) -> None:
    d = resolve_derived(name, Member)

    assert d.predicates[-1].comparator is comparator
    assert d.arity == arity


def test_multi_word_field_is_matched_whole() -> None:
    d = resolve_derived("find_by_team_id", Member)

    assert d.predicates[0].path == ("team_id",)


def test_top_and_order_by() -> None:
    d = resolve_derived("find_top3_by_age_order_by_username_desc", Member)

    assert d.limit == 3
    assert d.sort == Sort((Order("username", Direction.desc),))


def test_first_distinct_and_verbs() -> None:
    assert resolve_derived("find_first_by_username", Member).limit == 1
    assert resolve_derived("find_distinct_by_age", Member).distinct
    assert resolve_derived("count_by_age", Member).result is ResultKind.count
    assert resolve_derived("exists_by_username", Member).result is ResultKind.exists
    assert (
        resolve_derived("find_by_age", Member, result=ResultKind.page).result is ResultKind.page
    )


def test_top_rows_cannot_be_paged() -> None:
    with pytest.raises(RepositoryError):
        resolve_derived("find_top3_by_age", Member, result=ResultKind.page)
    with pytest.raises(RepositoryError):
        resolve_derived("find_first_by_age", Member, result=ResultKind.slice)


def test_relation_traversal() -> None:
    d = resolve_derived("find_by_team__name", Member)

    assert d.predicates[0].path == ("team", "name")
    assert d.predicates[0].dotted == "team.name"
    assert resolve_derived("findByTeam_Name", Member).predicates == d.predicates


def test_bare_relation_compares_by_identity_only() -> None:
    assert resolve_derived("find_by_team", Member).predicates[0].path == ("team",)
    with pytest.raises(RepositoryError):
        resolve_derived("find_by_team_greater_than", Member)


def test_unknown_field() -> None:
    with pytest.raises(UnknownFieldError) as info:
        resolve_derived("find_by_nickname", Member)

    assert info.value.entity == "Member"
    assert info.value.field == "nickname"


def test_unknown_order_and_traversal_fields() -> None:
    with pytest.raises(UnknownFieldError):
        resolve_derived("find_by_age_order_by_nickname", Member)
    with pytest.raises(UnknownFieldError):
        resolve_derived("find_by_team__title", Member)


def test_not_a_query_name() -> None:
    with pytest.raises(RepositoryError):
        resolve_derived("fetch_everything", Member)


def test_repository_definition_fails_on_unknown_field() -> None:
    with pytest.raises(UnknownFieldError):

        class BrokenRepository(Repository[Member, int]):
            entity = Member
            find_by_nickname = derived()


def test_queries_without_entity_are_rejected() -> None:
    with pytest.raises(TypeError):

        class Headless(Repository[Member, int]):
            find_by_username = derived()


def test_named_query_wins_over_derivation() -> None:
    d = MemberRepository.__queries__["find_by_username"]

    assert d.explicit is not None
    assert d.explicit.params == ("username",)
    assert d.predicates == ()


# -- explicit SQL -----------------------------------------------------------------


def _explicit(sql: str, **kw):
    return resolve_explicit(sql, Member, subject="Member.q", **kw)


def test_named_placeholders_in_order_of_appearance() -> None:
    d = _explicit("select * from member where age = :age and username = :username")

    assert d.explicit.params == ("age", "username")
    assert d.arity == 2


def test_declared_params_define_binding_order() -> None:
    d = _explicit(
        "select * from member where age = :age and username = :username",
        params=("username", "age"),
    )

    assert d.explicit.params == ("username", "age")


def test_positional_placeholders_are_normalised() -> None:
    d = _explicit("select * from member where username = ?1 and age > ?2")

    assert d.explicit.sql == "select * from member where username = :p1 and age > :p2"
    assert d.explicit.params == ("p1", "p2")


def test_placeholders_inside_literals_are_ignored() -> None:
    d = _explicit("select * from member where username = ':nope ?1' and age = :age")

    assert d.explicit.params == ("age",)
    assert "':nope ?1'" in d.explicit.sql


@pytest.mark.parametrize(
    ("sql", "kw"),
    [
        ("select * from member where username = :username and age = ?1", {}),
        ("select * from member where username = ?", {}),
        ("select * from member where username = ?1 and age = ?3", {}),
        ("select * from member where username = :username", {"params": ("name",)}),
        ("select * from member where username = :username", {"params": ("username", "age")}),
        (
            "select * from member where username = :username",
            {"count_query": "select count(*) from member where age = :age"},
        ),
    ],
)
def test_placeholder_errors(sql: str, kw: dict) -> None:
    with pytest.raises(ParameterBindingError):
        _explicit(sql, **kw)


def test_modifying_queries_cannot_be_paged() -> None:
    with pytest.raises(RepositoryError):
        _explicit("delete from member", modifying=True, result=ResultKind.page)


def test_explicit_declaration_errors_surface_at_class_creation() -> None:
    with pytest.raises(ParameterBindingError):

        class Mixed(Repository[Member, int]):
            entity = Member
            find_mixed = query("select * from member where username = :u and age = ?1")


# -- projections / sort -----------------------------------------------------------


def test_projection_plan() -> None:
    flat = plan_projection(Member, UsernameOnly)
    assert flat.selected == ("username",)

    nested = plan_projection(Member, NestedClosedProjection)
    assert nested.fields == ("username",)
    assert nested.selected == ("username", "team_id")
    (team,) = nested.nested
    assert (team.relation, team.foreign_key, team.target_key) == ("team", "team_id", "id")
    assert team.fields == ("name",)


def test_projection_with_unknown_field() -> None:
    from pydantic import BaseModel

    class Nickname(BaseModel):
        nickname: str

    with pytest.raises(UnknownFieldError):
        plan_projection(Member, Nickname)


def test_sort_validation() -> None:
    assert validate_sort(Member, Sort.by("username", "age"))
    with pytest.raises(UnknownFieldError):
        validate_sort(Member, Sort.by("nickname"))
