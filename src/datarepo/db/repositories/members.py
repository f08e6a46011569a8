"""
datarepo.db.repositories.members

Repository for `Member` entities.

Responsibilities:
- Declare derived, named and explicit member queries.
- Demonstrate paging, slices, projections, eager fetch, read-only and locking hints.
- Host the bulk age increment (a modifying statement that bypasses the identity map).
"""

from __future__ import annotations

from sqlalchemy import select

from datarepo.db.models import Member
from datarepo.db.repositories.base import Repository, derived, query
from datarepo.dto import MemberDto, MemberProjection
from datarepo.query.descriptor import ResultKind


class MemberRepository(Repository[Member, int]):
    entity = Member

    find_by_username_and_age_greater_than = derived()
    # Resolved from Member.__named_queries__ rather than parsed.
    find_by_username = derived()
    find_user = query(
        "select * from member where username = :username and age = :age",
        params=("username", "age"),
    )
    find_username_list = query("select username from member", scalar=True)
    find_member_dto = query(
        "select m.member_id as id, m.username as username, t.name as team_name"
        " from member m join team t on t.team_id = m.team_id",
        projection=MemberDto,
    )
    find_by_names = query("select * from member where username in :names")

    # Same predicate, three return shapes.
    find_member_by_username = derived(returns=ResultKind.one)
    find_optional_by_username = derived(returns=ResultKind.optional)
    find_list_by_username = derived(returns=ResultKind.list)

    find_by_age = derived(returns=ResultKind.page)
    find_slice_by_age = derived(returns=ResultKind.slice)
    find_top3_by_age_order_by_username_desc = derived()
    count_by_age = derived()
    exists_by_username = derived()
    find_by_team__name = derived()

    # Increments every member at or above the threshold. Loaded Member instances keep
    # their old age until the unit of work is cleared.
    bulk_age_plus = query(
        "update member set age = age + 1 where age >= :age",
        modifying=True,
    )

    find_entity_graph_by_username = derived(fetch=("team",))
    find_read_only_by_username = derived(returns=ResultKind.optional, read_only=True)
    find_lock_by_username = derived(lock=True)
    # Shape chosen per call: `projection=UsernameOnly` / `projection=NestedClosedProjection`.
    find_projections_by_username = derived()

    find_by_native_projection = query(
        "select m.member_id as id, m.username as username, t.name as team_name"
        " from member m left join team t on t.team_id = m.team_id",
        count_query="select count(*) from member",
        returns=ResultKind.page,
        projection=MemberProjection,
    )

    async def find_member_custom(self) -> list[Member]:
        # Hand-written query living next to the declared ones.
        stmt = select(Member).order_by(Member.id)
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# Explicit SQL uses table/column names (`member_id`); derived names use attribute
# names (`id`). Keep both in sync with `db.models`.
