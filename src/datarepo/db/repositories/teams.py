"""
datarepo.db.repositories.teams

Repository for `Team` entities.

Responsibilities:
- Look teams up by name for member assignment.
- Inherit the generic CRUD surface (save, find_by_id, delete, find_all).
"""

from __future__ import annotations

from datarepo.db.models import Team
from datarepo.db.repositories.base import Repository, derived
from datarepo.query.descriptor import ResultKind


class TeamRepository(Repository[Team, int]):
    entity = Team

    find_by_name = derived(returns=ResultKind.optional)


# --- Module Notes -----------------------------------------------------------
# `Team` carries no back-reference; members point at teams through
# `member.team_id` and are queried from `MemberRepository`.
