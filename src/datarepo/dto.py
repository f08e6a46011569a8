"""
datarepo.dto

Read shapes returned instead of full entities.

Responsibilities:
- `MemberDto`: flattened member view (id, username, team name or None).
- Closed projections used with derived queries (`UsernameOnly`, `NestedClosedProjection`).
- `MemberProjection`: row shape of the paged member/team SQL query.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from sqlalchemy import inspect

from datarepo.db.models import Member


class MemberDto(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    team_name: str | None = None

    @classmethod
    def from_member(cls, member: Member) -> MemberDto:
        """
        The member's team must already be loaded (eager fetch or `load_relation`);
        only a member without a team may skip that.
        """

        team = None
        if member.team_id is not None or "team" not in inspect(member).unloaded:
            team = member.team
        return cls(id=member.id, username=member.username, team_name=team.name if team else None)


class UsernameOnly(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str


class TeamName(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class NestedClosedProjection(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    team: TeamName | None = None


class MemberProjection(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    team_name: str | None = None


# --- Module Notes -----------------------------------------------------------
# Projection field names are entity attribute names (or relation names for
# nested models); they are checked against the mapper when first used.
