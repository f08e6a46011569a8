"""
datarepo.db.models

Example schema used to exercise the repository layer.

Responsibilities:
- Define ORM models:
  - Team: a named group of members
  - Member: a user with an age and an optional, non-owning reference to a Team
- Register named queries resolved ahead of method-name derivation.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from datarepo.db.base import Base, guard_identifier


class Team(Base):
    __tablename__ = "team"

    id: Mapped[int] = mapped_column("team_id", primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __init__(self, name: str, **kw) -> None:
        super().__init__(name=name, **kw)

    @validates("id")
    def _validate_id(self, key: str, value: int | None) -> int | None:
        return guard_identifier(self, key, value)

    def __repr__(self) -> str:
        return f"Team(id={self.__dict__.get('id')!r}, name={self.name!r})"


class Member(Base):
    __tablename__ = "member"

    # Consulted by the resolver before a method name is parsed.
    __named_queries__ = {
        "find_by_username": "select * from member where username = :username",
    }

    id: Mapped[int] = mapped_column("member_id", primary_key=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    age: Mapped[int] = mapped_column(nullable=False, default=0)
    team_id: Mapped[int | None] = mapped_column(
        ForeignKey("team.team_id"), nullable=True, index=True
    )

    # No implicit lazy load: callers fetch eagerly (descriptor `fetch`) or via
    # `Repository.load_relation`.
    team: Mapped[Team | None] = relationship(lazy="raise")

    def __init__(self, username: str, age: int = 0, team: Team | None = None, **kw) -> None:
        super().__init__(username=username, age=age, **kw)
        if team is not None:
            self.change_team(team)

    @validates("id")
    def _validate_id(self, key: str, value: int | None) -> int | None:
        return guard_identifier(self, key, value)

    def change_team(self, team: Team) -> None:
        self.team = team

    def __repr__(self) -> str:
        return (
            f"Member(id={self.__dict__.get('id')!r}, username={self.username!r}, age={self.age!r})"
        )


# --- Module Notes -----------------------------------------------------------
# Column names (`member_id`, `team_id`) differ from attribute names on purpose:
# explicit SQL queries use column names, derived queries use attribute names.
