"""
datarepo.db.base

SQLAlchemy declarative base.

Responsibilities:
- Provide a shared DeclarativeBase for all ORM models.
- Guard entity identifiers against reassignment.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def guard_identifier(instance: Any, key: str, value: Any) -> Any:
    """
    Validator body for primary-key attributes: an assigned identifier may be
    re-set to the same value (merge does this) but never changed.
    """

    # Read the raw state; attribute access could trigger a load on an expired instance.
    current = instance.__dict__.get(key)
    if current is not None and value != current:
        raise ValueError(
            f"{type(instance).__name__}.{key} is immutable once assigned ({current!r} -> {value!r})"
        )
    return value


# --- Module Notes -----------------------------------------------------------
# All ORM models inherit from `Base` so `init_db` and metadata discovery work.
