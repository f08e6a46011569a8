"""
datarepo.observability.context

Unit-of-work scoped logging context.

Responsibilities:
- Generate/propagate a unit-of-work id.
- Bind it into structlog contextvars for the lifetime of the unit of work.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


@contextmanager
def bound_unit_of_work(uow_id: str | None = None, **extra: object) -> Iterator[str]:
    """
    Binds `uow_id` (and any extra fields) for every log line emitted inside the block.
    Previously bound values are restored on exit so nested scopes do not leak.
    """

    uow_id = uow_id or uuid.uuid4().hex
    tokens = structlog.contextvars.bind_contextvars(uow_id=uow_id, **extra)
    try:
        yield uow_id
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


# --- Module Notes -----------------------------------------------------------
# contextvars are task-local under asyncio, so concurrent units of work in
# separate tasks keep separate ids.
