"""
datarepo.query.errors

Error taxonomy for the repository layer.

Rule for absent rows, applied everywhere:
- lookups that return an optional value (`find_by_id`, `ResultKind.OPTIONAL`) give `None`;
- lookups declared as required (`get_by_id`, `ResultKind.ONE`, `delete_by_id`) raise
  `NotFoundError`.

Resolver-time errors (`UnknownFieldError`, `ParameterBindingError` for declared
placeholders) are raised while a repository class is being created, before any
statement runs. Driver/provider errors other than lock timeouts propagate unchanged.
"""

from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base exception for repository operations."""


class UnknownFieldError(RepositoryError):
    def __init__(self, entity: str, field: str, *, context: str | None = None) -> None:
        self.entity = entity
        self.field = field
        self.context = context
        where = f" in {context!r}" if context else ""
        super().__init__(f"{entity} has no field {field!r}{where}")


class ParameterBindingError(RepositoryError):
    def __init__(self, subject: str, message: str) -> None:
        self.subject = subject
        super().__init__(f"{subject}: {message}")


class AmbiguousResultError(RepositoryError):
    def __init__(self, subject: str) -> None:
        self.subject = subject
        super().__init__(f"{subject}: expected at most one row, query returned more")


class LockTimeoutError(RepositoryError):
    def __init__(self, subject: str, timeout: float) -> None:
        self.subject = subject
        self.timeout = timeout
        super().__init__(f"{subject}: row lock not acquired within {timeout}s")


class NotFoundError(RepositoryError):
    def __init__(self, entity: str, key: Any) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key!r}")
