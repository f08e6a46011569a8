"""
datarepo.query.paging

Sort orders, page requests and the Page/Slice result windows.

Responsibilities:
- Validate paging windows (page >= 0, size > 0).
- Build `Page` (with a separately counted total) and `Slice` (size + 1 look-ahead row, no total).
- Provide side-effect-free `map` over a window, keeping its metadata.
"""

from __future__ import annotations

import enum
import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class Direction(enum.StrEnum):
    asc = "ASC"
    desc = "DESC"


@dataclass(frozen=True, slots=True)
class Order:
    field: str
    direction: Direction = Direction.asc

    @property
    def descending(self) -> bool:
        return self.direction is Direction.desc


@dataclass(frozen=True, slots=True)
class Sort:
    orders: tuple[Order, ...] = ()

    @classmethod
    def by(cls, *fields: str, direction: Direction = Direction.asc) -> Sort:
        return cls(tuple(Order(f, direction) for f in fields))

    def and_(self, other: Sort) -> Sort:
        return Sort(self.orders + other.orders)

    def __iter__(self) -> Iterator[Order]:
        return iter(self.orders)

    def __bool__(self) -> bool:
        return bool(self.orders)


UNSORTED = Sort()


@dataclass(frozen=True, slots=True)
class PageRequest:
    """Zero-based page index plus page size; `offset` is the row offset."""

    page: int
    size: int
    sort: Sort = field(default=UNSORTED)

    def __post_init__(self) -> None:
        if self.page < 0:
            raise ValueError(f"page index must not be negative, got {self.page}")
        if self.size < 1:
            raise ValueError(f"page size must be at least 1, got {self.size}")

    @classmethod
    def of(cls, page: int, size: int, sort: Sort | None = None) -> PageRequest:
        return cls(page, size, sort or UNSORTED)

    @property
    def offset(self) -> int:
        return self.page * self.size

    def next(self) -> PageRequest:
        return PageRequest(self.page + 1, self.size, self.sort)

    def previous_or_first(self) -> PageRequest:
        return PageRequest(max(self.page - 1, 0), self.size, self.sort)

    def first(self) -> PageRequest:
        return PageRequest(0, self.size, self.sort)


class _Window(ABC, Generic[T]):
    __slots__ = ()

    content: tuple[T, ...]
    request: PageRequest

    @property
    def number(self) -> int:
        return self.request.page

    @property
    def size(self) -> int:
        return self.request.size

    @property
    def sort(self) -> Sort:
        return self.request.sort

    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    @property
    @abstractmethod
    def has_next(self) -> bool: ...

    @property
    def has_previous(self) -> bool:
        return self.request.page > 0

    @property
    def is_first(self) -> bool:
        return self.request.page == 0

    @property
    def is_last(self) -> bool:
        return not self.has_next

    def next_page_request(self) -> PageRequest | None:
        return self.request.next() if self.has_next else None

    def previous_page_request(self) -> PageRequest | None:
        return self.request.previous_or_first() if self.has_previous else None

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class Slice(_Window[T]):
    """A window that only knows whether another one follows."""

    content: tuple[T, ...]
    request: PageRequest
    more: bool

    @classmethod
    def from_rows(cls, rows: Sequence[T], request: PageRequest) -> Slice[T]:
        # `rows` is the result of fetching size + 1; the extra row only signals a next slice.
        return cls(tuple(rows[: request.size]), request, len(rows) > request.size)

    @property
    def has_next(self) -> bool:
        return self.more

    def map(self, fn: Callable[[T], U]) -> Slice[U]:
        return Slice(tuple(fn(item) for item in self.content), self.request, self.more)


@dataclass(frozen=True, slots=True)
class Page(_Window[T]):
    """A window plus the total element count from a separate count query."""

    content: tuple[T, ...]
    request: PageRequest
    total_elements: int

    def __post_init__(self) -> None:
        if self.total_elements < 0:
            raise ValueError("total_elements must not be negative")

    @classmethod
    def from_rows(cls, rows: Sequence[T], request: PageRequest, total: int) -> Page[T]:
        return cls(tuple(rows[: request.size]), request, total)

    @property
    def total_pages(self) -> int:
        if self.total_elements == 0:
            return 0
        return math.ceil(self.total_elements / self.request.size)

    @property
    def has_next(self) -> bool:
        return self.request.page + 1 < self.total_pages

    def map(self, fn: Callable[[T], U]) -> Page[U]:
        return Page(tuple(fn(item) for item in self.content), self.request, self.total_elements)


# --- Module Notes -----------------------------------------------------------
# Windows are immutable; `map` builds a new one and never touches the source rows.
