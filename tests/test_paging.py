"""
tests.test_paging

Page/Slice window arithmetic and PageRequest validation (no database).
"""

from __future__ import annotations

import pytest

from datarepo.query.paging import Direction, Page, PageRequest, Slice, Sort, _Window


def test_first_page_of_two() -> None:
    page = Page.from_rows(["m6", "m5", "m4"], PageRequest(0, 3), total=6)

    assert page.number_of_elements == 3
    assert page.total_elements == 6
    assert page.total_pages == 2
    assert page.has_next
    assert page.is_first
    assert not page.is_last
    assert page.next_page_request() == PageRequest(1, 3)
    assert page.previous_page_request() is None


def test_last_page() -> None:
    page = Page.from_rows(["m3", "m2", "m1"], PageRequest(1, 3), total=6)

    assert not page.has_next
    assert page.is_last
    assert page.has_previous
    assert page.previous_page_request() == PageRequest(0, 3)


@pytest.mark.parametrize(
    ("total", "size", "pages"),
    [(0, 3, 0), (1, 3, 1), (6, 3, 2), (7, 3, 3), (9, 10, 1)],
)
def test_total_pages_rounds_up(total: int, size: int, pages: int) -> None:
    assert Page.from_rows([], PageRequest(0, size), total).total_pages == pages


def test_page_beyond_end_is_empty() -> None:
    page = Page.from_rows([], PageRequest(1, 10), total=2)

    assert not page.has_content
    assert page.total_elements == 2
    assert not page.has_next


def test_paging_through_covers_every_element_once() -> None:
    rows = list(range(11))
    seen: list[int] = []
    request: PageRequest | None = PageRequest(0, 4)
    while request is not None:
        window = rows[request.offset : request.offset + request.size]
        page = Page.from_rows(window, request, len(rows))
        seen.extend(page)
        request = page.next_page_request()

    assert seen == rows


def test_slice_uses_extra_row_as_next_marker() -> None:
    request = PageRequest(0, 3)

    more = Slice.from_rows([1, 2, 3, 4], request)
    assert list(more) == [1, 2, 3]
    assert more.has_next

    last = Slice.from_rows([1, 2], request)
    assert list(last) == [1, 2]
    assert not last.has_next
    assert last.is_last


def test_map_keeps_metadata() -> None:
    sort = Sort.by("username", direction=Direction.desc)
    page = Page.from_rows(["a", "b"], PageRequest(0, 2, sort), total=5)

    mapped = page.map(str.upper)

    assert list(mapped) == ["A", "B"]
    assert mapped.total_elements == 5
    assert mapped.total_pages == page.total_pages
    assert mapped.sort == sort
    # Source window is untouched.
    assert list(page) == ["a", "b"]


@pytest.mark.parametrize(("page", "size"), [(-1, 10), (0, 0), (0, -5)])
def test_invalid_page_request(page: int, size: int) -> None:
    with pytest.raises(ValueError):
        PageRequest(page, size)


def test_sort_composition() -> None:
    sort = Sort.by("age").and_(Sort.by("username", direction=Direction.desc))

    assert [(o.field, o.descending) for o in sort] == [("age", False), ("username", True)]
    assert not Sort()


def test_window_requires_has_next() -> None:
    class Unfinished(_Window[int]):
        pass

    assert "has_next" in _Window.__abstractmethods__
    with pytest.raises(TypeError):
        Unfinished()
