"""
Tests for pagination arithmetic and the shared envelope.
"""

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from app.pagination import MAX_PAGE_VALUE, PageRequest, count_statement, envelope, total_pages
from app.schema import orders


@pytest.mark.parametrize(
    "total, size, expected",
    [(0, 5, 0), (1, 5, 1), (5, 5, 1), (6, 5, 2), (10, 3, 4), (48, 10, 5), (7, 1, 7)],
)
def test_total_pages_is_ceiling(total, size, expected):
    assert total_pages(total, size) == expected


def test_offset_and_limit():
    request = PageRequest(page=3, page_size=4)
    assert request.offset == 8
    assert request.limit == 4


def test_defaults():
    request = PageRequest()
    assert request.page == 1
    assert request.page_size == 10
    assert request.offset == 0


@pytest.mark.parametrize(
    "values",
    [
        {"page": 0},
        {"page": -2},
        {"page_size": 0},
        {"page": "2"},
        {"page_size": 2.5},
        {"page": False},
        {"page": 2**64},
        {"page_size": 2**64},
        {"page": MAX_PAGE_VALUE + 1},
    ],
)
def test_rejects_malformed_input(values):
    with pytest.raises(ValidationError):
        PageRequest(**values)


def test_largest_window_fits_in_signed_64_bits():
    request = PageRequest(page=MAX_PAGE_VALUE, page_size=MAX_PAGE_VALUE)
    assert request.offset + request.limit < 2**63


def test_envelope_shape():
    body = envelope([{"id": 6}], 6, PageRequest(page=2, page_size=5))
    assert body == {
        "data": [{"id": 6}],
        "metadata": {"totalRecords": 6, "totalPages": 2, "currentPage": 2, "pageSize": 5},
    }


def test_count_statement_keeps_grouping_and_drops_window():
    stmt = (
        select(orders.c.user_id, func.sum(orders.c.quantity).label("qty"))
        .group_by(orders.c.user_id)
        .having(func.sum(orders.c.quantity) > 3)
        .order_by(orders.c.user_id)
        .limit(5)
        .offset(10)
    )

    sql = str(count_statement(stmt).compile())

    assert sql.lower().startswith("select count(*)")
    assert "GROUP BY" in sql
    assert "HAVING" in sql
    assert "LIMIT" not in sql
    assert "ORDER BY" not in sql
