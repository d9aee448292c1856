"""
Shop Service — ページネーション

(page, page_size) を OFFSET / LIMIT の窓に変換し、
すべての一覧・集計クエリに共通のレスポンス形式を与える:

    {"data": [...], "metadata": {"totalRecords", "totalPages", "currentPage", "pageSize"}}

件数クエリはデータクエリ自身をサブクエリとして包んで作る。
絞り込み・グループ化の条件がデータ側と件数側で食い違うことはない。
"""

from typing import Callable

from pydantic import BaseModel, Field, StrictInt
from sqlalchemy import Select, func, select
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_PAGE_SIZE = 10
# page, page_size とも 32bit 符号付き整数の範囲。OFFSET は 64bit に収まる
MAX_PAGE_VALUE = 2**31 - 1


class PageRequest(BaseModel):
    page: StrictInt = Field(1, ge=1, le=MAX_PAGE_VALUE)
    page_size: StrictInt = Field(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_VALUE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


def total_pages(total_records: int, page_size: int) -> int:
    """ceil(total_records / page_size)"""
    return -(-total_records // page_size)


def envelope(rows: list[dict], total_records: int, request: PageRequest) -> dict:
    return {
        "data": rows,
        "metadata": {
            "totalRecords": total_records,
            "totalPages": total_pages(total_records, request.page_size),
            "currentPage": request.page,
            "pageSize": request.page_size,
        },
    }


def count_statement(stmt: Select) -> Select:
    """窓を外したデータクエリの行数を数えるクエリ"""
    inner = stmt.limit(None).offset(None).order_by(None).subquery("counted")
    return select(func.count()).select_from(inner)


async def fetch_page(
    session: AsyncSession,
    stmt: Select,
    request: PageRequest,
    mapper: Callable[[Row], dict],
) -> dict:
    result = await session.execute(count_statement(stmt))
    total_records = result.scalar_one()

    result = await session.execute(stmt.limit(request.limit).offset(request.offset))
    rows = [mapper(row) for row in result.fetchall()]
    return envelope(rows, total_records, request)
