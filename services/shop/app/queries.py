"""
Shop Service — クエリハンドラ (CQRS の Read 側)

読み取り専用の分析クエリと一覧取得。すべてページネーション付きで、
同じ入力・同じデータなら同じ結果を返す (ORDER BY を必ず付ける)。
ロックは取らない。並行する書き込みとの前後関係はバックエンドの
既定の分離レベルに従う。

失敗時は例外を投げず、QueryFault / ValidationError の構造化結果を返す。
"""

import logging
from decimal import Decimal
from typing import Callable

from pydantic import ValidationError
from sqlalchemy import Numeric, Select, bindparam, func, select, true
from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import pagination
from .errors import ErrorKind, failure, validation_failure
from .filters import CrossFilter
from .pagination import PageRequest
from .schema import orders, products, users

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = Decimal("1000")


def _money(value) -> float:
    return float(value) if value is not None else 0.0


async def _paged(
    session: AsyncSession,
    operation: str,
    stmt: Select,
    request: PageRequest,
    mapper: Callable[[Row], dict],
) -> dict:
    try:
        return await pagination.fetch_page(session, stmt, request, mapper)
    except SQLAlchemyError:
        logger.exception("Query failed: %s", operation)
        return failure(ErrorKind.QUERY_FAULT, f"{operation} query failed")
    except Exception:
        # ドライバが SQLAlchemy で包まずに投げるもの (接続拒否など)
        logger.exception("Unexpected error in query: %s", operation)
        return failure(ErrorKind.QUERY_FAULT, f"{operation} query failed")


def _page_request(page: int, page_size: int) -> PageRequest:
    return PageRequest(page=page, page_size=page_size)


# ── 分析クエリ ───────────────────────────────────


def cross_combination_statement(filter: CrossFilter | None = None) -> Select:
    stmt = (
        select(
            users.c.name.label("user_name"),
            products.c.name.label("product_name"),
            products.c.price,
        )
        .select_from(users)
        .join(products, true())
        .order_by(users.c.id, products.c.id)
    )
    clause = filter.to_clause() if filter is not None else None
    if clause is not None:
        stmt = stmt.where(clause)
    return stmt


async def cross_combination(
    session: AsyncSession,
    filter: CrossFilter | None = None,
    page: int = 1,
    page_size: int = pagination.DEFAULT_PAGE_SIZE,
) -> dict:
    """全ユーザー × 全商品の組み合わせ (任意の構造化フィルタ付き)"""
    try:
        request = _page_request(page, page_size)
    except ValidationError as exc:
        return validation_failure(exc)

    return await _paged(
        session,
        "crossCombination",
        cross_combination_statement(filter),
        request,
        lambda row: {
            "user_name": row.user_name,
            "product_name": row.product_name,
            "price": _money(row.price),
        },
    )


def users_above_threshold_statement(threshold: Decimal) -> Select:
    total_spent = func.sum(orders.c.quantity * products.c.price)
    return (
        select(users.c.name.label("user_name"), total_spent.label("total_spent"))
        .select_from(users)
        .join(orders, orders.c.user_id == users.c.id)
        .join(products, products.c.id == orders.c.product_id)
        .group_by(users.c.id, users.c.name)
        .having(total_spent > bindparam("threshold", threshold, type_=Numeric(14, 2)))
        .order_by(users.c.id)
    )


async def users_above_threshold(
    session: AsyncSession,
    page: int = 1,
    page_size: int = pagination.DEFAULT_PAGE_SIZE,
    threshold: Decimal | int | float = DEFAULT_THRESHOLD,
) -> dict:
    """
    注文総額 (quantity × price の合計) が threshold を超えるユーザー

    件数はユーザー総数ではなく、同じ GROUP BY / HAVING を通した集合を数える。
    """
    try:
        request = _page_request(page, page_size)
    except ValidationError as exc:
        return validation_failure(exc)
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float, Decimal)):
        return failure(ErrorKind.VALIDATION_ERROR, "threshold: must be a number")
    threshold = Decimal(str(threshold))
    if not threshold.is_finite():
        return failure(ErrorKind.VALIDATION_ERROR, "threshold: must be a finite number")

    return await _paged(
        session,
        "usersAboveThreshold",
        users_above_threshold_statement(threshold),
        request,
        lambda row: {
            "user_name": row.user_name,
            "total_spent": _money(row.total_spent),
        },
    )


def top_product_per_user_statement() -> Select:
    total_qty = func.sum(orders.c.quantity)
    total_value = func.sum(orders.c.quantity * products.c.price)
    # 同点時: 数量 DESC → 金額 DESC → 商品 ID ASC (小さい ID が勝つ)
    rank = func.row_number().over(
        partition_by=orders.c.user_id,
        order_by=(total_qty.desc(), total_value.desc(), orders.c.product_id.asc()),
    )
    ranked = (
        select(
            orders.c.user_id,
            orders.c.product_id,
            total_qty.label("total_qty"),
            total_value.label("total_value"),
            rank.label("rn"),
        )
        .select_from(orders)
        .join(products, products.c.id == orders.c.product_id)
        .group_by(orders.c.user_id, orders.c.product_id)
        .subquery("ranked")
    )
    return (
        select(
            users.c.name.label("user_name"),
            products.c.name.label("top_product"),
            ranked.c.total_qty,
            ranked.c.total_value,
        )
        .select_from(ranked)
        .join(users, users.c.id == ranked.c.user_id)
        .join(products, products.c.id == ranked.c.product_id)
        .where(ranked.c.rn == 1)
        .order_by(ranked.c.user_id)
    )


async def top_product_per_user(
    session: AsyncSession,
    page: int = 1,
    page_size: int = pagination.DEFAULT_PAGE_SIZE,
) -> dict:
    """ユーザーごとに最も多く買った商品を 1 件だけ返す"""
    try:
        request = _page_request(page, page_size)
    except ValidationError as exc:
        return validation_failure(exc)

    return await _paged(
        session,
        "topProductPerUser",
        top_product_per_user_statement(),
        request,
        lambda row: {
            "user_name": row.user_name,
            "top_product": row.top_product,
            "total_qty": int(row.total_qty),
            "total_value": _money(row.total_value),
        },
    )


# ── 一覧 ─────────────────────────────────────────


async def list_users(
    session: AsyncSession, page: int = 1, page_size: int = pagination.DEFAULT_PAGE_SIZE
) -> dict:
    try:
        request = _page_request(page, page_size)
    except ValidationError as exc:
        return validation_failure(exc)

    return await _paged(
        session,
        "listUsers",
        select(users).order_by(users.c.id),
        request,
        lambda row: {"id": row.id, "name": row.name, "email": row.email},
    )


async def list_products(
    session: AsyncSession, page: int = 1, page_size: int = pagination.DEFAULT_PAGE_SIZE
) -> dict:
    try:
        request = _page_request(page, page_size)
    except ValidationError as exc:
        return validation_failure(exc)

    return await _paged(
        session,
        "listProducts",
        select(products).order_by(products.c.id),
        request,
        lambda row: {
            "id": row.id,
            "name": row.name,
            "price": _money(row.price),
            "stock": row.stock,
        },
    )


async def list_orders(
    session: AsyncSession, page: int = 1, page_size: int = pagination.DEFAULT_PAGE_SIZE
) -> dict:
    try:
        request = _page_request(page, page_size)
    except ValidationError as exc:
        return validation_failure(exc)

    return await _paged(
        session,
        "listOrders",
        select(orders).order_by(orders.c.id),
        request,
        lambda row: {
            "id": row.id,
            "user_id": row.user_id,
            "product_id": row.product_id,
            "quantity": row.quantity,
        },
    )
