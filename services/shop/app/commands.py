"""
Shop Service — コマンドハンドラ (CQRS の Write 側)

注文の確定は唯一の書き込み経路。1 回の呼び出しが 1 つの作業単位で、
在庫の減算と注文の記録は両方コミットされるか、両方ロールバックされる。

  1. Begin        専用のセッション (コネクション) を取得
  2. Lock & Read  商品行を SELECT ... FOR UPDATE で排他ロックして在庫を読む
  3. Validate     在庫 < 数量 なら InsufficientStock
  4. Mutate       在庫を減算
  5. Record       注文行を挿入
  6. Commit       コミットしてロックを解放
  7. 2〜5 で失敗 → ロールバック
  8. どの経路でもセッションを閉じてコネクションをプールに返す

同じ商品への同時注文は行ロックで直列化されるため、在庫が負になることはない。
異なる商品への注文は互いに待たない。
"""

import asyncio
import logging
from typing import Callable

import redis.asyncio as aioredis
from pydantic import BaseModel, Field, StrictInt, ValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    ErrorKind,
    InsufficientStock,
    OrderRejected,
    ProductNotFound,
    UserNotFound,
    failure,
    validation_failure,
)
from .events import OrderPlaced, publish_order_placed
from .schema import orders, products, users

logger = logging.getLogger(__name__)


class PlaceOrderCommand(BaseModel):
    user_id: StrictInt = Field(gt=0)
    product_id: StrictInt = Field(gt=0)
    quantity: StrictInt = Field(gt=0)


async def place_order(
    session_factory: Callable[[], AsyncSession],
    user_id: int,
    product_id: int,
    quantity: int,
    *,
    redis: aioredis.Redis | None = None,
    timeout: float | None = None,
) -> dict:
    """
    注文確定コマンド

    成功: {"success": True, "message": ..., "order_id": ...}
    失敗: {"success": False, "kind": ..., "message": ...}
    例外は呼び出し側に伝播させない (キャンセルのみ再送出)。
    """
    try:
        cmd = PlaceOrderCommand(user_id=user_id, product_id=product_id, quantity=quantity)
    except ValidationError as exc:
        return validation_failure(exc)

    try:
        if timeout is None:
            result = await _execute(session_factory, cmd)
        else:
            result = await asyncio.wait_for(_execute(session_factory, cmd), timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Order transaction timed out after %.2fs (user=%s, product=%s)",
            timeout, cmd.user_id, cmd.product_id,
        )
        return failure(ErrorKind.TRANSACTION_FAULT, "Order transaction timed out")

    if isinstance(result, OrderPlaced):
        await publish_order_placed(redis, result)
        return {
            "success": True,
            "message": "Order placed successfully",
            "order_id": result.order_id,
        }
    return result


async def _execute(
    session_factory: Callable[[], AsyncSession],
    cmd: PlaceOrderCommand,
) -> OrderPlaced | dict:
    # 1. Begin — async with を抜けるとセッションは必ず閉じられる (8.)
    async with session_factory() as session:
        try:
            # 2. Lock & Read
            result = await session.execute(
                select(products.c.stock)
                .where(products.c.id == cmd.product_id)
                .with_for_update()
            )
            row = result.fetchone()
            if row is None:
                raise ProductNotFound(cmd.product_id)

            result = await session.execute(
                select(users.c.id).where(users.c.id == cmd.user_id)
            )
            if result.fetchone() is None:
                raise UserNotFound(cmd.user_id)

            # 3. Validate
            if row.stock < cmd.quantity:
                raise InsufficientStock(cmd.product_id, cmd.quantity, row.stock)

            # 4. Mutate
            await session.execute(
                update(products)
                .where(products.c.id == cmd.product_id)
                .values(stock=products.c.stock - cmd.quantity)
            )

            # 5. Record
            result = await session.execute(
                insert(orders).values(
                    user_id=cmd.user_id,
                    product_id=cmd.product_id,
                    quantity=cmd.quantity,
                )
            )
            order_id = result.inserted_primary_key[0]

            # 6. Commit
            await session.commit()
        except OrderRejected as exc:
            await _rollback(session)
            logger.info("Order rejected (%s): %s", exc.kind.value, exc)
            return failure(exc.kind, str(exc))
        except SQLAlchemyError:
            await _rollback(session)
            logger.exception(
                "Order transaction failed (user=%s, product=%s)",
                cmd.user_id, cmd.product_id,
            )
            return failure(
                ErrorKind.TRANSACTION_FAULT,
                "Order could not be placed due to a storage error",
            )
        except asyncio.CancelledError:
            await _rollback(session)
            raise
        except Exception:
            await _rollback(session)
            logger.exception("Unexpected error while placing order")
            return failure(
                ErrorKind.TRANSACTION_FAULT,
                "Order could not be placed due to an unexpected error",
            )

    logger.info(
        "Order %s placed: user=%s product=%s qty=%s remaining=%s",
        order_id, cmd.user_id, cmd.product_id, cmd.quantity, row.stock - cmd.quantity,
    )
    return OrderPlaced(
        order_id=order_id,
        user_id=cmd.user_id,
        product_id=cmd.product_id,
        quantity=cmd.quantity,
        remaining_stock=row.stock - cmd.quantity,
    )


async def _rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except SQLAlchemyError:
        # コネクションが失われている場合。close 時にプールが破棄する
        logger.warning("Rollback failed", exc_info=True)
