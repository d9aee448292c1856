"""
Shop Service — イベント定義

コミット済みの注文を Redis Pub/Sub (order_events チャネル) に通知する。
発行はトランザクションとコネクションを解放した後に行い、
発行に失敗しても注文の結果は変わらない。
"""

import json
import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


class OrderPlaced(BaseModel):
    """注文が確定した (在庫減算と注文記録がコミットされた)"""
    order_id: int
    user_id: int
    product_id: int
    quantity: int
    remaining_stock: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


async def publish_order_placed(redis: aioredis.Redis | None, event: OrderPlaced) -> bool:
    if redis is None:
        return False
    try:
        await redis.publish(
            ORDER_EVENTS_CHANNEL,
            json.dumps(
                {
                    "event_type": "OrderPlaced",
                    "data": event.model_dump(mode="json"),
                },
                default=str,
            ),
        )
    except RedisError:
        logger.warning(
            "Failed to publish OrderPlaced for order %s", event.order_id, exc_info=True
        )
        return False
    return True
