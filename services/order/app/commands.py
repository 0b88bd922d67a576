"""
Order Service — コマンドハンドラ (書き込み側)

注文の状態を変更する操作。イベントを生成してイベントストアに追記し、
同じトランザクションでリードモデルも更新する。
コミット後に Redis Pub/Sub でイベントを発行する（他サービスへの通知）。
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import event_store
from .aggregate import OrderAggregate
from .events import OrderPaymentFailed, OrderPlaced, PaymentFailureRecorded
from .exceptions import OrderNotFound
from .schema import orders_read_model, payment_records

logger = logging.getLogger(__name__)


async def publish_event(
    redis: aioredis.Redis | None,
    channel: str,
    event_type: str,
    data: dict,
) -> None:
    """
    イベントを Redis に発行する。

    発行はコミット後の通知にすぎないので、Redis の障害で
    注文処理を失敗させない（ログに残して続行する）。
    """
    if redis is None:
        return
    try:
        await redis.publish(
            channel,
            json.dumps({"event_type": event_type, "data": data}, default=str),
        )
    except RedisError:
        logger.exception("Failed to publish %s on %s", event_type, channel)


async def place_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    user_id: int,
    product_code: str,
    quantity: int,
    amount: Decimal,
) -> OrderAggregate:
    """
    注文作成コマンド（Saga のコミットポイント）

    1. リードモデルに PLACED の行を追加して注文 ID を採番
    2. OrderPlaced イベントをイベントストアに追記 (version 1)
    3. コミット
    4. Redis Pub/Sub でイベントを発行
    """
    now = datetime.now(timezone.utc)

    result = await session.execute(
        insert(orders_read_model).values(
            product_code=product_code,
            quantity=quantity,
            user_id=user_id,
            amount=amount,
            status="PLACED",
            order_date=now,
            updated_at=now,
        )
    )
    order_id = result.inserted_primary_key[0]

    event = OrderPlaced(
        order_id=order_id,
        user_id=user_id,
        product_code=product_code,
        quantity=quantity,
        amount=amount,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")
    version = await event_store.append_event(
        session, order_id, "Order", "OrderPlaced", event_data, 0
    )

    await session.commit()

    await publish_event(redis, "order_events", "OrderPlaced", event_data)

    agg = OrderAggregate()
    agg.apply_order_placed(event_data)
    agg.version = version
    return agg


async def mark_payment_failed(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: int,
    reason: str,
) -> OrderAggregate:
    """
    決済失敗コマンド

    注文行は書き換えずに OrderPaymentFailed を追記し、
    リードモデルのステータスを PAYMENT_FAILED に投影する。
    """
    events = await event_store.load_events(session, order_id)
    if not events:
        raise OrderNotFound(order_id)
    agg = OrderAggregate.from_events(events)

    now = datetime.now(timezone.utc)
    event_data = OrderPaymentFailed(
        order_id=order_id, reason=reason, timestamp=now
    ).model_dump(mode="json")

    version = await event_store.append_event(
        session, order_id, "Order", "OrderPaymentFailed", event_data, agg.version
    )

    await session.execute(
        update(orders_read_model)
        .where(orders_read_model.c.id == order_id)
        .values(status="PAYMENT_FAILED", updated_at=now)
    )

    await session.commit()

    await publish_event(redis, "order_events", "OrderPaymentFailed", event_data)

    agg.apply_order_payment_failed(event_data)
    agg.version = version
    return agg


async def record_payment_failure(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: int,
    user_id: int,
    amount: Decimal,
    reason: str,
) -> int:
    """
    決済失敗レコードの保存（サーキットブレーカーのフォールバックから呼ばれる）

    注文のステータスとは独立した記録。決済の照会はこのテーブルを見る。
    """
    now = datetime.now(timezone.utc)
    result = await session.execute(
        insert(payment_records).values(
            order_id=order_id,
            user_id=user_id,
            amount=amount,
            status="FAILED",
            reason=reason,
            payment_date=now,
        )
    )
    payment_id = result.inserted_primary_key[0]
    await session.commit()

    await publish_event(
        redis,
        "payment_events",
        "PaymentFailureRecorded",
        PaymentFailureRecorded(
            payment_id=payment_id,
            order_id=order_id,
            user_id=user_id,
            amount=amount,
            reason=reason,
            timestamp=now,
        ).model_dump(mode="json"),
    )
    return payment_id
