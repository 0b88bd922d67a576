"""
Order Service — Order Store

オーケストレーターだけが使う注文の保存先。
呼び出しごとにセッションを開き、commands / queries に処理を委譲する。
同時実行の制御はデータベースのトランザクションに任せる。
"""

from decimal import Decimal

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import commands, event_store, queries
from .aggregate import OrderAggregate
from .exceptions import OrderNotFound
from .models import Order, OrderStatus


def aggregate_to_order(agg: OrderAggregate) -> Order:
    return Order(
        id=agg.id,
        product_code=agg.product_code,
        quantity=agg.quantity,
        order_date=agg.order_date,
        status=OrderStatus(agg.status),
    )


class OrderStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: aioredis.Redis | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis

    async def create_order(
        self, user_id: int, product_code: str, quantity: int, amount: Decimal
    ) -> Order:
        async with self.session_factory() as session:
            agg = await commands.place_order(
                session, self.redis, user_id, product_code, quantity, amount
            )
        return aggregate_to_order(agg)

    async def mark_payment_failed(self, order_id: int, reason: str) -> Order:
        async with self.session_factory() as session:
            agg = await commands.mark_payment_failed(session, self.redis, order_id, reason)
        return aggregate_to_order(agg)

    async def record_payment_failure(
        self, order_id: int, user_id: int, amount: Decimal, reason: str
    ) -> int:
        async with self.session_factory() as session:
            return await commands.record_payment_failure(
                session, self.redis, order_id, user_id, amount, reason
            )

    async def get_order(self, order_id: int) -> dict:
        async with self.session_factory() as session:
            order = await queries.get_order(session, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def list_orders(self) -> list[dict]:
        async with self.session_factory() as session:
            return await queries.list_orders(session)

    async def list_payments(self, order_id: int | None = None) -> list[dict]:
        async with self.session_factory() as session:
            return await queries.list_payments(session, order_id)

    async def load_events(self, order_id: int | None = None) -> list[dict]:
        async with self.session_factory() as session:
            if order_id is None:
                return await event_store.load_all_events(session)
            return await event_store.load_events(session, order_id)
