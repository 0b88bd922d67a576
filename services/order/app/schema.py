"""
Order Service — テーブル定義

event_store        … 追記専用のイベントストア（Order Store の正本）
orders_read_model  … 注文のリードモデル。1注文 = 1行、id がそのまま注文 ID
payment_records    … フォールバックが記録する決済失敗レコード
"""

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncEngine

metadata = MetaData()

event_store = Table(
    "event_store",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("aggregate_id", Integer, nullable=False, index=True),
    Column("aggregate_type", String(50), nullable=False),
    Column("event_type", String(100), nullable=False),
    Column("event_data", Text, nullable=False),
    Column("version", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    # 同じ集約・同じバージョンの二重書き込みを防ぐ（楽観的ロック）
    UniqueConstraint("aggregate_type", "aggregate_id", "version"),
)

orders_read_model = Table(
    "orders_read_model",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_code", String(100), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("status", String(30), nullable=False),
    Column("order_date", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

payment_records = Table(
    "payment_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("status", String(20), nullable=False),
    Column("reason", Text),
    Column("payment_date", DateTime(timezone=True), nullable=False),
)


async def create_all(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
