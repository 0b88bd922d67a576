"""
Order Service — クエリハンドラ (読み取り側)

読み取りはリードモデルから行う。
イベントストアをリプレイせずに済むよう、注文ごとに 1 行に投影済み。
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .schema import orders_read_model, payment_records


def _order_to_dict(row) -> dict:
    return {
        "id": row.id,
        "product_code": row.product_code,
        "quantity": row.quantity,
        "user_id": row.user_id,
        "amount": str(row.amount),
        "status": row.status,
        "order_date": row.order_date,
        "updated_at": row.updated_at,
    }


async def get_order(session: AsyncSession, order_id: int) -> dict | None:
    """リードモデルから注文を取得する。"""
    result = await session.execute(
        select(orders_read_model).where(orders_read_model.c.id == order_id)
    )
    row = result.fetchone()
    if not row:
        return None
    return _order_to_dict(row)


async def list_orders(session: AsyncSession) -> list[dict]:
    """全注文一覧をリードモデルから取得する（新しい順）。"""
    result = await session.execute(
        select(orders_read_model).order_by(orders_read_model.c.id.desc())
    )
    return [_order_to_dict(row) for row in result.fetchall()]


async def list_payments(session: AsyncSession, order_id: int | None = None) -> list[dict]:
    """決済レコードを取得する。order_id を指定するとその注文分だけ。"""
    stmt = select(payment_records).order_by(payment_records.c.id.asc())
    if order_id is not None:
        stmt = stmt.where(payment_records.c.order_id == order_id)
    result = await session.execute(stmt)
    return [
        {
            "id": row.id,
            "order_id": row.order_id,
            "user_id": row.user_id,
            "amount": str(row.amount),
            "status": row.status,
            "reason": row.reason,
            "payment_date": row.payment_date,
        }
        for row in result.fetchall()
    ]
