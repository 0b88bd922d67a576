"""
Order Service — イベントストア

注文ごとのイベント列 (append-only)。行の UPDATE / DELETE は行わない。
(aggregate_type, aggregate_id, version) の一意制約が同時追記の衝突を弾く。
"""

import json
from datetime import datetime, timezone

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .schema import event_store


async def append_event(
    session: AsyncSession,
    aggregate_id: int,
    aggregate_type: str,
    event_type: str,
    event_data: dict,
    expected_version: int,
) -> int:
    """
    expected_version の次の番号でイベントを 1 件追記し、その番号を返す。

    他の書き込みが先に同じ番号を使っていれば IntegrityError になる。
    コミットは呼び出し側が行う。
    """
    new_version = expected_version + 1
    await session.execute(
        insert(event_store).values(
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            event_type=event_type,
            event_data=json.dumps(event_data, default=str),
            version=new_version,
            created_at=datetime.now(timezone.utc),
        )
    )
    return new_version


def _to_dict(row) -> dict:
    return {
        "aggregate_id": row.aggregate_id,
        "aggregate_type": row.aggregate_type,
        "event_type": row.event_type,
        "event_data": json.loads(row.event_data) if isinstance(row.event_data, str) else row.event_data,
        "version": row.version,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def load_events(
    session: AsyncSession,
    aggregate_id: int,
    aggregate_type: str = "Order",
) -> list[dict]:
    """1 件の注文のイベント列を version の昇順で返す。"""
    result = await session.execute(
        select(event_store)
        .where(
            event_store.c.aggregate_id == aggregate_id,
            event_store.c.aggregate_type == aggregate_type,
        )
        .order_by(event_store.c.version.asc())
    )
    return [_to_dict(row) for row in result.fetchall()]


async def load_all_events(session: AsyncSession) -> list[dict]:
    """全注文のイベントを追記順に返す。"""
    result = await session.execute(
        select(event_store).order_by(event_store.c.id.asc())
    )
    return [_to_dict(row) for row in result.fetchall()]
