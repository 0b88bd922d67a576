"""
Order Service — イベント定義

注文に起きた事実(イベント)を定義する。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class OrderPlaced(BaseModel):
    """注文が作成された（商品・在庫チェック通過後のコミットポイント）"""
    model_config = ConfigDict(frozen=True)

    order_id: int
    user_id: int
    product_code: str
    quantity: int
    amount: Decimal
    timestamp: datetime


class OrderPaymentFailed(BaseModel):
    """決済に失敗した（サーキットブレーカーのフォールバック経由）"""
    model_config = ConfigDict(frozen=True)

    order_id: int
    reason: str
    timestamp: datetime


class PaymentFailureRecorded(BaseModel):
    """決済失敗レコードが payment_records に保存された"""
    model_config = ConfigDict(frozen=True)

    payment_id: int
    order_id: int
    user_id: int
    amount: Decimal
    reason: str
    timestamp: datetime
