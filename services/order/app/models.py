"""
Order Service — ドメインモデル

Saga が扱う値オブジェクト。参加サービスから受け取る Product / User は
読み取り専用で、Order だけがこのサービスの所有物。
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class OrderStatus(str, Enum):
    """
    注文ステータス

    永続化されるのは PLACED と PAYMENT_FAILED のみ。
    それ以外は Saga ログとエラー応答で結果を表すために使う。
    """

    PLACED = "PLACED"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    NOTIFICATION_SKIPPED = "NOTIFICATION_SKIPPED"


class PaymentStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class NotificationOutcome(str, Enum):
    SENT = "SENT"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class OrderRequest(BaseModel):
    user_id: int
    product_code: str = Field(min_length=1)
    quantity: int = Field(ge=1)

    @field_validator("product_code")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("product_code must not be blank")
        return value


class Order(BaseModel):
    id: int
    product_code: str
    quantity: int
    order_date: datetime
    status: OrderStatus
    user_id: int | None = None


class Product(BaseModel):
    product_code: str
    name: str
    unit_price: Decimal


class User(BaseModel):
    id: int
    email: str


class PaymentRequest(BaseModel):
    order_id: int
    user_id: int
    amount: Decimal


class PaymentOutcome(BaseModel):
    order_id: int
    user_id: int
    amount: Decimal
    status: PaymentStatus
    payment_date: datetime
    reason: str | None = None
    attempts: int = 0


class NotificationRequest(BaseModel):
    order_id: int
    user_id: int
    user_email: str
    message: str


class PlacedOrder(BaseModel):
    """Saga の最終結果"""

    order: Order
    payment: PaymentOutcome
    notification: NotificationOutcome
    saga_log: list[dict] = []
