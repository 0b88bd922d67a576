"""
Order Service — 注文集約

event_store に積まれたイベントを古い順に適用して、注文 1 件の状態を組み立て直す。
イベント種別ごとに apply_<event> ハンドラを持つ。
"""

from datetime import datetime
from decimal import Decimal

from .events import OrderPlaced


class OrderAggregate:
    """
    注文 1 件分の状態。

        (なし) ──OrderPlaced──▶ PLACED ──OrderPaymentFailed──▶ PAYMENT_FAILED

    PLACED はコミットポイントで記録され、以後は上書きされない。
    """

    def __init__(self) -> None:
        self.id: int | None = None
        self.user_id: int | None = None
        self.product_code: str = ""
        self.quantity: int = 0
        self.amount: Decimal = Decimal("0")
        self.order_date: datetime | None = None
        self.status: str = "NEW"
        self.version: int = 0

    def apply_order_placed(self, data: dict) -> None:
        # JSON から戻すときは型付きイベントを通す (timestamp の "Z" 表記も読める)
        event = OrderPlaced.model_validate(data)
        self.id = event.order_id
        self.user_id = event.user_id
        self.product_code = event.product_code
        self.quantity = event.quantity
        self.amount = event.amount
        self.order_date = event.timestamp
        self.status = "PLACED"

    def apply_order_payment_failed(self, _data: dict) -> None:
        self.status = "PAYMENT_FAILED"

    _HANDLERS = {
        "OrderPlaced": "apply_order_placed",
        "OrderPaymentFailed": "apply_order_payment_failed",
    }

    def apply_event(self, event_type: str, event_data: dict) -> None:
        # 知らないイベント種別は読み飛ばす
        name = self._HANDLERS.get(event_type)
        if name is not None:
            getattr(self, name)(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        agg = cls()
        for event in events:
            agg.apply_event(event["event_type"], event["event_data"])
            agg.version = event["version"]
        return agg
