"""
Order Service — 例外

PlaceOrder の呼び出し元に返すエラーの分類:
  - PreconditionFailure (ProductNotFound, OutOfStock): 副作用の前に必ず返す。リトライしない。
  - UpstreamUnavailable: 商品・在庫の参照に失敗。注文は作成されていない。
決済の失敗はここには現れない（サーキットブレーカーが FAILED の結果に変換する）。
"""


class OrderServiceError(Exception):
    """API 応答 {code, detail} に変換されるエラーの基底"""

    code = "ORDER_SERVICE_ERROR"
    http_status = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class PlaceOrderError(OrderServiceError):
    code = "PLACE_ORDER_ERROR"


class PreconditionFailure(PlaceOrderError):
    pass


class ProductNotFound(PreconditionFailure):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class OutOfStock(PreconditionFailure):
    code = "OUT_OF_STOCK"
    http_status = 409


class UpstreamUnavailable(PlaceOrderError):
    code = "UPSTREAM_UNAVAILABLE"
    http_status = 503


class OrderNotFound(OrderServiceError):
    code = "ORDER_NOT_FOUND"
    http_status = 404

    def __init__(self, order_id: int):
        super().__init__(f"Order not found with id: {order_id}")
