"""
Order Service — 注文 Saga オーケストレーター

Saga パターン（オーケストレーション型）:
  1つの注文を、独立して故障しうる複数のリモートサービスにまたがって処理する。
  ステップは厳密に順番どおり実行し、並列化もスキップもしない。

  フロー:
  ┌──────────────────────────────────────────────────────────────┐
  │  1. Product Service で商品を確認                                │
  │     └─ 存在しない → ProductNotFound（何も保存しない）           │
  │  2. Inventory Service で在庫を確認                              │
  │     └─ 在庫なし   → OutOfStock（何も保存しない）                │
  │  3. 注文を PLACED で保存 ← コミットポイント                     │
  │  4. Payment Service で決済（サーキットブレーカー経由）          │
  │     └─ FAILED     → 注文を PAYMENT_FAILED に遷移（ロールバックしない）│
  │  5. User Service でユーザーを取得し、Notification Service に通知 │
  │     └─ ユーザーなし・通知失敗 → ログに残して続行                │
  └──────────────────────────────────────────────────────────────┘

コミットポイント以降は呼び出し元がキャンセルしても中断しない。
保存済みの注文を決済途中で放置しないため、ステップ 3〜5 は shield したタスクで実行する。
"""

import asyncio
import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis

from .circuit_breaker import ResilientPaymentClient
from .clients import (
    ErrorKind,
    InventoryClient,
    NotificationClient,
    ProductClient,
    UserClient,
)
from .commands import publish_event
from .exceptions import OutOfStock, PlaceOrderError, ProductNotFound, UpstreamUnavailable
from .models import (
    NotificationOutcome,
    NotificationRequest,
    Order,
    OrderRequest,
    OrderStatus,
    PaymentStatus,
    PlacedOrder,
    Product,
)
from .store import OrderStore

logger = logging.getLogger(__name__)


def _log_step(saga_log: list[dict], step: int, action: str) -> dict:
    entry = {
        "step": step,
        "action": action,
        "status": "EXECUTING",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    saga_log.append(entry)
    return entry


class OrderSagaOrchestrator:
    """注文 Saga のオーケストレーター"""

    def __init__(
        self,
        products: ProductClient,
        inventory: InventoryClient,
        payments: ResilientPaymentClient,
        users: UserClient,
        notifications: NotificationClient,
        store: OrderStore,
        redis: aioredis.Redis | None = None,
    ):
        self.products = products
        self.inventory = inventory
        self.payments = payments
        self.users = users
        self.notifications = notifications
        self.store = store
        self.redis = redis
        # コミットポイント以降のタスク。呼び出し元が居なくなっても GC させない
        self._in_flight: set[asyncio.Task] = set()

    async def place_order(self, request: OrderRequest) -> PlacedOrder:
        """
        Saga を実行する。

        ProductNotFound / OutOfStock / UpstreamUnavailable はステップ 1〜2 でのみ発生し、
        その時点では何も保存されていない。ステップ 3 に到達した後は例外を返さない。
        """
        logger.info(
            "Start placing order for productCode=%s by userId=%s",
            request.product_code, request.user_id,
        )
        saga_log: list[dict] = []

        try:
            product = await self._resolve_product(request, saga_log)
            await self._check_stock(request, saga_log)
        except PlaceOrderError as e:
            await self._publish_saga_event("SagaFailed", None, request, saga_log, error=e.code)
            raise

        task = asyncio.ensure_future(self._complete(request, product, saga_log))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """コミットポイントを過ぎた実行中の Saga がすべて終わるまで待つ。"""
        while self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    # ── Step 1: 商品を確認 ────────────────────────────

    async def _resolve_product(self, request: OrderRequest, saga_log: list[dict]) -> Product:
        entry = _log_step(saga_log, 1, "ResolveProduct")
        result = await self.products.fetch(request.product_code)

        if result.ok:
            entry["status"] = "COMPLETED"
            logger.info("Product found: %s", result.value.name)
            return result.value

        entry["status"] = "FAILED"
        entry["error"] = result.detail
        if result.error is ErrorKind.NOT_FOUND:
            logger.warning("Product not found for productCode=%s", request.product_code)
            raise ProductNotFound(f"Product not found with code: {request.product_code}")
        logger.error(
            "Product lookup failed for productCode=%s: %s", request.product_code, result.detail
        )
        raise UpstreamUnavailable(f"Product service unavailable: {result.detail}")

    # ── Step 2: 在庫を確認 ────────────────────────────

    async def _check_stock(self, request: OrderRequest, saga_log: list[dict]) -> None:
        entry = _log_step(saga_log, 2, "CheckStock")
        result = await self.inventory.fetch(request.product_code)

        if not result.ok:
            entry["status"] = "FAILED"
            entry["error"] = result.detail
            logger.error(
                "Stock check failed for productCode=%s: %s", request.product_code, result.detail
            )
            raise UpstreamUnavailable(f"Inventory service unavailable: {result.detail}")

        if result.value is False:
            entry["status"] = "FAILED"
            entry["error"] = OrderStatus.OUT_OF_STOCK.value
            logger.warning("Product out of stock for productCode=%s", request.product_code)
            raise OutOfStock("Product is out of stock")

        entry["status"] = "COMPLETED"
        logger.info("Product is in stock")

    # ── Step 3〜6: コミットポイント以降 ───────────────

    async def _complete(
        self, request: OrderRequest, product: Product, saga_log: list[dict]
    ) -> PlacedOrder:
        # Step 3: 注文を保存
        entry = _log_step(saga_log, 3, "PersistOrder")
        amount = product.unit_price * request.quantity
        order = await self.store.create_order(
            request.user_id, request.product_code, request.quantity, amount
        )
        entry["status"] = "COMPLETED"
        entry["order_id"] = order.id
        logger.info("Order saved with id=%s", order.id)

        # Step 4: 決済
        entry = _log_step(saga_log, 4, "CollectPayment")
        logger.info(
            "Processing payment for orderId=%s userId=%s amount=%s",
            order.id, request.user_id, amount,
        )
        payment = await self.payments.charge(order.id, request.user_id, amount)
        if payment.status is PaymentStatus.SUCCESS:
            entry["status"] = "COMPLETED"
            logger.info("Payment processed for orderId=%s", order.id)
        else:
            entry["status"] = "FAILED"
            entry["error"] = payment.reason
            order = await self.store.mark_payment_failed(order.id, payment.reason or "payment failed")
            logger.warning("Order %s marked PAYMENT_FAILED", order.id)

        # Step 5: ユーザー取得 → 通知
        notification = await self._notify(request, product, order, saga_log)

        order = order.model_copy(update={"user_id": request.user_id})
        await self._publish_saga_event("SagaCompleted", order, request, saga_log)
        logger.info("Order process completed for orderId=%s", order.id)
        return PlacedOrder(
            order=order,
            payment=payment,
            notification=notification,
            saga_log=saga_log,
        )

    async def _notify(
        self,
        request: OrderRequest,
        product: Product,
        order: Order,
        saga_log: list[dict],
    ) -> NotificationOutcome:
        """通知はベストエフォート。失敗しても Saga も注文ステータスも変えない。"""
        entry = _log_step(saga_log, 5, "NotifyUser")
        logger.info("Fetching user info for userId=%s", request.user_id)
        user_result = await self.users.fetch(request.user_id)

        if not user_result.ok:
            entry["status"] = "SKIPPED"
            if user_result.error is ErrorKind.NOT_FOUND:
                entry["error"] = OrderStatus.USER_NOT_FOUND.value
                logger.warning(
                    "User not found with id=%s, skipping notification", request.user_id
                )
            else:
                entry["error"] = user_result.detail
                logger.warning(
                    "User lookup failed for id=%s (%s), skipping notification",
                    request.user_id, user_result.detail,
                )
            return NotificationOutcome.SKIPPED

        user = user_result.value
        logger.info("Sending notification to userEmail=%s", user.email)
        sent = await self.notifications.submit(
            NotificationRequest(
                order_id=order.id,
                user_id=request.user_id,
                user_email=user.email,
                message=f"Order placed for product: {product.name}",
            )
        )
        if not sent.ok:
            entry["status"] = "FAILED"
            entry["error"] = sent.detail
            logger.warning("Notification failed for orderId=%s: %s", order.id, sent.detail)
            return NotificationOutcome.FAILED

        entry["status"] = "COMPLETED"
        logger.info("Notification sent for orderId=%s", order.id)
        return NotificationOutcome.SENT

    async def _publish_saga_event(
        self,
        event_type: str,
        order: Order | None,
        request: OrderRequest,
        saga_log: list[dict],
        error: str | None = None,
    ) -> None:
        """Saga のイベントを Redis に発行する。"""
        data = {
            "order_id": order.id if order else None,
            "status": order.status.value if order else None,
            "product_code": request.product_code,
            "user_id": request.user_id,
            "saga_log": saga_log,
        }
        if error:
            data["error"] = error
        await publish_event(self.redis, "saga_events", event_type, data)
