"""
Order Service — FastAPI エントリーポイント

注文 Saga のオーケストレーターを HTTP API として公開する。
Command (POST) で Saga を実行し、Query (GET) でリードモデルを返す。

┌────────┐  POST /api/orders  ┌───────────────┐ ──▶ Product Service
│ Client │ ─────────────────▶ │ Order Service │ ──▶ Inventory Service
└────────┘                    │  (Saga)       │ ──▶ Payment Service (Circuit Breaker)
                              │               │ ──▶ User Service
                              └───────┬───────┘ ──▶ Notification Service
                                      │
                              ┌───────▼───────┐
                              │  Order Store  │
                              └───────────────┘
"""

import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from . import schema
from .circuit_breaker import CircuitBreaker, ResilientPaymentClient
from .clients import (
    InventoryClient,
    NotificationClient,
    PaymentClient,
    ProductClient,
    UserClient,
)
from .config import Settings
from .exceptions import OrderServiceError
from .models import OrderRequest
from .saga import OrderSagaOrchestrator
from .store import OrderStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    アプリケーションを組み立てる。

    settings を省略すると環境変数から読む。transport は参加サービスへの
    HTTP 呼び出しを差し替えるためのもの（テスト用）。
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)

        engine = create_async_engine(settings.database_url, echo=False)
        await schema.create_all(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)

        redis_pool = None
        if settings.redis_url:
            redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)

        # 参加サービス共通のコネクションプール
        http = httpx.AsyncClient(transport=transport)

        store = OrderStore(session_factory, redis_pool)
        breaker = CircuitBreaker(settings.circuit_breaker, name="payment")
        payments = ResilientPaymentClient(
            PaymentClient(http, settings.payment_service),
            breaker,
            store,
            settings.payment_retry,
        )
        app.state.store = store
        app.state.breaker = breaker
        app.state.orchestrator = OrderSagaOrchestrator(
            products=ProductClient(http, settings.product_service),
            inventory=InventoryClient(http, settings.inventory_service),
            payments=payments,
            users=UserClient(http, settings.user_service),
            notifications=NotificationClient(http, settings.notification_service),
            store=store,
            redis=redis_pool,
        )
        logger.info("Order service started")
        yield
        await app.state.orchestrator.drain()
        await http.aclose()
        if redis_pool is not None:
            await redis_pool.aclose()
        await engine.dispose()

    app = FastAPI(title="Order Service", lifespan=lifespan)

    @app.exception_handler(OrderServiceError)
    async def order_service_error_handler(request: Request, exc: OrderServiceError):
        return JSONResponse(
            status_code=exc.http_status, content={"code": exc.code, "detail": exc.detail}
        )

    # ── Command Endpoints ────────────────────────────

    @app.post("/api/orders")
    async def place_order(req: OrderRequest, request: Request):
        """注文 Saga を実行する"""
        result = await request.app.state.orchestrator.place_order(req)
        body = result.order.model_dump(mode="json")
        body["payment_status"] = result.payment.status.value
        body["notification"] = result.notification.value
        body["saga_log"] = result.saga_log
        return body

    # ── Query Endpoints ──────────────────────────────

    @app.get("/api/orders")
    async def list_orders(request: Request):
        """全注文をリードモデルから取得"""
        return await request.app.state.store.list_orders()

    @app.get("/api/orders/{order_id}")
    async def get_order(order_id: int, request: Request):
        """指定注文をリードモデルから取得"""
        return await request.app.state.store.get_order(order_id)

    @app.get("/api/payments")
    async def list_payments(request: Request, order_id: int | None = None):
        """決済レコード（フォールバックが記録した FAILED を含む）"""
        return await request.app.state.store.list_payments(order_id)

    # ── Event Store (デバッグ用) ─────────────────────

    @app.get("/events")
    async def get_all_events(request: Request):
        """イベントストアの全イベントを返す"""
        return await request.app.state.store.load_events()

    @app.get("/events/{aggregate_id}")
    async def get_aggregate_events(aggregate_id: int, request: Request):
        """指定注文のイベントを返す"""
        return await request.app.state.store.load_events(aggregate_id)

    @app.get("/health")
    async def health(request: Request):
        return {
            "status": "ok",
            "service": "order-service",
            "circuit_breaker": request.app.state.breaker.snapshot(),
        }

    return app


app = create_app()
