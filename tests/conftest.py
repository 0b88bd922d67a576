"""
Shared fixtures for the order saga tests.

Participant services (product, inventory, payment, user, notification) are
simulated with an httpx.MockTransport; the order store runs on a temporary
SQLite database.
"""

import json
from collections import defaultdict
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from services.order.app import schema
from services.order.app.circuit_breaker import CircuitBreaker, ResilientPaymentClient
from services.order.app.clients import (
    InventoryClient,
    NotificationClient,
    PaymentClient,
    ProductClient,
    UserClient,
)
from services.order.app.config import CircuitBreakerSettings, RetrySettings, Settings
from services.order.app.saga import OrderSagaOrchestrator
from services.order.app.store import OrderStore


class Participants:
    """
    In-process stand-in for the five remote services.

    Behaviour is switched per test by mutating attributes; every request is
    recorded in ``calls`` keyed by host name.
    """

    def __init__(self):
        self.products = {
            "P001": {"id": 1, "productCode": "P001", "name": "Test Product", "price": 100.0}
        }
        self.in_stock = {"P001": True}
        self.users = {1: {"id": 1, "username": "testuser", "email": "test@example.com"}}
        # "success" | "timeout" | "connect_error" | "unavailable" | "reject" | "error" | "malformed"
        self.payment_behavior = "success"
        self.product_behavior = "normal"
        self.inventory_behavior = "normal"
        self.user_behavior = "normal"
        self.notification_status = 200
        self.calls: dict[str, list[httpx.Request]] = defaultdict(list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.calls[host].append(request)
        last = request.url.path.rsplit("/", 1)[-1]

        if host == "product-service":
            if self.product_behavior == "timeout":
                raise httpx.ReadTimeout("product read timed out", request=request)
            if last not in self.products:
                return httpx.Response(404, json={"message": "Product not found"})
            return httpx.Response(200, json=self.products[last])

        if host == "inventory-service":
            if self.inventory_behavior == "unavailable":
                return httpx.Response(503)
            return httpx.Response(200, json=self.in_stock.get(last, False))

        if host == "payment-service":
            return self._payment(request)

        if host == "user-service":
            if self.user_behavior == "connect_error":
                raise httpx.ConnectError("connection refused", request=request)
            user = self.users.get(int(last))
            if user is None:
                return httpx.Response(404)
            return httpx.Response(200, json=user)

        if host == "notification-service":
            if self.notification_status != 200:
                return httpx.Response(self.notification_status, text="mail server down")
            return httpx.Response(200, text="Notification sent")

        return httpx.Response(500)

    def _payment(self, request: httpx.Request) -> httpx.Response:
        behavior = self.payment_behavior
        if behavior == "timeout":
            raise httpx.ReadTimeout("payment read timed out", request=request)
        if behavior == "connect_error":
            raise httpx.ConnectError("connection refused", request=request)
        if behavior == "unavailable":
            return httpx.Response(503)
        if behavior == "reject":
            return httpx.Response(400, json={"message": "User not found"})
        if behavior == "error":
            return httpx.Response(500)
        if behavior == "malformed":
            return httpx.Response(200, json="processed")
        return httpx.Response(
            200, json={"status": "SUCCESS", "paymentDate": "2026-10-19T10:00:00"}
        )

    def sent_json(self, host: str) -> list[dict]:
        return [json.loads(r.content) for r in self.calls[host]]


@pytest.fixture
def participants():
    return Participants()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        circuit_breaker=CircuitBreakerSettings(
            sliding_window_size=5,
            minimum_number_of_calls=5,
            failure_rate_threshold=0.5,
            wait_duration_in_open_state=30.0,
            permitted_calls_in_half_open_state=2,
        ),
        payment_retry=RetrySettings(max_attempts=3, initial_backoff=0.0, max_backoff=0.0),
    )


@pytest.fixture
async def session_factory(settings):
    engine = create_async_engine(settings.database_url)
    await schema.create_all(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def redis():
    return AsyncMock()


@pytest.fixture
def store(session_factory, redis):
    return OrderStore(session_factory, redis)


@pytest.fixture
async def http(participants):
    async with httpx.AsyncClient(transport=httpx.MockTransport(participants.handler)) as client:
        yield client


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(settings, clock):
    return CircuitBreaker(settings.circuit_breaker, name="payment", clock=clock)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def payments(http, settings, breaker, store, sleep):
    return ResilientPaymentClient(
        PaymentClient(http, settings.payment_service),
        breaker,
        store,
        settings.payment_retry,
        sleep=sleep,
    )


@pytest.fixture
def orchestrator(http, settings, payments, store, redis):
    return OrderSagaOrchestrator(
        products=ProductClient(http, settings.product_service),
        inventory=InventoryClient(http, settings.inventory_service),
        payments=payments,
        users=UserClient(http, settings.user_service),
        notifications=NotificationClient(http, settings.notification_service),
        store=store,
        redis=redis,
    )
