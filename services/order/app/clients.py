"""
Order Service — 参加サービスクライアント

Saga の各ステップで呼び出すリモートサービスのクライアント。
1クライアント = 1リモート呼び出し。タイムアウトは必ず設定し、リトライはしない
（リトライ方針は呼び出し側 = オーケストレーター / サーキットブレーカーが持つ）。

失敗は例外ではなく CallResult.error (ErrorKind) で返す:
  NOT_FOUND    … 404（エンティティが存在しない）
  UNAVAILABLE  … タイムアウト・接続失敗・502/503/504（一時的な障害）
  REJECTED     … その他の 4xx（業務的な拒否。リトライしても結果は変わらない）
  UNEXPECTED   … それ以外（500、不正なレスポンスなど）
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .config import ServiceEndpoint
from .models import (
    NotificationRequest,
    PaymentOutcome,
    PaymentRequest,
    PaymentStatus,
    Product,
    User,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {502, 503, 504}


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"
    REJECTED = "REJECTED"
    UNEXPECTED = "UNEXPECTED"


@dataclass(frozen=True)
class CallResult(Generic[T]):
    value: T | None = None
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "CallResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str) -> "CallResult[T]":
        return cls(error=error, detail=detail)


class ServiceClient:
    """参加サービスクライアントの共通処理（HTTP 呼び出しとエラー分類）"""

    service_name = "service"

    def __init__(self, http: httpx.AsyncClient, endpoint: ServiceEndpoint):
        self.http = http
        self.endpoint = endpoint

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response | CallResult:
        url = f"{self.endpoint.base_url}{path}"
        try:
            resp = await self.http.request(
                method, url, timeout=self.endpoint.timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            logger.warning("%s timed out: %s %s", self.service_name, method, url)
            return CallResult.failure(ErrorKind.UNAVAILABLE, f"timeout: {e!r}")
        except httpx.TransportError as e:
            logger.warning("%s unreachable: %s %s (%s)", self.service_name, method, url, e)
            return CallResult.failure(ErrorKind.UNAVAILABLE, f"transport error: {e!r}")

        if resp.is_success:
            return resp

        detail = f"{self.service_name} returned HTTP {resp.status_code}"
        if resp.status_code == 404:
            kind = ErrorKind.NOT_FOUND
        elif resp.status_code in TRANSIENT_STATUS_CODES:
            kind = ErrorKind.UNAVAILABLE
        elif 400 <= resp.status_code < 500:
            kind = ErrorKind.REJECTED
        else:
            kind = ErrorKind.UNEXPECTED
        logger.warning("%s: %s %s", detail, method, url)
        return CallResult.failure(kind, detail)

    def _malformed(self, e: Exception) -> CallResult:
        logger.error("%s returned a malformed body: %s", self.service_name, e)
        return CallResult.failure(ErrorKind.UNEXPECTED, f"malformed response: {e}")


class ProductClient(ServiceClient):
    service_name = "product-service"

    async def fetch(self, product_code: str) -> CallResult[Product]:
        resp = await self._request("GET", f"/code/{quote(product_code, safe='')}")
        if isinstance(resp, CallResult):
            return resp
        if not resp.content:
            return CallResult.failure(ErrorKind.NOT_FOUND, "empty product body")
        try:
            data = resp.json()
            if not isinstance(data, dict):
                raise TypeError(f"expected object, got {type(data).__name__}")
            product = Product(
                product_code=data.get("productCode", product_code),
                name=data["name"],
                unit_price=Decimal(str(data["price"])),
            )
        except (ValueError, KeyError, TypeError, ArithmeticError, ValidationError) as e:
            return self._malformed(e)
        return CallResult.success(product)


class InventoryClient(ServiceClient):
    service_name = "inventory-service"

    async def fetch(self, product_code: str) -> CallResult[bool]:
        resp = await self._request("GET", f"/isInStock/{quote(product_code, safe='')}")
        if isinstance(resp, CallResult):
            return resp
        try:
            in_stock = resp.json()
        except ValueError as e:
            return self._malformed(e)
        if not isinstance(in_stock, bool):
            return self._malformed(TypeError(f"expected boolean, got {in_stock!r}"))
        return CallResult.success(in_stock)


class PaymentClient(ServiceClient):
    service_name = "payment-service"

    async def submit(self, request: PaymentRequest) -> CallResult[PaymentOutcome]:
        resp = await self._request(
            "POST",
            "/process",
            json={
                "orderId": request.order_id,
                "userId": request.user_id,
                "amount": float(request.amount),
            },
        )
        if isinstance(resp, CallResult):
            return resp

        data = {}
        if resp.content:
            try:
                data = resp.json() or {}
            except ValueError as e:
                return self._malformed(e)
        if not isinstance(data, dict):
            return self._malformed(TypeError(f"expected object, got {type(data).__name__}"))
        payment_date = data.get("paymentDate")
        try:
            outcome = PaymentOutcome(
                order_id=request.order_id,
                user_id=request.user_id,
                amount=request.amount,
                status=PaymentStatus(data.get("status", PaymentStatus.SUCCESS.value)),
                payment_date=payment_date or datetime.now(timezone.utc),
            )
        except (ValueError, ValidationError) as e:
            return self._malformed(e)
        if outcome.status is PaymentStatus.FAILED:
            return CallResult.failure(ErrorKind.REJECTED, "payment declined by payment-service")
        return CallResult.success(outcome)


class UserClient(ServiceClient):
    service_name = "user-service"

    async def fetch(self, user_id: int) -> CallResult[User]:
        resp = await self._request("GET", f"/{user_id}")
        if isinstance(resp, CallResult):
            return resp
        if not resp.content:
            return CallResult.failure(ErrorKind.NOT_FOUND, "empty user body")
        try:
            user = User.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            return self._malformed(e)
        return CallResult.success(user)


class NotificationClient(ServiceClient):
    service_name = "notification-service"

    async def submit(self, request: NotificationRequest) -> CallResult[str]:
        resp = await self._request(
            "POST",
            "/send",
            json={
                "orderId": request.order_id,
                "userId": request.user_id,
                "userEmail": request.user_email,
                "message": request.message,
            },
        )
        if isinstance(resp, CallResult):
            return resp
        return CallResult.success(resp.text)
