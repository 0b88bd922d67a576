"""
Order Service — サーキットブレーカー + リトライ（決済呼び出し用）

状態遷移:
  ┌────────┐ 失敗率 >= 閾値 ┌──────┐ 待機時間経過 ┌───────────┐
  │ CLOSED │ ─────────────▶ │ OPEN │ ───────────▶ │ HALF_OPEN │
  └────────┘                └──────┘              └───────────┘
      ▲                        ▲   試行呼び出しが失敗     │
      │                        └─────────────────────────┤
      └──────────────────────────────────────────────────┘
                     試行呼び出しがすべて成功

OPEN の間は決済サービスに一切接続せず、フォールバックに回す。
フォールバックは FAILED の決済レコードを保存し、例外ではなく
PaymentOutcome(status=FAILED) を返す。インフラ障害が、オーケストレーターが
分岐できる通常の業務結果に変わる。
"""

import asyncio
import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from .clients import CallResult, ErrorKind, PaymentClient
from .config import CircuitBreakerSettings, RetrySettings
from .models import PaymentOutcome, PaymentRequest, PaymentStatus
from .store import OrderStore

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    件数ベースのスライディングウィンドウで失敗率を計算するブレーカー。

    ウィンドウと状態はロックで保護する。ロック内では await しないので
    イベントループをまたいでも、スレッドから呼ばれても安全。
    """

    def __init__(
        self,
        config: CircuitBreakerSettings,
        name: str = "payment",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._window: deque[bool] = deque(maxlen=config.sliding_window_size)
        self._state_changed_at = clock()
        self._half_open_attempts = 0
        self._half_open_successes = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def try_acquire(self) -> bool:
        """呼び出してよいかを判定する。False ならフォールバックへ。"""
        with self._lock:
            if self._state is CircuitState.OPEN:
                elapsed = self._clock() - self._state_changed_at
                if elapsed < self.config.wait_duration_in_open_state:
                    return False
                self._transition(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_attempts >= self.config.permitted_calls_in_half_open_state:
                    # 試行の結果が戻らないまま待機時間を過ぎたら枠を配り直す
                    elapsed = self._clock() - self._state_changed_at
                    if elapsed < self.config.wait_duration_in_open_state:
                        return False
                    self._transition(CircuitState.HALF_OPEN)
                self._half_open_attempts += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.permitted_calls_in_half_open_state:
                    self._transition(CircuitState.CLOSED)
            elif self._state is CircuitState.CLOSED:
                self._window.append(True)

    def record_failure(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self._state is CircuitState.CLOSED:
                self._window.append(False)
                if (
                    len(self._window) >= self.config.minimum_number_of_calls
                    and self._failure_rate() >= self.config.failure_rate_threshold
                ):
                    self._transition(CircuitState.OPEN)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "buffered_calls": len(self._window),
                "failure_rate": self._failure_rate(),
                "seconds_in_state": round(self._clock() - self._state_changed_at, 3),
            }

    # ── ロック保持中にだけ呼ぶ ───────────────────────

    def _failure_rate(self) -> float:
        if not self._window:
            return 0.0
        return self._window.count(False) / len(self._window)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._state_changed_at = self._clock()
        self._half_open_attempts = 0
        self._half_open_successes = 0
        if new_state is CircuitState.CLOSED:
            self._window.clear()

        if new_state is CircuitState.OPEN:
            logger.warning(
                "Circuit breaker '%s' OPENED (%s -> OPEN, failure rate %.0f%%)",
                self.name, old_state.value, self._failure_rate() * 100,
            )
        else:
            logger.info(
                "Circuit breaker '%s' %s -> %s", self.name, old_state.value, new_state.value
            )


class ResilientPaymentClient:
    """
    PaymentClient をサーキットブレーカー・リトライ・フォールバックで包む。

    呼び出し側は charge() だけを使う。決済サービスの障害で例外は投げない。
    リトライは tenacity に任せ、一時的な障害 (UNAVAILABLE) の結果だけを対象にする。
    """

    def __init__(
        self,
        client: PaymentClient,
        breaker: CircuitBreaker,
        store: OrderStore,
        retry: RetrySettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.breaker = breaker
        self.store = store
        self.retry = retry
        self._sleep = sleep

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_result(lambda result: result.error is ErrorKind.UNAVAILABLE),
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry.initial_backoff,
                exp_base=self.retry.multiplier,
                max=self.retry.max_backoff,
            ),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.INFO),
            # 試行を使い切ったら最後の結果をそのまま返す
            retry_error_callback=lambda state: state.outcome.result(),
        )

    async def charge(self, order_id: int, user_id: int, amount: Decimal) -> PaymentOutcome:
        request = PaymentRequest(order_id=order_id, user_id=user_id, amount=amount)

        if not self.breaker.try_acquire():
            logger.warning(
                "Circuit breaker '%s' is open, short-circuiting payment for orderId=%s",
                self.breaker.name, order_id,
            )
            return await self._fallback(request, "circuit breaker open", attempts=0)

        attempts = 0

        async def submit() -> CallResult[PaymentOutcome]:
            nonlocal attempts
            attempts += 1
            return await self.client.submit(request)

        try:
            result = await self._retrying()(submit)
        except Exception as e:
            # 取得した試行枠は必ず成功か失敗で返す
            logger.exception("Payment call for orderId=%s raised", order_id)
            self.breaker.record_failure()
            return await self._fallback(
                request, f"payment failed after {attempts} attempt(s): {e!r}", attempts
            )

        if result.ok:
            self.breaker.record_success()
            return result.value.model_copy(update={"attempts": attempts})

        if result.error in (ErrorKind.REJECTED, ErrorKind.NOT_FOUND):
            # 決済サービス自体は応答している → ブレーカー上は成功扱い
            self.breaker.record_success()
            reason = f"payment rejected: {result.detail}"
        else:
            self.breaker.record_failure()
            reason = f"payment failed after {attempts} attempt(s): {result.detail}"
        return await self._fallback(request, reason, attempts)

    async def _fallback(
        self, request: PaymentRequest, reason: str, attempts: int
    ) -> PaymentOutcome:
        """FAILED の決済レコードを 1 件保存し、FAILED の結果を返す。"""
        payment_id = await self.store.record_payment_failure(
            request.order_id, request.user_id, request.amount, reason
        )
        logger.error(
            "Payment fallback for orderId=%s userId=%s amount=%s: %s (paymentId=%s)",
            request.order_id, request.user_id, request.amount, reason, payment_id,
        )
        return PaymentOutcome(
            order_id=request.order_id,
            user_id=request.user_id,
            amount=request.amount,
            status=PaymentStatus.FAILED,
            payment_date=datetime.now(timezone.utc),
            reason=reason,
            attempts=attempts,
        )
