"""
Order Service — 設定

各参加サービスの URL とタイムアウト、サーキットブレーカー、リトライ設定を
1つの Settings にまとめる。起動時に環境変数から一度だけ組み立て、
各クライアントへコンストラクタ経由で注入する（プロセス全体の可変状態は持たない）。
"""

import os

from pydantic import BaseModel, Field


class ServiceEndpoint(BaseModel):
    """参加サービス 1 つ分の接続先"""

    base_url: str
    timeout: float = Field(default=3.0, gt=0)


class CircuitBreakerSettings(BaseModel):
    sliding_window_size: int = Field(default=10, ge=1)
    minimum_number_of_calls: int = Field(default=5, ge=1)
    failure_rate_threshold: float = Field(default=0.5, gt=0, le=1)
    wait_duration_in_open_state: float = Field(default=30.0, ge=0)
    permitted_calls_in_half_open_state: int = Field(default=3, ge=1)


class RetrySettings(BaseModel):
    """決済リトライの設定。n 回目の失敗後は initial_backoff * multiplier**(n-1) 秒待つ (max_backoff で頭打ち)。"""

    max_attempts: int = Field(default=3, ge=1)
    initial_backoff: float = Field(default=0.2, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_backoff: float = Field(default=2.0, ge=0)


class Settings(BaseModel):
    database_url: str = "sqlite+aiosqlite:///./orders.db"
    redis_url: str | None = None
    log_level: str = "INFO"

    product_service: ServiceEndpoint = ServiceEndpoint(
        base_url="http://product-service/api/products"
    )
    inventory_service: ServiceEndpoint = ServiceEndpoint(
        base_url="http://inventory-service/api/inventory"
    )
    payment_service: ServiceEndpoint = ServiceEndpoint(
        base_url="http://payment-service/api/payments"
    )
    user_service: ServiceEndpoint = ServiceEndpoint(
        base_url="http://user-service/api/users"
    )
    notification_service: ServiceEndpoint = ServiceEndpoint(
        base_url="http://notification-service/api/notifications"
    )

    circuit_breaker: CircuitBreakerSettings = CircuitBreakerSettings()
    payment_retry: RetrySettings = RetrySettings()

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "Settings":
        """環境変数から Settings を組み立てる。未設定の項目はデフォルト値。"""
        env = os.environ if environ is None else environ
        defaults = cls()

        def endpoint(name: str, default: ServiceEndpoint) -> ServiceEndpoint:
            return ServiceEndpoint(
                base_url=env.get(f"{name}_SERVICE_URL", default.base_url),
                timeout=float(env.get(f"{name}_SERVICE_TIMEOUT", default.timeout)),
            )

        cb = defaults.circuit_breaker
        retry = defaults.payment_retry
        return cls(
            database_url=env.get("DATABASE_URL", defaults.database_url),
            redis_url=env.get("REDIS_URL") or None,
            log_level=env.get("LOG_LEVEL", defaults.log_level),
            product_service=endpoint("PRODUCT", defaults.product_service),
            inventory_service=endpoint("INVENTORY", defaults.inventory_service),
            payment_service=endpoint("PAYMENT", defaults.payment_service),
            user_service=endpoint("USER", defaults.user_service),
            notification_service=endpoint("NOTIFICATION", defaults.notification_service),
            circuit_breaker=CircuitBreakerSettings(
                sliding_window_size=int(env.get("CB_SLIDING_WINDOW_SIZE", cb.sliding_window_size)),
                minimum_number_of_calls=int(
                    env.get("CB_MINIMUM_NUMBER_OF_CALLS", cb.minimum_number_of_calls)
                ),
                failure_rate_threshold=float(
                    env.get("CB_FAILURE_RATE_THRESHOLD", cb.failure_rate_threshold)
                ),
                wait_duration_in_open_state=float(
                    env.get("CB_WAIT_DURATION_IN_OPEN_STATE", cb.wait_duration_in_open_state)
                ),
                permitted_calls_in_half_open_state=int(
                    env.get(
                        "CB_PERMITTED_CALLS_IN_HALF_OPEN_STATE",
                        cb.permitted_calls_in_half_open_state,
                    )
                ),
            ),
            payment_retry=RetrySettings(
                max_attempts=int(env.get("PAYMENT_RETRY_MAX_ATTEMPTS", retry.max_attempts)),
                initial_backoff=float(
                    env.get("PAYMENT_RETRY_INITIAL_BACKOFF", retry.initial_backoff)
                ),
                multiplier=float(env.get("PAYMENT_RETRY_MULTIPLIER", retry.multiplier)),
                max_backoff=float(env.get("PAYMENT_RETRY_MAX_BACKOFF", retry.max_backoff)),
            ),
        )
