"""
Tests for building Settings from environment variables.
"""

import pytest
from pydantic import ValidationError

from services.order.app.config import Settings


def test_defaults_when_environment_is_empty():
    settings = Settings.from_env({})

    assert settings.database_url == "sqlite+aiosqlite:///./orders.db"
    assert settings.redis_url is None
    assert settings.payment_service.base_url == "http://payment-service/api/payments"
    assert settings.payment_service.timeout == 3.0
    assert settings.circuit_breaker.sliding_window_size == 10
    assert settings.payment_retry.max_attempts == 3


def test_reads_service_endpoints_and_resilience_settings():
    settings = Settings.from_env(
        {
            "DATABASE_URL": "postgresql+asyncpg://user:pass@db/orders",
            "REDIS_URL": "redis://redis:6379",
            "PAYMENT_SERVICE_URL": "http://payments:8080/api/payments",
            "PAYMENT_SERVICE_TIMEOUT": "1.5",
            "CB_FAILURE_RATE_THRESHOLD": "0.25",
            "CB_WAIT_DURATION_IN_OPEN_STATE": "5",
            "PAYMENT_RETRY_MAX_ATTEMPTS": "5",
        }
    )

    assert settings.database_url.startswith("postgresql+asyncpg://")
    assert settings.redis_url == "redis://redis:6379"
    assert settings.payment_service.base_url == "http://payments:8080/api/payments"
    assert settings.payment_service.timeout == 1.5
    assert settings.product_service.timeout == 3.0
    assert settings.circuit_breaker.failure_rate_threshold == 0.25
    assert settings.circuit_breaker.wait_duration_in_open_state == 5.0
    assert settings.payment_retry.max_attempts == 5


def test_empty_redis_url_disables_publishing():
    assert Settings.from_env({"REDIS_URL": ""}).redis_url is None


def test_rejects_non_positive_timeout():
    with pytest.raises(ValidationError):
        Settings.from_env({"USER_SERVICE_TIMEOUT": "0"})
