# backend/ridepay/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


_BACKEND_ROOT = Path(__file__).resolve().parents[2]

logger = logging.getLogger(__name__)

PROD_ENVIRONMENTS = {"prod", "production", "live"}


class Settings(BaseSettings):
    """Runtime configuration for the payment-hold service."""

    environment: str = Field(default="development", alias="ENVIRONMENT")
    is_testing: bool = False
    log_level: str = Field(default="INFO", description="Root log level for the process")

    database_url: str = Field(
        default=f"sqlite:///{_BACKEND_ROOT / 'ridepay.db'}",
        description="SQLAlchemy URL for the booking/payment record store",
    )
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Broker URL for Celery beat/worker deployments",
    )

    # Hold lifecycle
    default_currency: str = Field(default="cad", description="ISO currency used for new holds")
    hold_authorization_window_hours: int = Field(
        default=12,
        ge=1,
        description="Hours an authorization hold stays capturable before it must be released",
    )

    # Timeout sweep
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the in-process timeout scheduler from the API lifespan",
    )
    timeout_sweep_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Seconds between timeout sweeps",
    )
    timeout_sweep_batch_size: int = Field(
        default=25,
        ge=1,
        description="Maximum bookings/holds resolved per sweep",
    )
    reconciliation_enabled: bool = Field(
        default=True,
        description="Re-derive booking/hold state from payment status on every sweep tick",
    )

    # Stripe
    stripe_secret_key: Optional[SecretStr] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_timeout_seconds: int = Field(default=8, ge=1)
    stripe_max_network_retries: int = Field(default=1, ge=0)

    # PayPal
    paypal_client_id: Optional[str] = Field(default=None, alias="PAYPAL_CLIENT_ID")
    paypal_client_secret: Optional[SecretStr] = Field(default=None, alias="PAYPAL_CLIENT_SECRET")
    paypal_api_base: str = Field(
        default="https://api-m.sandbox.paypal.com",
        description="PayPal REST base URL (sandbox or live)",
    )
    paypal_timeout_seconds: float = Field(default=15.0, gt=0)
    paypal_env: Literal["sandbox", "live"] = Field(default="sandbox")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("default_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if len(normalized) != 3:
                raise ValueError("default_currency must be a three-letter ISO code")
            return normalized
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in PROD_ENVIRONMENTS

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key and self.stripe_secret_key.get_secret_value())

    @property
    def paypal_configured(self) -> bool:
        return bool(
            self.paypal_client_id
            and self.paypal_client_secret
            and self.paypal_client_secret.get_secret_value()
        )


settings = Settings()
if is_running_tests():
    settings.is_testing = True

logger.info(
    "[CONFIG] environment=%s hold_window=%sh sweep_interval=%ss stripe=%s paypal=%s",
    settings.environment,
    settings.hold_authorization_window_hours,
    settings.timeout_sweep_interval_seconds,
    settings.stripe_configured,
    settings.paypal_configured,
)
