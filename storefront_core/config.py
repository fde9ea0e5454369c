"""Configuration management for the storefront order core."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    # Store Configuration
    store_backend: Literal["memory", "redis"] = Field(
        default="memory", description="Durable store backend"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")
    key_prefix: str = Field(default="storefront", description="Redis key namespace")

    # Reservation Settings
    reservation_ttl_seconds: int = Field(
        default=1800, gt=0, description="Cart reservation TTL in seconds"
    )
    reservation_sweep_interval_seconds: float | None = Field(
        default=None, description="Expired reservation sweep interval (TTL/4 if unset)"
    )

    # Demand Pressure Settings
    demand_weight_active_carts: float = Field(default=30.0, ge=0)
    demand_weight_recent_orders: float = Field(default=10.0, ge=0)
    demand_weight_available_stock: float = Field(default=2.0, ge=0)
    demand_low_threshold: float = Field(
        default=25.0, ge=0, description="Score at or above which urgency is low"
    )
    demand_baseline_percentile: int = Field(default=75, ge=1, le=99)
    demand_baseline_window: int = Field(
        default=200, gt=0, description="Scores kept in the rolling baseline"
    )
    demand_baseline_min_samples: int = Field(
        default=10, ge=2, description="Samples needed before the baseline applies"
    )
    demand_history_hours: int = Field(default=24, gt=0)

    # Order Lifecycle Settings
    grace_period_seconds: int = Field(default=180, gt=0)
    grace_period_extension_seconds: int = Field(
        default=120, ge=0, description="Grace extension per modification"
    )
    grace_period_max_seconds: int = Field(
        default=300, gt=0, description="Upper bound on grace period from creation"
    )
    cancellation_window_seconds: int = Field(default=600, gt=0)
    finalize_tick_seconds: float = Field(default=1.0, gt=0)

    # Pricing
    tax_rate: Decimal = Field(default=Decimal("0.05"), ge=0)
    delivery_fee: Decimal = Field(default=Decimal("50.00"), ge=0)

    # Order Submission
    order_service_url: str = Field(
        default="http://localhost:8000/api/v1", description="Order API base URL"
    )
    submit_max_attempts: int = Field(default=3, ge=1)
    submit_base_delay_seconds: float = Field(default=0.5, ge=0)
    submit_max_delay_seconds: float | None = Field(default=8.0)
    submit_attempt_timeout_seconds: float = Field(default=10.0, gt=0)
    submit_jitter: bool = Field(default=False)

    # Notifications
    notification_url: str | None = Field(
        default=None, description="Notification service endpoint; log-only if unset"
    )
    notification_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @property
    def sweep_interval_seconds(self) -> float:
        """Interval between expired-reservation sweeps."""
        if self.reservation_sweep_interval_seconds:
            return self.reservation_sweep_interval_seconds
        return self.reservation_ttl_seconds / 4


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
