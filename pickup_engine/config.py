"""Configuration management for the pickup engine."""

from datetime import time
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pickup_engine.models.order import OrderStatus
from pickup_engine.models.schedule import ScheduleConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage Configuration
    storage_backend: Literal["memory", "redis"] = Field(
        default="memory", description="Order repository backend"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_workers: int = Field(default=4, description="Number of API workers")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    # Schedule Settings
    timezone: str = Field(default="UTC", description="Business timezone (IANA name)")
    opening_time: time = Field(default=time(6, 0), description="Opening time of day")
    closing_time: time = Field(default=time(23, 0), description="Closing time of day")
    prep_minutes: int = Field(default=30, ge=0, description="Default preparation lead time")
    interval_minutes: int = Field(default=15, ge=1, description="Pickup slot granularity")
    capacity_per_slot: int | None = Field(
        default=None, ge=1, description="Max orders per slot, unlimited when unset"
    )

    # Transition Settings
    max_transition_retries: int = Field(
        default=3, ge=1, description="Attempts before giving up on version conflicts"
    )
    notify_on_statuses: list[OrderStatus] = Field(
        default_factory=list,
        description="Extra statuses (confirmed, preparing) that emit a notification",
    )

    # Reminder Settings
    reminder_sweep_enabled: bool = Field(default=True, description="Run the reminder sweep")
    reminder_threshold_minutes: int = Field(
        default=15, ge=1, description="Minutes in ready before a reminder is sent"
    )
    reminder_sweep_interval_seconds: float = Field(
        default=60.0, gt=0, description="Seconds between reminder sweeps"
    )

    # Notification Settings
    notification_max_retries: int = Field(
        default=3, ge=1, description="Delivery attempts per notification"
    )
    notification_retry_delay: float = Field(
        default=1.0, ge=0, description="Initial delivery retry delay in seconds"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("notify_on_statuses")
    @classmethod
    def validate_notify_on_statuses(cls, v: list[OrderStatus]) -> list[OrderStatus]:
        """Only intermediate statuses can be added as notification hooks."""
        allowed = {OrderStatus.CONFIRMED, OrderStatus.PREPARING}
        invalid = [status.value for status in v if status not in allowed]
        if invalid:
            raise ValueError(f"Cannot add notification hook for {invalid}")
        return v

    def schedule_config(self) -> ScheduleConfig:
        """Build the business schedule from settings."""
        return ScheduleConfig(
            opening_time=self.opening_time,
            closing_time=self.closing_time,
            prep_minutes=self.prep_minutes,
            interval_minutes=self.interval_minutes,
            capacity_per_slot=self.capacity_per_slot,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
