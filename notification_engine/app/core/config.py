"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from notification_engine.app.core.config import settings
    config = settings.dispatch_config()
    print(config.retry_attempts, config.tick_interval_seconds)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PriorityName = Literal["low", "normal", "high", "critical"]


class DispatchConfig(BaseModel):
    """
    Validated engine parameters consumed at startup.

    Mirrors the dispatch configuration surface; times are kept in
    milliseconds here and exposed in seconds for asyncio.
    """

    model_config = ConfigDict(frozen=True)

    enable_email: bool = True
    enable_push: bool = True
    enable_sms: bool = False
    email_endpoint: str = "smtp://localhost:587"
    push_endpoint: str = "https://fcm.googleapis.com/fcm/send"
    sms_endpoint: str = "https://api.twilio.com/2010-04-01"
    default_priority: PriorityName = "normal"
    retry_attempts: int = Field(3, ge=0)
    tick_interval_ms: int = Field(1000, gt=0)
    backoff_base_ms: int = Field(1000, ge=0)
    simulate_latency: bool = True
    simulation_seed: Optional[int] = None

    @property
    def tick_interval_seconds(self) -> float:
        return self.tick_interval_ms / 1000.0

    @property
    def backoff_base_seconds(self) -> float:
        return self.backoff_base_ms / 1000.0


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Notification Dispatch Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── Channels ──
    ENABLE_EMAIL: bool = True
    ENABLE_PUSH: bool = True
    ENABLE_SMS: bool = False
    EMAIL_ENDPOINT: str = "smtp://localhost:587"
    PUSH_ENDPOINT: str = "https://fcm.googleapis.com/fcm/send"
    SMS_ENDPOINT: str = "https://api.twilio.com/2010-04-01"

    # ── Dispatch ──
    DEFAULT_PRIORITY: PriorityName = "normal"
    RETRY_ATTEMPTS: int = 3
    TICK_INTERVAL_MS: int = 1000  # worker admits one envelope per tick
    BACKOFF_BASE_MS: int = 1000  # delay = base × 2^attempt

    # ── Simulated transports ──
    SIMULATE_LATENCY: bool = True
    SIMULATION_SEED: Optional[int] = None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    def dispatch_config(self) -> DispatchConfig:
        """Build the validated engine configuration from these settings."""
        return DispatchConfig(
            enable_email=self.ENABLE_EMAIL,
            enable_push=self.ENABLE_PUSH,
            enable_sms=self.ENABLE_SMS,
            email_endpoint=self.EMAIL_ENDPOINT,
            push_endpoint=self.PUSH_ENDPOINT,
            sms_endpoint=self.SMS_ENDPOINT,
            default_priority=self.DEFAULT_PRIORITY,
            retry_attempts=self.RETRY_ATTEMPTS,
            tick_interval_ms=self.TICK_INTERVAL_MS,
            backoff_base_ms=self.BACKOFF_BASE_MS,
            simulate_latency=self.SIMULATE_LATENCY,
            simulation_seed=self.SIMULATION_SEED,
        )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
