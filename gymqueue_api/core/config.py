"""Application configuration using Pydantic Settings"""

import logging
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")
    database_ssl: str = Field(default="prefer", description="asyncpg ssl mode")
    run_migrations_on_startup: bool = Field(
        default=True, description="Apply pending SQL migrations at startup"
    )

    # Member authentication (tokens are issued by the identity service)
    jwt_secret_key: str = Field(..., description="Secret key for JWT verification")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # Internal signals (access-control system, ops)
    internal_api_key: str = Field(default="", description="Shared key for /internal routes")

    # Queue policy
    claim_window_seconds: int = Field(default=300, description="Time to claim once notified")
    sweep_interval_seconds: int = Field(default=30, description="Expiry sweep interval")
    max_queue_length: int = Field(default=10, ge=0, description="0 means unlimited")
    estimated_minutes_per_member: int = Field(
        default=30, ge=0, description="Rough session length used for wait estimates"
    )
    queue_cache_ttl: float = Field(default=2.0, ge=0, description="Queue listing cache TTL")
    listen_equipment_freed: bool = Field(
        default=True, description="Consume equipment_freed NOTIFY signals"
    )

    # Notification delivery
    notification_backend: Literal["log", "webhook", "pg_notify"] = Field(default="log")
    push_webhook_url: str = Field(default="", description="Push gateway endpoint")
    push_webhook_token: str = Field(default="", description="Bearer token for the push gateway")

    # Server URLs
    frontend_url: str = Field(default="http://localhost:8081", description="Frontend URL for CORS")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("claim_window_seconds", "sweep_interval_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive number of seconds")
        return v

    @property
    def claim_window(self) -> timedelta:
        return timedelta(seconds=self.claim_window_seconds)

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins"""
        return [self.frontend_url]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
