"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./hospital.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    ward_summary_cache_ttl: int = Field(default=30, description="TTL (s) for the cached ward occupancy summary")
    patient_page_size: int = Field(default=10, description="Page size of the unassigned patient search")
    patient_search_limit: int = Field(default=10, description="Maximum results of the patient quick search")

    event_publishing_enabled: bool = Field(default=False, description="Publish bed events to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ broker host")
    bed_events_queue: str = Field(default="bed_events", description="Durable queue receiving bed events")
    rabbitmq_socket_timeout: float = Field(default=2.0, description="Seconds to wait on the broker socket before giving up")
    rabbitmq_blocked_timeout: float = Field(default=5.0, description="Seconds a publish may stay blocked by broker flow control")

    users_service_port: int = 8001
    wards_service_port: int = 8002
    schedules_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
