"""
Shared configuration management for the access decision engine.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHZ_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Entity stores: "memory" or "postgres"
    store_backend: str = Field(default="memory")
    postgres_dsn: str = Field(default="postgres://localhost:5432/authz")
    postgres_min_pool: int = Field(default=2)
    postgres_max_pool: int = Field(default=10)

    # Grant key locks: "local" or "redis"
    lock_backend: str = Field(default="local")
    redis_url: str = Field(default="redis://localhost:6379/0")
    lock_timeout_seconds: float = Field(default=10.0)

    # Operation requirement table overrides (JSON)
    requirements_file: Optional[str] = Field(default=None)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4318")
    enable_console_tracing: bool = Field(default=False)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
