"""
Shared configuration management for the Access Layer.
"""

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Token providers (ACCESS_ADDR_TOKEN_PROVIDER="https://idp-a/auth https://idp-b/auth")
    addr_token_provider: str = Field(default="http://localhost:8080/realms/access")
    cache_ttl: timedelta = Field(default=timedelta(minutes=15))
    error_tolerance: timedelta = Field(default=timedelta(minutes=1))
    jwks_fetch_timeout: float = Field(default=10.0, gt=0)
    jwks_retry_interval: float = Field(default=5.0, ge=0)


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
