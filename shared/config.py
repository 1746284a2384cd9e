"""
Shared configuration management for the guest QR gateway.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SESSION_TOKEN_SECRET = "dev-only-session-secret-change-me"


class ConfigurationError(Exception):
    """Raised when the service is started with an unsafe configuration."""


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="QR_GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Session/request store (PostgREST-style RPC endpoint)
    store_url: str = Field(default="http://localhost:54321")
    store_service_key: str = Field(default="")
    store_timeout_seconds: float = Field(default=10.0)

    # Staff notifier
    notifier_url: Optional[str] = Field(default=None)
    notifier_timeout_seconds: float = Field(default=5.0)

    # Session tokens
    session_token_secret: str = Field(default=DEFAULT_SESSION_TOKEN_SECRET)
    session_token_ttl_seconds: int = Field(default=24 * 60 * 60)
    require_session_token_for_requests: bool = Field(default=False)

    # Rate limiting
    rate_limit_backend: str = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    rate_limit_validate_requests: int = Field(default=10)
    rate_limit_validate_window_seconds: int = Field(default=60)
    rate_limit_request_requests: int = Field(default=30)
    rate_limit_request_window_seconds: int = Field(default=60)
    rate_limit_payment_requests: int = Field(default=10)
    rate_limit_payment_window_seconds: int = Field(default=60)
    rate_limit_read_requests: int = Field(default=100)
    rate_limit_read_window_seconds: int = Field(default=60)
    rate_limit_sweep_interval_seconds: float = Field(default=60.0)
    rate_limit_max_keys: int = Field(default=10000)


class GatewayConfig(BaseConfig):
    """Configuration for the guest QR gateway service."""

    service_name: str = "qr-gateway"

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("production", "prod")

    def validate_for_environment(self) -> None:
        """Refuse to start production with development defaults."""
        if not self.is_production:
            return

        problems = []
        if self.session_token_secret == DEFAULT_SESSION_TOKEN_SECRET:
            problems.append("session_token_secret is the development default")
        if len(self.session_token_secret) < 32:
            problems.append("session_token_secret must be at least 32 characters")
        if not self.store_url or "localhost" in self.store_url:
            problems.append("store_url must point at the production store")
        if not self.store_service_key:
            problems.append("store_service_key is required")

        if problems:
            raise ConfigurationError("; ".join(problems))


def get_config(**overrides) -> GatewayConfig:
    """Get configuration for the gateway, with optional explicit overrides."""
    return GatewayConfig(**overrides)
