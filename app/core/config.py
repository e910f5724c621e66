"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING", "").lower() != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    encryption_key: str | None = Field(
        None,
        description="Secret used to derive the AES-256-GCM key for cached receipts",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable rate limiting on protected endpoints",
    )
    rate_limit_requests: int = Field(
        10,
        description="Maximum number of requests allowed per window (per client)",
        ge=1,
    )
    rate_limit_window_seconds: float = Field(
        60.0,
        description="Rate limit window size in seconds",
        gt=0,
    )
    rate_limit_max_tracked: int = Field(
        500,
        description="Maximum number of distinct clients tracked at once",
        ge=1,
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers alongside Retry-After when throttling",
    )
    trusted_proxy_header: str = Field(
        "cf-connecting-ip",
        description="Header set by the trusted edge proxy with the real client IP",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Tiered cache configuration."""

    default_ttl_seconds: int = Field(
        3600,
        description="TTL applied when a caller does not pass one",
        ge=1,
    )
    namespace: str = Field(
        "app:cache",
        description="Default key namespace",
    )
    local_fallback: bool = Field(
        True,
        description="Use the in-process store when Redis is unavailable",
    )
    cleanup_interval_seconds: float = Field(
        60.0,
        description="Cadence of the local store expiry sweep",
        gt=0,
    )
    probe_interval_seconds: float = Field(
        30.0,
        description="Minimum delay between Redis health probes while degraded",
        ge=0,
    )
    receipt_ttl_seconds: int = Field(
        86400,
        description="How long approved payment receipts are kept for replay",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    enabled: bool = Field(
        True,
        description="Use Redis as the shared cache tier",
    )
    url: str | None = Field(
        None,
        description="Full connection URL; overrides host/port/credentials when set",
    )
    host: str = Field("localhost", description="Redis host")
    port: int = Field(6379, description="Redis port")
    username: str | None = Field(None, description="Redis ACL username")
    password: str | None = Field(None, description="Redis password")
    db: int = Field(0, description="Redis database index")
    tls: bool = Field(False, description="Connect over TLS")
    socket_timeout_seconds: float = Field(
        2.0,
        description="Socket and connect timeout for Redis calls",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class PaymentSettings(BaseSettings):
    """Payment gateway configuration."""

    gateway_url: str = Field(
        "https://secure.networkmerchants.com/api/transact.php",
        description="Form-encoded transaction endpoint",
    )
    security_key: str | None = Field(
        None,
        description="Gateway private security key",
    )
    currency: str = Field("USD", description="ISO currency code sent to the gateway")
    merchant_name: str = Field(
        "Storefront",
        description="Prefix used in order descriptions",
    )
    timeout_seconds: float = Field(
        30.0,
        description="Gateway request timeout in seconds",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10_000_000,
        description="Rotate log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Nested settings are created via default_factory so env loading works.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()


def get_request_settings(request) -> Settings:
    """Return the settings the serving app was created with.

    ``create_app`` stores its settings on ``app.state.settings``; apps built
    without the factory fall back to the process-wide ``settings``.
    """
    app_settings = getattr(request.app.state, "settings", None)
    return settings if app_settings is None else app_settings
