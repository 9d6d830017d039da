"""
Application settings loaded from environment variables.

Uses Pydantic Settings for type-safe configuration with validation.
Both the BFF gateway and the upstream API read the same names, so a single
.env file can describe a local two-service deployment.
"""

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Gateway and upstream configuration.

    All settings are loaded from environment variables or .env file.
    BFF_HMAC_SECRET has no usable default: services validate it at startup
    and refuse to boot when it is empty.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extraneous env vars from broader deployment configs
    )

    # Shared HMAC configuration (identical on both sides)
    bff_hmac_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Shared HMAC-SHA256 secret between gateway and upstream (required)",
    )
    bff_id: str = Field(
        default="nextjs-bff-prod",
        description="Signing-party identifier sent as X-BFF-Id and expected by the upstream",
    )

    # Gateway -> upstream forwarding
    upstream_api_url: str = Field(
        default="http://localhost:8000",
        description="Base authority of the upstream API (scheme://host[:port])",
    )
    bff_timeout_ms: int = Field(
        default=30000,
        ge=1,
        le=300000,
        description="Total deadline for one forwarded request, in milliseconds",
    )

    # Credential cookie
    environment: str = Field(
        default="production",
        description="Deployment environment (production enables Secure cookies)",
    )
    auth_cookie_secure: bool | None = Field(
        default=None,
        description="Override the Secure flag on the auth_token cookie (default: production only)",
    )
    auth_cookie_domain: str | None = Field(
        default=None,
        description="Optional Domain attribute for the auth_token cookie",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @field_validator("upstream_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("auth_cookie_domain")
    @classmethod
    def _empty_domain_is_none(cls, value: str | None) -> str | None:
        return value or None

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def bff_timeout_seconds(self) -> float:
        return self.bff_timeout_ms / 1000.0


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once. Tests that patch
    the environment call ``get_settings.cache_clear()`` afterwards.

    Returns:
        Settings instance with all configuration loaded.

    Example:
        >>> settings = get_settings()
        >>> print(settings.bff_id)
        'nextjs-bff-prod'
    """
    return Settings()
