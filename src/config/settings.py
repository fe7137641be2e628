"""Application settings and configuration."""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The instance is frozen: it is built once at process start and handed to the
    services that need it.
    """

    # Application (hardcoded constants)
    app_name: str = "Hotel ERP API"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str  # development, staging, production

    # PostgreSQL
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_echo: bool = False

    # Redis (blacklist, rate limiting, user cache). Unset means in-memory cache.
    redis_url: str | None = None
    redis_socket_timeout: float = 5.0

    # API
    api_prefix: str = "/api/v1"

    # Security
    jwt_secret: str
    jwt_refresh_secret: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_expiry: int = 15  # minutes
    jwt_refresh_expiry: int = 720  # hours
    bcrypt_rounds: int = 12

    # Login brute-force protection
    login_rate_limit: int = 5
    login_rate_window: int = 15  # minutes
    login_block_duration: int = 30  # minutes
    login_ip_rate_limit: int = 50
    global_rate_limit: str = "100/minute"

    # One-time codes (minutes)
    verification_code_ttl: int = 10
    reset_code_ttl: int = 15
    default_admin_role: str = "admin"

    # Background refresh-token sweep
    token_sweep_interval: int = 3600  # seconds

    # Transactional email (Plunk)
    plunk_base_url: str | None = None
    plunk_secret_key: str | None = None

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        """bcrypt accepts a cost between 4 and 31."""
        if not 4 <= v <= 31:
            raise ValueError(f"bcrypt_rounds must be between 4 and 31, got {v}")
        return v


settings = Settings()  # type: ignore[call-arg]
