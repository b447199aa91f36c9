"""Application configuration management."""
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine.url import make_url, URL

from session_guard.utils.exceptions import ConfigurationError

SQLITE_LOCAL_URL = "sqlite+aiosqlite:///./session_guard.db"
DEV_SECRET_PLACEHOLDER = "dev-secret-key-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = SQLITE_LOCAL_URL
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Application
    environment: str = "development"

    # Token signing. secret_key has no usable default: an empty value aborts startup.
    secret_key: str = ""
    refresh_secret_key: str = ""  # Falls back to secret_key when not set
    jwt_algorithm: str = "HS256"
    token_audience: str = "session-guard-api"
    token_issuer: str = "session-guard"
    access_token_exp_minutes: int = 15
    refresh_token_exp_days: int = 14
    access_token_cookie_name: str = "sg_access_token"
    refresh_token_cookie_name: str = "sg_refresh_token"

    # Credential hashing
    bcrypt_rounds: int = 12

    # Cleanup sweeper
    cleanup_enabled: bool = False
    cleanup_interval_minutes: int = 60
    cleanup_startup_delay_seconds: int = 120

    # Per-IP throttling of login and refresh
    rate_limit_enabled: bool = True
    login_rate_limit_per_minute: int = 10
    refresh_rate_limit_per_minute: int = 30

    @model_validator(mode="after")
    def validate_all_config(self):
        """Validate security configuration and normalize Postgres URLs."""
        logger = logging.getLogger(__name__)

        if self.environment == "production" and self.secret_key == DEV_SECRET_PLACEHOLDER:
            raise ValueError("secret_key must be changed from default value in production")

        if self.jwt_algorithm not in ["HS256", "HS384", "HS512"]:
            raise ValueError(f"Unsupported JWT algorithm: {self.jwt_algorithm}. Use HS256, HS384, or HS512.")

        if self.access_token_exp_minutes < 1 or self.access_token_exp_minutes > 1440:  # 1 min to 24 hours
            raise ValueError("access_token_exp_minutes must be between 1 and 1440 (24 hours)")

        if self.refresh_token_exp_days < 1 or self.refresh_token_exp_days > 365:
            raise ValueError("refresh_token_exp_days must be between 1 and 365 days")

        if self.bcrypt_rounds < 4 or self.bcrypt_rounds > 31:
            raise ValueError("bcrypt_rounds must be between 4 and 31")

        if self.cleanup_interval_minutes < 1:
            raise ValueError("cleanup_interval_minutes must be at least 1 minute")

        if self.login_rate_limit_per_minute < 1 or self.refresh_rate_limit_per_minute < 1:
            raise ValueError("rate limits must allow at least 1 request per minute")

        url = self.database_url
        if not url:
            logger.warning("Empty DATABASE_URL, using SQLite fallback")
            self.database_url = SQLITE_LOCAL_URL
            return self

        parsed: Optional[URL] = None
        try:
            parsed = make_url(url)
        except Exception as e:  # pragma: no cover - defensive fallback
            logger.error(f"Failed to parse DATABASE_URL: {e}")
            self.database_url = SQLITE_LOCAL_URL
            return self

        drivername = parsed.drivername
        if drivername.startswith("postgres") and "+asyncpg" not in drivername:
            parsed = parsed.set(drivername="postgresql+asyncpg")
            logger.info(f"Driver normalized: {drivername} -> {parsed.drivername}")
        # render_as_string re-encodes special characters in the password
        self.database_url = parsed.render_as_string(hide_password=False)

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True)
class TokenConfig:
    """Signing parameters handed to the token issuer at construction."""

    secret_key: str
    refresh_secret_key: str
    algorithm: str
    audience: str
    issuer: str
    access_token_ttl_seconds: int
    refresh_token_ttl_seconds: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenConfig":
        if not settings.secret_key:
            raise ConfigurationError(
                "SECRET_KEY is required. Set it to a secure random string (at least 32 characters)."
            )
        return cls(
            secret_key=settings.secret_key,
            refresh_secret_key=settings.refresh_secret_key or settings.secret_key,
            algorithm=settings.jwt_algorithm,
            audience=settings.token_audience,
            issuer=settings.token_issuer,
            access_token_ttl_seconds=settings.access_token_exp_minutes * 60,
            refresh_token_ttl_seconds=settings.refresh_token_exp_days * 24 * 60 * 60,
        )


@lru_cache()
def get_token_config() -> TokenConfig:
    """Build and cache the token configuration; raises ConfigurationError if incomplete."""
    return TokenConfig.from_settings(get_settings())
