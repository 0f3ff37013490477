"""Application settings using Pydantic BaseSettings."""

import re

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_async_database_url(url: str) -> str:
    """Get database URL converted for an async driver."""
    # Convert postgres:// to postgresql+asyncpg:// for SQLAlchemy async
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://") and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    # asyncpg doesn't support sslmode, it uses ssl parameter
    if "+asyncpg" in url and "sslmode=" in url:
        url = re.sub(r'[?&]sslmode=[^&]*', '', url)
        url = url.rstrip('?&')
    return url


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/contacts.db"
    database_echo: bool = False
    auto_create_tables: bool = True  # Production schema is managed by Alembic

    # Redis (optional, enables distributed identity locks and rate limiting)
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = False

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    api_prefix: str = ""

    # Reconciliation
    phone_pattern: str = r"^\d{10}$"
    ambiguous_link_policy: str = "merge"  # "merge" or "reject"
    identity_lock_timeout_seconds: float = 10.0
    identity_lock_lease_seconds: float = 30.0  # Redis locks expire if the holder dies

    # Rate limiting for /identify (per client IP)
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 900

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
