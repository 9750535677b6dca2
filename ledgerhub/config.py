"""
Application Configuration

Centralized configuration management using Pydantic settings.
Loads from environment variables with fallback to .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    get_settings() caches the instance. Tests that need different values
    must call get_settings.cache_clear() after changing the environment.
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # Master database. The server part of this URL also hosts every
    # tenant database.
    DATABASE_URL: str = "mysql+pymysql://root:@localhost:3306/ledgerhub_master"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    TENANT_POOL_SIZE: int = 3

    # Admin credentials for CREATE/DROP DATABASE. Falls back to the
    # user in DATABASE_URL when unset.
    DB_ROOT_USER: Optional[str] = None
    DB_ROOT_PASSWORD: Optional[str] = None

    # Tenant provisioning
    TENANT_DB_PREFIX: str = "ledgerhub_"
    TRIAL_DAYS: int = 30
    DEFAULT_STORAGE_LIMIT_MB: int = 1024

    # Security settings
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    PASSWORD_RESET_EXPIRE_SECONDS: int = 3600

    # Redis for sessions, reset tokens and rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"

    # Application settings
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "http://localhost:3000"

    # Rate limiting defaults, overridable per tenant via tenant.settings
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_BURST: int = 10

    # Trial cleanup
    TRIAL_EXPIRY_DAYS: int = 60
    CLEANUP_DRY_RUN: bool = True
    CLEANUP_CREATE_BACKUP: bool = False
    CLEANUP_BACKUP_DIR: str = "backups/expired-trials"
    CLEANUP_LOG_FILE: str = "logs/trial-cleanup.log"
    CLEANUP_TENANT_DELAY_SECONDS: float = 0.1

    # Scheduler
    CRON_ENABLED: bool = True
    TRIAL_CLEANUP_SCHEDULE: str = "0 2 * * *"
    TIMEZONE: str = "UTC"

    # Storage monitoring
    STORAGE_LIMIT_MB: int = 1024

    # Seeded platform administrator
    PLATFORM_ADMIN_EMAIL: Optional[str] = None
    PLATFORM_ADMIN_PASSWORD: Optional[str] = None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
